"""Controller counters.

Every counter the controller emits is declared once in :data:`COUNTERS`
with its help text and label names.  The collector rejects unknown
counters and mismatched labels, so a typo at a call site fails loudly in
tests instead of silently creating a new series.  The export is
Prometheus text format; the CLI writes it to the log on shutdown.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

RECONCILE_PASSES = "acmekube_reconcile_passes_total"
RECONCILE_ERRORS = "acmekube_reconcile_errors_total"
CERTIFICATES_ISSUED = "acmekube_certificates_issued_total"
CERTIFICATE_FAILURES = "acmekube_certificate_failures_total"
CHALLENGES = "acmekube_challenges_total"


@dataclass(frozen=True)
class Counter:
    """Declaration of one counter family."""

    name: str
    help: str
    labels: tuple[str, ...] = ()


COUNTERS: dict[str, Counter] = {
    c.name: c
    for c in (
        Counter(RECONCILE_PASSES, "Completed namespace reconciliation passes"),
        Counter(RECONCILE_ERRORS, "Namespace reconciliation passes that failed"),
        Counter(
            CERTIFICATES_ISSUED,
            "Certificates stored in a secret",
            ("kind",),
        ),
        Counter(
            CERTIFICATE_FAILURES,
            "Certificate flows that ended in an error",
            ("kind",),
        ),
        Counter(
            CHALLENGES,
            "DNS-01 challenges decided by the ACME server",
            ("outcome",),
        ),
    )
}

_LabelValues = tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class MetricsCollector:
    """Thread-safe store for the counters declared in :data:`COUNTERS`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._series: dict[str, dict[_LabelValues, int]] = {name: {} for name in COUNTERS}
        self._start_time = time.monotonic()

    def increment(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        """Add *amount* to the series of *name* selected by *labels*.

        Raises
        ------
        ValueError
            If *name* is not declared or *labels* does not name exactly
            the counter's labels.

        """
        key = self._label_values(name, labels)
        with self._lock:
            series = self._series[name]
            series[key] = series.get(key, 0) + amount

    def get(self, name: str, labels: dict | None = None) -> int:
        """Current value of one series, or the sum over all series of a
        labelled counter when *labels* is omitted."""
        if labels is None and COUNTERS.get(name) and COUNTERS[name].labels:
            with self._lock:
                return sum(self._series[name].values())
        key = self._label_values(name, labels)
        with self._lock:
            return self._series[name].get(key, 0)

    def export(self) -> str:
        """Render every declared counter in Prometheus text format.

        Unlabelled counters are always present; labelled counters list
        the series seen so far.
        """
        uptime = time.monotonic() - self._start_time
        lines = [
            "# HELP acmekube_uptime_seconds Seconds since the controller started",
            "# TYPE acmekube_uptime_seconds gauge",
            f"acmekube_uptime_seconds {uptime:.1f}",
        ]

        with self._lock:
            snapshot = {name: dict(series) for name, series in self._series.items()}

        for name in sorted(COUNTERS):
            counter = COUNTERS[name]
            lines.append(f"# HELP {name} {counter.help}")
            lines.append(f"# TYPE {name} counter")
            series = snapshot[name]
            if not counter.labels:
                lines.append(f"{name} {series.get((), 0)}")
                continue
            for values, count in sorted(series.items()):
                pairs = ",".join(
                    f'{label}="{_escape(value)}"'
                    for label, value in zip(counter.labels, values, strict=True)
                )
                lines.append(f"{name}{{{pairs}}} {count}")

        return "\n".join(lines) + "\n"

    @staticmethod
    def _label_values(name: str, labels: dict | None) -> _LabelValues:
        counter = COUNTERS.get(name)
        if counter is None:
            msg = f"Unknown counter '{name}'"
            raise ValueError(msg)
        given = labels or {}
        if set(given) != set(counter.labels):
            msg = f"Counter '{name}' takes labels {list(counter.labels)}, got {sorted(given)}"
            raise ValueError(msg)
        return tuple(str(given[label]) for label in counter.labels)
