"""DNS propagation observer.

Confirms that a challenge TXT record is served by every authoritative
nameserver of its zone before the ACME server is asked to validate it.
Each nameserver is queried directly, bypassing caching resolvers.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

import dns.exception
import dns.message
import dns.query
import dns.rdatatype
import dns.resolver

from acmekube.core.errors import PropagationError
from acmekube.responder.base import fqdn_record

if TYPE_CHECKING:
    from acmekube.config.settings import DnsSettings

log = logging.getLogger(__name__)


class DnsRecordObserver:
    """Wait for a TXT record to reach all authoritative nameservers.

    Parameters
    ----------
    settings:
        The ``dns`` configuration section; supplies the per-nameserver
        timeout, the polling interval and the single-query timeout.

    """

    def __init__(self, settings: DnsSettings) -> None:
        self._settings = settings

    def observe(self, record_name: str, root_zone: str, expected_value: str) -> None:
        """Block until *record_name* contains *expected_value* everywhere.

        Raises
        ------
        PropagationError
            For the first nameserver that times out or cannot be queried.

        """
        log.info("Waiting for DNS record '%s' update", record_name)
        nameservers = self._find_authoritative_nameservers(root_zone)
        abort = threading.Event()

        with ThreadPoolExecutor(
            max_workers=len(nameservers),
            thread_name_prefix="dns-observer",
        ) as pool:
            futures = [
                pool.submit(self._wait_with_nameserver, record_name, ns, expected_value, abort)
                for ns in nameservers
            ]
            try:
                for future in as_completed(futures):
                    future.result()
            finally:
                abort.set()

        log.info("Record %s visible on all %d nameservers", record_name, len(nameservers))

    # -- internals -----------------------------------------------------------

    def _find_authoritative_nameservers(self, root_zone: str) -> list[str]:
        try:
            answer = dns.resolver.resolve(fqdn_record(root_zone), "NS")
        except dns.exception.DNSException as exc:
            msg = f"Could not find nameservers for zone {root_zone}: {exc}"
            raise PropagationError(msg) from exc

        nameservers = sorted(rdata.target.to_text() for rdata in answer)
        if not nameservers:
            msg = f"Zone {root_zone} has no NS records"
            raise PropagationError(msg)
        log.debug("Authoritative nameservers for %s: %s", root_zone, nameservers)
        return nameservers

    def _resolve_address(self, nameserver: str) -> str:
        try:
            answer = dns.resolver.resolve(nameserver, "A")
        except dns.exception.DNSException as exc:
            msg = f"Could not resolve nameserver {nameserver}: {exc}"
            raise PropagationError(msg) from exc
        return next(iter(answer)).address

    def _wait_with_nameserver(
        self,
        record_name: str,
        nameserver: str,
        expected_value: str,
        abort: threading.Event,
    ) -> None:
        address = self._resolve_address(nameserver)
        deadline = time.monotonic() + self._settings.propagation_timeout_seconds

        while time.monotonic() < deadline:
            if abort.is_set():
                return
            log.debug("Looking up %s in %s", record_name, nameserver)
            values = self._query_txt(record_name, address, nameserver)

            if any(expected_value in value for value in values):
                log.info("Record %s updated in %s", record_name, nameserver)
                return
            if values:
                log.debug(
                    "Current value in %s: %s, expected: %s",
                    nameserver,
                    values,
                    expected_value,
                )
            time.sleep(self._settings.propagation_interval_seconds)

        msg = f"Timeout while waiting for record '{record_name}' to update on {nameserver}"
        raise PropagationError(msg)

    def _query_txt(self, record_name: str, address: str, nameserver: str) -> list[str]:
        query = dns.message.make_query(fqdn_record(record_name), dns.rdatatype.TXT)
        try:
            response = dns.query.udp(
                query,
                address,
                timeout=self._settings.query_timeout_seconds,
            )
        except dns.exception.Timeout:
            log.debug("Query for %s timed out on %s", record_name, nameserver)
            return []
        except (dns.exception.DNSException, OSError) as exc:
            msg = f"Query for {record_name} failed on {nameserver}: {exc}"
            raise PropagationError(msg) from exc

        values: list[str] = []
        for rrset in response.answer:
            if rrset.rdtype != dns.rdatatype.TXT:
                continue
            values.extend(
                b"".join(rdata.strings).decode("ascii", errors="replace")
                for rdata in rrset
            )
        return values
