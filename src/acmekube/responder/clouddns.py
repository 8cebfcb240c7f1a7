"""Google Cloud DNS challenge responder.

Cloud DNS rejects an addition when a record set with the same name and
type already exists, so any such set is deleted in the same change.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

from google.api_core.exceptions import GoogleAPIError
from google.cloud import dns as cloud_dns

from acmekube.core.errors import DnsError
from acmekube.responder.base import DnsResponder, Zone, fqdn_record, select_zone

if TYPE_CHECKING:
    from acmekube.config.settings import DnsSettings

log = logging.getLogger(__name__)

_PENDING = "pending"


class CloudDnsResponder(DnsResponder):
    """DNS-01 responder backed by Cloud DNS managed zones.

    Cloud DNS zones are all treated as public for zone selection.
    """

    def __init__(self, settings: DnsSettings, client: Any = None) -> None:  # noqa: ANN401
        super().__init__(settings)
        self._client = client if client is not None else cloud_dns.Client()
        self._lock = threading.Lock()

    def list_zones(self) -> list[Zone]:
        return [
            Zone(name=managed.name, dns_name=managed.dns_name)
            for managed in self._managed_zones()
        ]

    def add_challenge_record(self, record_name: str, challenge_digest: str) -> str:
        managed = self._require_zone(record_name)
        fqdn = fqdn_record(record_name)
        log.info("Adding challenge record %s to zone %s", record_name, managed.dns_name)

        with self._lock:
            try:
                changes = managed.changes()
                for existing in managed.list_resource_record_sets():
                    if existing.name == fqdn and existing.record_type == "TXT":
                        log.debug("Replacing existing record set %s", fqdn)
                        changes.delete_record_set(existing)
                changes.add_record_set(self._record_set(managed, fqdn, challenge_digest))
                changes.create()
                self._wait_for_change(managed, changes)
            except GoogleAPIError as exc:
                msg = f"Cloud DNS addition of {record_name} failed: {exc}"
                raise DnsError(msg) from exc

        # Cloud DNS can keep serving stale answers for a while after a change
        # is reported done, even on the zone's own nameservers.
        log.info(
            "Waiting %ss for Cloud DNS to settle",
            self._settings.cloud_dns_settle_seconds,
        )
        time.sleep(self._settings.cloud_dns_settle_seconds)
        return managed.dns_name

    def remove_challenge_record(self, record_name: str, challenge_digest: str) -> None:
        managed = self._require_zone(record_name)
        fqdn = fqdn_record(record_name)
        log.info("Removing challenge record %s from zone %s", record_name, managed.dns_name)

        with self._lock:
            try:
                changes = managed.changes()
                changes.delete_record_set(self._record_set(managed, fqdn, challenge_digest))
                changes.create()
            except GoogleAPIError as exc:
                msg = f"Cloud DNS removal of {record_name} failed: {exc}"
                raise DnsError(msg) from exc

    # -- internals -----------------------------------------------------------

    def _managed_zones(self) -> list:
        try:
            return list(self._client.list_zones())
        except GoogleAPIError as exc:
            msg = f"Could not list Cloud DNS zones: {exc}"
            raise DnsError(msg) from exc

    def _require_zone(self, record_name: str):  # noqa: ANN202
        managed_zones = self._managed_zones()
        zone = select_zone(
            record_name,
            [Zone(name=m.name, dns_name=m.dns_name) for m in managed_zones],
        )
        if zone is None:
            log.error("No matching zone found for %s", record_name)
            msg = f"No Cloud DNS zone matches record {record_name}"
            raise DnsError(msg)
        return next(m for m in managed_zones if m.name == zone.name)

    def _record_set(self, managed, fqdn: str, challenge_digest: str):  # noqa: ANN001, ANN202
        return managed.resource_record_set(
            fqdn,
            "TXT",
            self._settings.record_ttl,
            [challenge_digest],
        )

    def _wait_for_change(self, managed, changes) -> None:  # noqa: ANN001
        log.info(
            "Waiting for change in zone %s to finish. This may take some time.",
            managed.name,
        )
        while changes.status == _PENDING:
            time.sleep(self._settings.cloud_dns_poll_seconds)
            changes.reload()
