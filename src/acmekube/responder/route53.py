"""Amazon Route 53 challenge responder.

Inserts the challenge TXT record with an ``UPSERT`` change and polls the
change status until Route 53 reports it as no longer ``PENDING``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from acmekube.core.errors import DnsError
from acmekube.responder.base import DnsResponder, Zone, fqdn_record

if TYPE_CHECKING:
    from acmekube.config.settings import DnsSettings

log = logging.getLogger(__name__)

_PENDING = "PENDING"


def _quote(value: str) -> str:
    """Route 53 expects TXT values in double quotes."""
    if value.startswith('"') and value.endswith('"'):
        return value
    return f'"{value}"'


class Route53Responder(DnsResponder):
    """DNS-01 responder backed by Route 53 hosted zones.

    Parameters
    ----------
    settings:
        The ``dns`` configuration section.
    client:
        Optional pre-built ``route53`` client.  A new client using the
        default credential chain is created when omitted.

    """

    def __init__(self, settings: DnsSettings, client: Any = None) -> None:  # noqa: ANN401
        super().__init__(settings)
        self._client = client if client is not None else boto3.client("route53")
        self._lock = threading.Lock()

    # -- zones ---------------------------------------------------------------

    def list_zones(self) -> list[Zone]:
        zones: list[Zone] = []
        try:
            paginator = self._client.get_paginator("list_hosted_zones")
            for page in paginator.paginate():
                for hosted in page.get("HostedZones", []):
                    zones.append(
                        Zone(
                            name=hosted["Id"],
                            dns_name=hosted["Name"],
                            private=bool(hosted.get("Config", {}).get("PrivateZone")),
                        ),
                    )
        except (BotoCoreError, ClientError) as exc:
            msg = f"Could not list Route 53 hosted zones: {exc}"
            raise DnsError(msg) from exc
        return zones

    # -- records -------------------------------------------------------------

    def add_challenge_record(self, record_name: str, challenge_digest: str) -> str:
        zone = self._require_zone(record_name)
        log.info("Adding challenge record %s to zone %s", record_name, zone.dns_name)
        self._submit_change(zone, "UPSERT", record_name, challenge_digest)
        return zone.dns_name

    def remove_challenge_record(self, record_name: str, challenge_digest: str) -> None:
        zone = self._require_zone(record_name)
        log.info("Removing challenge record %s from zone %s", record_name, zone.dns_name)
        self._submit_change(zone, "DELETE", record_name, challenge_digest)

    # -- internals -----------------------------------------------------------

    def _require_zone(self, record_name: str) -> Zone:
        zone = self.find_zone(record_name)
        if zone is None:
            msg = f"No Route 53 hosted zone matches record {record_name}"
            raise DnsError(msg)
        return zone

    def _submit_change(
        self,
        zone: Zone,
        action: str,
        record_name: str,
        challenge_digest: str,
    ) -> None:
        change_batch = {
            "Comment": f"acmekube {action.lower()} of {record_name}",
            "Changes": [
                {
                    "Action": action,
                    "ResourceRecordSet": {
                        "Name": fqdn_record(record_name),
                        "Type": "TXT",
                        "TTL": self._settings.record_ttl,
                        "ResourceRecords": [{"Value": _quote(challenge_digest)}],
                    },
                },
            ],
        }

        with self._lock:
            try:
                response = self._client.change_resource_record_sets(
                    HostedZoneId=zone.name,
                    ChangeBatch=change_batch,
                )
                self._wait_for_change(response["ChangeInfo"])
            except (BotoCoreError, ClientError) as exc:
                msg = f"Route 53 {action} of {record_name} failed: {exc}"
                raise DnsError(msg) from exc

    def _wait_for_change(self, change_info: dict) -> None:
        change_id = change_info["Id"]
        status = change_info["Status"]
        while status == _PENDING:
            log.debug("Waiting for Route 53 change %s", change_id)
            time.sleep(self._settings.route53_poll_seconds)
            status = self._client.get_change(Id=change_id)["ChangeInfo"]["Status"]
        log.debug("Route 53 change %s is %s", change_id, status)
