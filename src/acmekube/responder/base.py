"""Abstract base class for DNS challenge responders.

A responder publishes the DNS-01 challenge TXT record through a cloud
DNS provider and removes it again after validation.  All responders share
the zone-selection algorithm implemented here; provider-specific change
polling stays inside each implementation.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from acmekube.config.settings import DnsSettings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Zone:
    """A managed DNS zone as enumerated from a provider.

    Attributes
    ----------
    name:
        Provider identifier of the zone (Route 53 hosted zone ID, Cloud
        DNS managed zone name).
    dns_name:
        Fully-qualified zone name with a trailing dot, e.g. ``tazj.in.``.
    private:
        Whether the zone is only visible inside a private network.

    """

    name: str
    dns_name: str
    private: bool = False


def fqdn_record(record: str) -> str:
    """Return *record* with a trailing full stop.

    Route 53 and Cloud DNS both use this format for zone and record names.
    """
    return record if record.endswith(".") else record + "."


def zone_matches(record: str, zone: Zone) -> bool:
    """Whether *zone* is a suffix of the fully-qualified *record* name."""
    fqdn = fqdn_record(record).lower()
    zone_name = fqdn_record(zone.dns_name).lower()
    return fqdn == zone_name or fqdn.endswith("." + zone_name)


def select_zone(record: str, zones: Iterable[Zone]) -> Zone | None:
    """Select the most specific zone for *record*.

    The longest matching zone name wins.  For equally long names a public
    zone is preferred over a private one; otherwise the first match is
    kept.  Returns ``None`` when no zone matches.
    """
    selected: Zone | None = None
    for zone in zones:
        if not zone_matches(record, zone):
            continue
        if selected is None or len(zone.dns_name) > len(selected.dns_name):
            selected = zone
        elif len(zone.dns_name) == len(selected.dns_name):
            log.debug(
                "Zones %s and %s are the same length, checking if private",
                zone.name,
                selected.name,
            )
            if selected.private and not zone.private:
                log.debug("Zone %s is public, using it", zone.name)
                selected = zone

    if selected is not None:
        log.info("Found matching zone %s for record %s", selected.dns_name, record)
    return selected


class DnsResponder(abc.ABC):
    """Base class for DNS-01 challenge responders.

    Parameters
    ----------
    settings:
        The ``dns`` configuration section.

    """

    def __init__(self, settings: DnsSettings) -> None:
        self._settings = settings

    @abc.abstractmethod
    def add_challenge_record(self, record_name: str, challenge_digest: str) -> str:
        """Publish the challenge TXT record and wait for the provider.

        Returns the DNS name of the zone the record was inserted into,
        which the propagation observer queries for nameservers.

        Raises
        ------
        DnsError
            If no managed zone matches *record_name*.

        """

    @abc.abstractmethod
    def remove_challenge_record(self, record_name: str, challenge_digest: str) -> None:
        """Remove a previously added challenge record."""

    @abc.abstractmethod
    def list_zones(self) -> list[Zone]:
        """Enumerate every zone visible to the provider credentials."""

    def find_zone(self, record_name: str) -> Zone | None:
        """Return the most specific managed zone for *record_name*.

        Zones are enumerated on every call so out-of-band changes take
        effect immediately.
        """
        return select_zone(record_name, self.list_zones())
