"""DNS-01 challenge responders and the propagation observer."""

from acmekube.responder.base import DnsResponder, Zone, select_zone
from acmekube.responder.observer import DnsRecordObserver
from acmekube.responder.registry import load_dns_responder

__all__ = [
    "DnsRecordObserver",
    "DnsResponder",
    "Zone",
    "load_dns_responder",
    "select_zone",
]
