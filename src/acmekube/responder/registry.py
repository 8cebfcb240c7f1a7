"""DNS responder registry.

Maps the detected cloud platform to its responder implementation.
Provider modules are imported lazily so a controller running on one
platform never imports the other provider's client library.

Usage::

    from acmekube.responder.registry import load_dns_responder

    responder = load_dns_responder(platform, settings.dns)
    zone = responder.add_challenge_record(record, digest)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from acmekube.core.errors import ConfigurationError
from acmekube.core.types import CloudPlatform
from acmekube.responder.base import DnsResponder

if TYPE_CHECKING:
    from acmekube.config.settings import DnsSettings

log = logging.getLogger(__name__)

# Maps platform -> (module_path, class_name)
_RESPONDERS: dict[CloudPlatform, tuple[str, str]] = {
    CloudPlatform.AWS: ("acmekube.responder.route53", "Route53Responder"),
    CloudPlatform.GCP: ("acmekube.responder.clouddns", "CloudDnsResponder"),
}


def load_dns_responder(platform: CloudPlatform, dns_settings: DnsSettings) -> DnsResponder:
    """Load and return the responder for *platform*.

    Raises
    ------
    ConfigurationError
        If the platform has no responder or the responder cannot be loaded.

    """
    if platform not in _RESPONDERS:
        msg = (
            f"No DNS responder for cloud platform '{platform}'; "
            f"set CLOUD_PLATFORM to one of {sorted(p.value for p in _RESPONDERS)}"
        )
        raise ConfigurationError(msg)

    mod_path, cls_name = _RESPONDERS[platform]
    try:
        module = importlib.import_module(mod_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load DNS responder for '{platform}': {exc}"
        raise ConfigurationError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, DnsResponder)):
        msg = f"DNS responder '{cls_name}' is not a subclass of DnsResponder"
        raise ConfigurationError(msg)

    responder = cls(dns_settings)
    log.info("Loaded DNS responder: %s", cls_name)
    return responder
