"""Logging subsystem for acmekube.

Public API::

    from acmekube.logging import configure_logging

    configure_logging(settings.logging)
"""

from acmekube.logging.setup import configure_logging

__all__ = ["configure_logging"]
