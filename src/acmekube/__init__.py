"""acmekube: ACME certificate controller for Kubernetes services."""

__version__ = "1.0.0"
