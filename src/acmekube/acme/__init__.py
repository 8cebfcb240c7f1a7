"""ACME protocol orchestration."""

from acmekube.acme.orchestrator import CertificateOrchestrator

__all__ = ["CertificateOrchestrator"]
