"""Value objects passed between the reconciler, orchestrator and secret store."""

from acmekube.models.certificate import CertificateRequest, CertificateResponse

__all__ = ["CertificateRequest", "CertificateResponse"]
