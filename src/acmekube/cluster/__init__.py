"""Kubernetes-facing components: API access, secrets, reconciliation."""
