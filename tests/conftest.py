"""Root conftest for the acmekube test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from acmekube.config.settings import build_settings  # noqa: E402

# ---------------------------------------------------------------------------
# Settings shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings():
    """Default settings with every wait shortened for tests."""
    return build_settings(
        {
            "acme": {
                "directory_url": "https://acme.test/directory",
                "challenge_timeout_seconds": 5,
                "challenge_poll_interval_seconds": 0.001,
            },
            "dns": {
                "route53_poll_seconds": 0.001,
                "cloud_dns_poll_seconds": 0.001,
                "cloud_dns_settle_seconds": 0.001,
                "propagation_timeout_seconds": 0.2,
                "propagation_interval_seconds": 0.001,
            },
        },
    )


@pytest.fixture()
def tmp_config_file(tmp_path: Path):
    """Return a writer that dumps a dict to a temp YAML file."""

    def _write(data: dict) -> Path:
        cfg = tmp_path / "config.yaml"
        cfg.write_text(
            yaml.safe_dump(data, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
        return cfg

    return _write

