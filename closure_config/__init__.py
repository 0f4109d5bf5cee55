"""
closure_config -- single public entrypoint for closure-engine configuration.

``get_active_config()`` is the only way services obtain configuration at
runtime.  It loads a YAML set from ``closure_config/sets/``, validates it
into frozen dataclasses and emits a ``CLOSURE_CONFIG_TRACE`` log entry
carrying the config id, version and checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- a policy value fails validation.
"""

from __future__ import annotations

import logging
from pathlib import Path

from closure_config.loader import load_config_file
from closure_config.schema import (
    AggregationPolicy,
    ClosureEngineConfig,
    ReconciliationPolicy,
    ReferencePolicy,
    TreasuryPolicy,
)

_logger = logging.getLogger("closure_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> ClosureEngineConfig:
    """
    Load, validate and trace the active configuration set.

    Args:
        config_path: Override path to a YAML configuration set.
            Defaults to closure_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = load_config_file(path)

    _logger.info(
        "CLOSURE_CONFIG_TRACE",
        extra={
            "trace_type": "CLOSURE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
        },
    )
    return config


__all__ = [
    "AggregationPolicy",
    "ClosureEngineConfig",
    "ReconciliationPolicy",
    "ReferencePolicy",
    "TreasuryPolicy",
    "get_active_config",
]
