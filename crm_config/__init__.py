"""
crm_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()`` (opportunity engine settings) and
    ``get_database_url()``.  Services receive an ``OpportunityConfig``
    instance; they never read files or environment variables themselves.

Architecture position:
    Configuration -- sits above ``crm_kernel`` and beside ``crm_modules``.
    The kernel MUST NEVER import from ``crm_config``.

Failure modes:
    - ``FileNotFoundError`` -- ``CRM_CONFIG_PATH`` points at a missing file.
    - ``ValueError`` -- invalid or unknown settings.
    - ``RuntimeError`` -- ``DATABASE_URL`` is not set.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from crm_config.loader import (
    compute_checksum,
    load_opportunity_config,
    load_yaml_file,
    parse_opportunity_config,
)
from crm_modules.opportunity.config import OpportunityConfig

_logger = logging.getLogger("crm_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "default.yaml"

CONFIG_PATH_ENV = "CRM_CONFIG_PATH"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(config_path: Path | None = None) -> OpportunityConfig:
    """Load the active opportunity engine configuration.

    Resolution order: explicit ``config_path``, then ``$CRM_CONFIG_PATH``,
    then the bundled ``sets/default.yaml``.

    Guarantees:
        - The returned config has passed ``__post_init__`` validation.
        - A ``crm_config_loaded`` log entry records the source and checksum.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    data = load_yaml_file(config_path)
    config = parse_opportunity_config(data.get("opportunity") or {})

    _logger.info(
        "crm_config_loaded",
        extra={
            "config_id": data.get("config_id"),
            "config_version": data.get("version"),
            "config_path": str(config_path),
            "checksum": compute_checksum(data),
        },
    )
    return config


def get_database_url() -> str:
    """Database URL from ``$DATABASE_URL``."""
    url = os.environ.get(DATABASE_URL_ENV)
    if not url:
        raise RuntimeError(f"{DATABASE_URL_ENV} is not set")
    return url


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "OpportunityConfig",
    "compute_checksum",
    "get_active_config",
    "get_database_url",
    "load_opportunity_config",
    "load_yaml_file",
    "parse_opportunity_config",
]
