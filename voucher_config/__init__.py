"""
voucher_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_settings()`` is the only way services and tooling obtain
    configuration.  No other component reads YAML files or environment
    variables directly.

Architecture position:
    Configuration.  Sits above ``voucher_kernel`` (it reuses the kernel's
    ``ConfigurationError``) and below ``voucher_purchases``.  The kernel
    never imports from this package.

Failure modes:
    - ``ConfigurationError`` -- missing override file, malformed YAML, or
      an invalid value.
"""

from __future__ import annotations

import logging
from pathlib import Path

from voucher_config.loader import load_settings
from voucher_config.settings import (
    DatabaseSettings,
    ProcessingSettings,
    ProviderSettings,
    StorefrontSettings,
    VoucherSettings,
)

_logger = logging.getLogger("voucher_kernel.config")


def get_settings(path: Path | str | None = None) -> VoucherSettings:
    """The public configuration entrypoint.

    Args:
        path: Optional YAML file whose sections override the packaged
            defaults key by key.

    Returns:
        Frozen, validated ``VoucherSettings``.
    """
    settings = load_settings(Path(path) if path is not None else None)
    _logger.info(
        "voucher_config_loaded",
        extra={
            "override_path": str(path) if path is not None else None,
            "settlement_currency": settings.provider.settlement_currency,
            "pace_every": settings.processing.pace_every,
            "max_retries": settings.processing.max_retries,
        },
    )
    return settings


__all__ = [
    "DatabaseSettings",
    "ProcessingSettings",
    "ProviderSettings",
    "StorefrontSettings",
    "VoucherSettings",
    "get_settings",
]
