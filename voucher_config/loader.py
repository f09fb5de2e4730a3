"""
Configuration loader (``voucher_config.loader``).

Responsibility
--------------
Reads the packaged ``defaults.yaml`` plus an optional override file, merges
them section by section, validates every value, and builds the frozen
``VoucherSettings`` tree.  Services never call this module; they receive
settings (or individual values) from ``voucher_config.get_settings()``.

Invariants enforced
-------------------
* Override files may only name known sections and keys; anything else is
  a ``ConfigurationError`` rather than a silently ignored typo.
* Numeric limits are range-checked before dataclass construction.

Failure modes
-------------
* Missing override file  -> ``ConfigurationError``.
* Malformed YAML  -> ``ConfigurationError`` wrapping ``yaml.YAMLError``.
* Out-of-range or wrongly typed value  -> ``ConfigurationError`` naming
  the dotted key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from voucher_config.settings import (
    DatabaseSettings,
    ProcessingSettings,
    ProviderSettings,
    StorefrontSettings,
    VoucherSettings,
)
from voucher_kernel.exceptions import ConfigurationError

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS: dict[str, type] = {
    "provider": ProviderSettings,
    "storefront": StorefrontSettings,
    "processing": ProcessingSettings,
    "database": DatabaseSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigurationError: if the file is missing, unreadable, or not a
            YAML mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def merge_sections(
    base: dict[str, Any],
    override: dict[str, Any],
) -> dict[str, Any]:
    """Overlay ``override`` on ``base`` one section deep."""
    merged = {name: dict(values or {}) for name, values in base.items()}
    for name, values in override.items():
        if name not in _SECTIONS:
            raise ConfigurationError(name, "unknown configuration section")
        if not isinstance(values, dict):
            raise ConfigurationError(name, "section must be a mapping")
        merged.setdefault(name, {}).update(values)
    return merged


def _require_text(section: str, data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{section}.{key}", "must be a non-empty string")
    return value.strip()


def _positive_number(section: str, data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{section}.{key}", f"must be > 0, got {value!r}")
    return float(value)


def _non_negative_number(section: str, data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigurationError(f"{section}.{key}", f"must be >= 0, got {value!r}")
    return float(value)


def _positive_int(section: str, data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(
            f"{section}.{key}", f"must be an integer >= 1, got {value!r}"
        )
    return value


def _reject_unknown_keys(section: str, data: dict[str, Any], known: set[str]) -> None:
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"{section}.{unknown[0]}", "unknown key")


def parse_provider(data: dict[str, Any]) -> ProviderSettings:
    _reject_unknown_keys(
        "provider",
        data,
        {
            "production_url",
            "sandbox_url",
            "timeout_seconds",
            "settlement_currency",
            "product_type_code",
        },
    )
    currency = _require_text("provider", data, "settlement_currency").upper()
    if len(currency) != 3:
        raise ConfigurationError(
            "provider.settlement_currency", "must be a 3-letter ISO 4217 code"
        )
    return ProviderSettings(
        production_url=_require_text("provider", data, "production_url").rstrip("/"),
        sandbox_url=_require_text("provider", data, "sandbox_url").rstrip("/"),
        timeout_seconds=_positive_number("provider", data, "timeout_seconds"),
        settlement_currency=currency,
        product_type_code=_require_text("provider", data, "product_type_code"),
    )


def parse_storefront(data: dict[str, Any]) -> StorefrontSettings:
    _reject_unknown_keys("storefront", data, {"base_url", "timeout_seconds"})
    return StorefrontSettings(
        base_url=_require_text("storefront", data, "base_url").rstrip("/"),
        timeout_seconds=_positive_number("storefront", data, "timeout_seconds"),
    )


def parse_processing(data: dict[str, Any]) -> ProcessingSettings:
    _reject_unknown_keys(
        "processing",
        data,
        {"pace_every", "pace_seconds", "max_retries", "background_workers"},
    )
    return ProcessingSettings(
        pace_every=_positive_int("processing", data, "pace_every"),
        pace_seconds=_non_negative_number("processing", data, "pace_seconds"),
        max_retries=_positive_int("processing", data, "max_retries"),
        background_workers=_positive_int("processing", data, "background_workers"),
    )


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    _reject_unknown_keys("database", data, {"url", "echo"})
    echo = data.get("echo", False)
    if not isinstance(echo, bool):
        raise ConfigurationError("database.echo", "must be true or false")
    return DatabaseSettings(
        url=_require_text("database", data, "url"),
        echo=echo,
    )


def load_settings(path: Path | None = None) -> VoucherSettings:
    """
    Build validated settings from the packaged defaults and an optional
    override file.

    Preconditions:
        - ``path``, when given, points to a YAML mapping whose top-level
          keys are a subset of provider/storefront/processing/database.
    Postconditions:
        - Returns a fully validated, frozen ``VoucherSettings``.
    Raises:
        ConfigurationError: on any invalid file or value.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge_sections(data, load_yaml_file(Path(path)))

    return VoucherSettings(
        provider=parse_provider(data.get("provider", {})),
        storefront=parse_storefront(data.get("storefront", {})),
        processing=parse_processing(data.get("processing", {})),
        database=parse_database(data.get("database", {})),
    )
