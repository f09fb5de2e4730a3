"""
Settings schema for the voucher purchasing engine.

Every section is a frozen dataclass; the loader builds them from YAML and
validates ranges before construction, so an instance that exists is
always usable.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Upstream provider
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderSettings:
    """Voucher provider endpoints and transaction defaults."""

    production_url: str
    sandbox_url: str
    timeout_seconds: float = 30.0
    settlement_currency: str = "USD"
    product_type_code: str = "Voucher"

    def base_url(self, sandbox: bool) -> str:
        return self.sandbox_url if sandbox else self.production_url


# ---------------------------------------------------------------------------
# Downstream storefront
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorefrontSettings:
    base_url: str
    timeout_seconds: float = 30.0


# ---------------------------------------------------------------------------
# Processing loop
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessingSettings:
    """Pacing, retry and worker limits for order confirmation."""

    pace_every: int = 10
    pace_seconds: float = 1.0
    max_retries: int = 3
    background_workers: int = 4


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///:memory:"
    echo: bool = False


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VoucherSettings:
    """Complete runtime configuration."""

    provider: ProviderSettings
    storefront: StorefrontSettings
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
