"""HTTP clients for the upstream voucher provider and the downstream storefront."""

from voucher_purchases.clients.provider import (
    HttpVoucherProvider,
    IssueVoucherResult,
    OptionPricing,
    ProviderCredentials,
    ProviderSession,
    VoucherProvider,
)
from voucher_purchases.clients.storefront import (
    AttachResult,
    HttpStorefrontClient,
    StorefrontClient,
)

__all__ = [
    "AttachResult",
    "HttpStorefrontClient",
    "HttpVoucherProvider",
    "IssueVoucherResult",
    "OptionPricing",
    "ProviderCredentials",
    "ProviderSession",
    "StorefrontClient",
    "VoucherProvider",
]
