"""ORM models for voucher purchasing."""

from voucher_purchases.models.catalog import CatalogOptionModel, StoreModel
from voucher_purchases.models.purchase import (
    PurchaseItemModel,
    PurchaseOrderModel,
    VoucherDetailModel,
)

__all__ = [
    "CatalogOptionModel",
    "PurchaseItemModel",
    "PurchaseOrderModel",
    "StoreModel",
    "VoucherDetailModel",
]
