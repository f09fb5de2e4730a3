"""Purchase order services; each takes a Session and never owns the engine."""

from voucher_purchases.services.attachment import AttachmentNotifier
from voucher_purchases.services.catalog_store import CatalogStore, provider_credentials
from voucher_purchases.services.executor import TransactionExecutor
from voucher_purchases.services.orchestrator import OrderOrchestrator
from voucher_purchases.services.order_service import (
    OrderService,
    get_order,
    transition_order,
)
from voucher_purchases.services.reconciler import BalanceReconciler

__all__ = [
    "AttachmentNotifier",
    "BalanceReconciler",
    "CatalogStore",
    "OrderOrchestrator",
    "OrderService",
    "TransactionExecutor",
    "get_order",
    "provider_credentials",
    "transition_order",
]
