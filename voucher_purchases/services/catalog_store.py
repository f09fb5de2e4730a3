"""
CatalogStore -- per-store catalog pricing and stock write-back.

Contract:
    - ``apply_pricing()`` mirrors fresh provider pricing into the store's
      catalog option, carrying the store-currency conversion ratio and the
      markup over to the new wholesale price.
    - ``destination_product_for()`` maps an option to the storefront
      product its codes are attached to.
    - ``increment_stock()`` raises stock by an accepted-code count.

Architecture: voucher_purchases/services.  Reads and writes
    CatalogOptionModel only; flushes, never commits.

Non-goals:
    - Catalog synchronization with the storefront (options are created by
      the catalog sync service, never here).
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_kernel.db.types import round_face_value, round_money, round_wholesale
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.logging_config import get_logger
from voucher_purchases.clients.provider import OptionPricing, ProviderCredentials
from voucher_purchases.models.catalog import CatalogOptionModel, StoreModel

logger = get_logger("purchases.catalog")


def provider_credentials(store: StoreModel) -> ProviderCredentials:
    """Credentials the provider client authenticates a store with."""
    return ProviderCredentials(
        store_id=store.id,
        username=store.provider_username,
        password=store.provider_password,
        terminal_key=store.provider_terminal_key,
        sandbox=store.sandbox,
    )


class CatalogStore:
    """Store-scoped access to catalog options."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def find_option(self, store_id: UUID, option_code: str) -> CatalogOptionModel | None:
        return self._session.execute(
            select(CatalogOptionModel).where(
                CatalogOptionModel.store_id == store_id,
                CatalogOptionModel.option_code == option_code,
            )
        ).scalar_one_or_none()

    def destination_product_for(self, store_id: UUID, option_code: str) -> str | None:
        option = self.find_option(store_id, option_code)
        if option is None:
            return None
        return option.destination_product_id

    def apply_pricing(self, store_id: UUID, pricing: OptionPricing) -> bool:
        """
        Write fresh wholesale pricing into the store's catalog option.

        The store-currency price keeps its previous ratio to the wholesale
        price; the markup percentage is recomputed against the merchant's
        custom price.

        Returns:
            False when the store has no catalog row for the option.
        """
        option = self.find_option(store_id, pricing.option_code)
        if option is None:
            return False

        new_price = round_wholesale(pricing.min_wholesale_value)
        old_price = option.original_price

        option.original_price = new_price
        option.wholesale_price = new_price

        if pricing.min_face_value:
            option.min_face_value = round_face_value(pricing.min_face_value)

        if option.store_currency_price and old_price and old_price > 0:
            ratio = option.store_currency_price / old_price
            option.store_currency_price = round_wholesale(new_price * ratio)

        if option.custom_price and option.store_currency_price:
            markup = option.custom_price - option.store_currency_price
            option.markup_percentage = round_money(
                markup / option.store_currency_price * Decimal(100), 4,
            )

        self._session.flush()

        logger.info(
            "catalog_pricing_updated",
            extra={
                "option_code": pricing.option_code,
                "old_wholesale": old_price,
                "new_wholesale": new_price,
                "markup_percentage": option.markup_percentage,
            },
        )
        return True

    def increment_stock(self, store_id: UUID, product_id: str, quantity: int) -> int:
        """
        Add ``quantity`` to every option of ``store_id`` attached to
        ``product_id``.

        Returns:
            Number of catalog options updated.
        """
        if quantity <= 0:
            return 0

        options = self._session.execute(
            select(CatalogOptionModel).where(
                CatalogOptionModel.store_id == store_id,
                CatalogOptionModel.destination_product_id == product_id,
            )
        ).scalars().all()

        now = self._clock.now()
        for option in options:
            previous = option.stock_quantity or 0
            option.stock_quantity = previous + quantity
            option.last_stock_update = now
            logger.info(
                "catalog_stock_incremented",
                extra={
                    "option_code": option.option_code,
                    "product_id": product_id,
                    "previous": previous,
                    "added": quantity,
                },
            )

        self._session.flush()
        return len(options)
