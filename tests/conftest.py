"""
Pytest fixtures for the voucher purchasing engine test suite.

Provides:
- In-memory SQLite sessions built through voucher_kernel.db.engine
- A deterministic clock pinned to 2025-01-15 09:30 UTC
- A store with two catalog options
- FakeProvider / FakeStorefront standing in for the HTTP clients
- Structured log capture
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from voucher_config.settings import (
    ProcessingSettings,
    ProviderSettings,
    StorefrontSettings,
    VoucherSettings,
)
from voucher_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from voucher_kernel.domain.clock import DeterministicClock
from voucher_kernel.exceptions import (
    ProviderAuthenticationError,
    ProviderTransportError,
    StorefrontAttachmentError,
)
from voucher_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from voucher_purchases.clients.provider import (
    IssueVoucherResult,
    OptionPricing,
    ProviderCredentials,
    ProviderSession,
)
from voucher_purchases.clients.storefront import AttachResult
from voucher_purchases.domain.types import ItemSpec
from voucher_purchases.models.catalog import CatalogOptionModel, StoreModel
from voucher_purchases.services.orchestrator import OrderOrchestrator
from voucher_purchases.services.order_service import OrderService

TEST_USER_ID = uuid4()

GIFT_OPTION = "GIFT-10"
GAME_OPTION = "GAME-25"
GIFT_PRODUCT = "prod-100"
GAME_PRODUCT = "prod-200"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture voucher_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.confirm(order_id)
            logs = captured_logs()
            assert any(r["message"] == "order_processing_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("voucher_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def session(session_factory):
    db_session = session_factory()
    try:
        yield db_session
    finally:
        db_session.close()


@pytest.fixture
def clock():
    return DeterministicClock(
        fixed_time=datetime(2025, 1, 15, 9, 30, 0, tzinfo=timezone.utc),
    )


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def settings():
    return VoucherSettings(
        provider=ProviderSettings(
            production_url="https://provider.test",
            sandbox_url="https://sandbox.provider.test",
        ),
        storefront=StorefrontSettings(base_url="https://storefront.test/admin/v2"),
        processing=ProcessingSettings(
            pace_every=10,
            pace_seconds=1.0,
            max_retries=3,
            background_workers=2,
        ),
    )


# =============================================================================
# Store and catalog
# =============================================================================


@pytest.fixture
def store(session):
    store = StoreModel(
        id=uuid4(),
        name="Test Store",
        provider_username="merchant",
        provider_password="s3cret",
        provider_terminal_key="TERM-001",
        sandbox=True,
        storefront_access_token="sf-token",
    )
    session.add(store)
    session.flush()
    return store


@pytest.fixture
def catalog(session, store):
    """Two catalog options, each mapped to its own storefront product."""
    gift = CatalogOptionModel(
        store_id=store.id,
        option_code=GIFT_OPTION,
        option_name="Gift Card 10 USD",
        destination_product_id=GIFT_PRODUCT,
        wholesale_price=Decimal("9.5000"),
        original_price=Decimal("9.5000"),
        store_currency_price=Decimal("35.6250"),
        custom_price=Decimal("40.0000"),
        min_face_value=Decimal("10.00"),
        stock_quantity=0,
    )
    game = CatalogOptionModel(
        store_id=store.id,
        option_code=GAME_OPTION,
        option_name="Game Credit 25 USD",
        destination_product_id=GAME_PRODUCT,
        wholesale_price=Decimal("24.0000"),
        original_price=Decimal("24.0000"),
        min_face_value=Decimal("25.00"),
        stock_quantity=4,
    )
    session.add_all([gift, game])
    session.flush()
    return {GIFT_OPTION: gift, GAME_OPTION: game}


def _gift_spec(quantity: int = 3, price: str = "9.5") -> ItemSpec:
    return ItemSpec(
        option_code=GIFT_OPTION,
        quantity=quantity,
        unit_face_value=Decimal("10.00"),
        unit_wholesale_price=Decimal(price),
        product_code="GIFT",
        provider_code="ACME",
        product_name="Gift Card",
        option_name="Gift Card 10 USD",
    )


def _game_spec(quantity: int = 2, price: str = "24.0") -> ItemSpec:
    return ItemSpec(
        option_code=GAME_OPTION,
        quantity=quantity,
        unit_face_value=Decimal("25.00"),
        unit_wholesale_price=Decimal(price),
        product_code="GAME",
        provider_code="ACME",
        product_name="Game Credit",
        option_name="Game Credit 25 USD",
    )


@pytest.fixture
def gift_spec():
    return _gift_spec


@pytest.fixture
def game_spec():
    return _game_spec


@pytest.fixture
def orders(session, clock, settings):
    return OrderService(session, clock, settings.provider)


@pytest.fixture
def draft(orders, store, catalog):
    """A DRAFT order for the test store."""
    return orders.create_draft(store.id, TEST_USER_ID)


# =============================================================================
# Upstream fakes
# =============================================================================


@dataclass(frozen=True)
class IssueCall:
    external_id: str
    option_code: str
    face_amount: Decimal
    quantity: int
    token: str


class FakeProvider:
    """
    In-memory VoucherProvider.

    ``behaviours`` maps an external id to what the next call for that id
    does: ``"fail"`` (business failure), ``"transport"`` (transport error),
    or an exception instance to raise.  A list is consumed one entry per
    call; ids without an entry succeed.
    """

    def __init__(
        self,
        balance: Decimal = Decimal("1000.00"),
        prices: dict[str, Decimal] | None = None,
    ):
        self.balance = balance
        self.prices = dict(prices or {
            GIFT_OPTION: Decimal("9.5"),
            GAME_OPTION: Decimal("24.0"),
        })
        self.behaviours: dict[str, object] = {}
        self.auth_error: Exception | None = None
        self.auth_calls = 0
        self.pricing_calls: list[str] = []
        self.issued: list[IssueCall] = []
        self._serial = 0

    def authenticate(self, credentials: ProviderCredentials) -> ProviderSession:
        self.auth_calls += 1
        if self.auth_error is not None:
            raise self.auth_error
        return ProviderSession(
            store_id=credentials.store_id,
            token=f"tok-{self.auth_calls}",
            balance=self.balance,
            base_url="https://sandbox.provider.test",
        )

    def get_option_pricing(self, session: ProviderSession, option_code: str) -> OptionPricing:
        self.pricing_calls.append(option_code)
        price = self.prices[option_code]
        face = Decimal("25") if option_code == GAME_OPTION else Decimal("10")
        return OptionPricing(
            option_code=option_code,
            min_face_value=face,
            max_face_value=face,
            min_wholesale_value=price,
            max_wholesale_value=price,
            currency_code="USD",
        )

    def issue_voucher(
        self,
        session: ProviderSession,
        *,
        external_id: str,
        product_type_code: str,
        option_code: str,
        face_amount: Decimal,
        quantity: int = 1,
    ) -> IssueVoucherResult:
        self.issued.append(
            IssueCall(external_id, option_code, face_amount, quantity, session.token)
        )

        behaviour = self.behaviours.get(external_id)
        if isinstance(behaviour, list):
            behaviour = behaviour.pop(0) if behaviour else None

        if behaviour == "transport":
            raise ProviderTransportError("DoTransaction", "timed out after 30s")
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour == "fail":
            return IssueVoucherResult(
                succeeded=False,
                error_text="Product out of stock",
                raw={"OperationSucceeded": False, "ErrorText": "Product out of stock"},
            )

        self._serial += 1
        price = self.prices[option_code]
        self.balance -= price
        return IssueVoucherResult(
            succeeded=True,
            serial_number=f"SN-{self._serial:04d}",
            reference=f"CODE-{external_id}",
            redeem_url=f"https://redeem.test/{self._serial}",
            settled_amount=face_amount,
            wholesale_amount=price,
            transaction_id=f"TX-{self._serial}",
            provider_transaction_id=f"PTX-{self._serial}",
            raw={"OperationSucceeded": True},
        )

    def issued_ids(self) -> list[str]:
        return [call.external_id for call in self.issued]


class FakeStorefront:
    """In-memory StorefrontClient recording every attach call."""

    def __init__(self):
        self.calls: list[tuple[str, str, list[str]]] = []
        self.rejected: set[str] = set()
        self.failing_products: set[str] = set()

    def attach_codes(self, access_token, product_id, codes) -> AttachResult:
        self.calls.append((access_token, product_id, list(codes)))
        if product_id in self.failing_products:
            raise StorefrontAttachmentError(product_id, "HTTP 500 - upstream error")
        return AttachResult(
            product_id=product_id,
            accepted=tuple(c for c in codes if c not in self.rejected),
            rejected=tuple(c for c in codes if c in self.rejected),
        )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def storefront():
    return FakeStorefront()


@pytest.fixture
def auth_rejected():
    return ProviderAuthenticationError("store", "Invalid terminal key")


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def sleeps():
    """Pauses requested by the rate-limit pacer, in seconds."""
    return []


@pytest.fixture
def orchestrator(session, provider, storefront, clock, settings, sleeps, session_factory):
    orchestrator = OrderOrchestrator(
        session,
        provider,
        storefront,
        clock=clock,
        settings=settings,
        sleep=sleeps.append,
        session_factory=session_factory,
    )
    yield orchestrator
    orchestrator.shutdown()
