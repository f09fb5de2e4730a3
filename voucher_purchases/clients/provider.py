"""
Upstream voucher provider client.

Responsibility:
    Speaks the provider's JSON-over-HTTPS integration API: authenticate a
    store's terminal, read current option pricing, and issue exactly one
    voucher unit per call.  Returns typed values; never touches the
    database.

Architecture position:
    voucher_purchases > clients.  Used by the reconciler and the executor
    through the ``VoucherProvider`` protocol so tests can substitute a
    fake.

Invariants:
    - Every request carries the configured timeout (30s by default).
    - Amounts are converted to Decimal through ``to_decimal``; floats
      never reach arithmetic.
    - Tokens and passwords are never logged.

Failure modes:
    - ``ProviderTransportError`` -- connection error, timeout, non-2xx
      status, or a body that is not JSON.
    - ``ProviderAuthenticationError`` -- the provider rejected the
      credentials or returned no token.
    - ``ProviderPricingError`` -- the option is unknown or unpriced.
    - A 2xx IssueVoucher response with ``OperationSucceeded = false`` is
      NOT an exception; it comes back as ``IssueVoucherResult`` with
      ``succeeded=False`` so the caller can record the business failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

import requests

from voucher_config.settings import ProviderSettings
from voucher_kernel.db.types import to_decimal
from voucher_kernel.exceptions import (
    ProviderAuthenticationError,
    ProviderPricingError,
    ProviderTransportError,
)
from voucher_kernel.logging_config import get_logger

logger = get_logger("clients.provider")

# Balance field names seen in Authenticate responses, in preference order.
BALANCE_FIELDS = (
    "Plafond",
    "Balance",
    "balance",
    "plafond",
    "AvailableBalance",
    "CurrentBalance",
    "Amount",
    "amount",
)


@dataclass(frozen=True)
class ProviderCredentials:
    store_id: UUID
    username: str
    password: str = field(repr=False)
    terminal_key: str = field(repr=False)
    sandbox: bool = False


@dataclass(frozen=True)
class ProviderSession:
    """Short-lived authenticated session for one store.

    Obtained once per confirm run and passed explicitly into every
    voucher execution of that run.
    """

    store_id: UUID
    token: str = field(repr=False)
    balance: Decimal
    base_url: str


@dataclass(frozen=True)
class OptionPricing:
    option_code: str
    min_face_value: Decimal
    max_face_value: Decimal
    min_wholesale_value: Decimal
    max_wholesale_value: Decimal
    currency_code: str | None = None


@dataclass(frozen=True)
class IssueVoucherResult:
    """Parsed 2xx DoTransaction response."""

    succeeded: bool
    error_text: str | None = None
    serial_number: str | None = None
    reference: str | None = None
    redeem_url: str | None = None
    settled_amount: Decimal | None = None
    wholesale_amount: Decimal | None = None
    transaction_id: str | None = None
    provider_transaction_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class VoucherProvider(Protocol):
    """What the engine needs from the upstream provider."""

    def authenticate(self, credentials: ProviderCredentials) -> ProviderSession: ...

    def get_option_pricing(
        self, session: ProviderSession, option_code: str,
    ) -> OptionPricing: ...

    def issue_voucher(
        self,
        session: ProviderSession,
        *,
        external_id: str,
        product_type_code: str,
        option_code: str,
        face_amount: Decimal,
        quantity: int = 1,
    ) -> IssueVoucherResult: ...


def _optional_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value)


def _json_amount(value: Decimal) -> int | float:
    # The provider expects a JSON number, not a string.
    return int(value) if value == value.to_integral_value() else float(value)


def parse_balance(payload: dict[str, Any]) -> Decimal | None:
    for name in BALANCE_FIELDS:
        value = payload.get(name)
        if value is not None and value != "":
            return to_decimal(value)
    return None


class HttpVoucherProvider:
    """
    ``VoucherProvider`` over HTTP using ``requests``.

    Contract:
        - ``authenticate`` POSTs ``{Username, Password, TerminalKey}`` to
          ``/Authenticate`` on the sandbox or production base URL.
        - Authenticated calls send the token both in the body and as a
          bearer header.
        - ``issue_voucher`` sends the face amount (not the wholesale
          price) with ``Quantity`` fixed by the caller, normally 1.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        http: requests.Session | None = None,
    ):
        self._settings = settings
        self._http = http or requests.Session()

    @property
    def timeout(self) -> float:
        return self._settings.timeout_seconds

    def authenticate(self, credentials: ProviderCredentials) -> ProviderSession:
        base_url = self._settings.base_url(credentials.sandbox)
        try:
            data = self._post(
                "Authenticate",
                f"{base_url}/Authenticate",
                {
                    "Username": credentials.username,
                    "Password": credentials.password,
                    "TerminalKey": credentials.terminal_key,
                },
            )
        except ProviderTransportError as exc:
            raise ProviderAuthenticationError(
                str(credentials.store_id), exc.reason,
            ) from exc

        if not data.get("OperationSucceeded"):
            raise ProviderAuthenticationError(
                str(credentials.store_id),
                data.get("ErrorText") or "Unknown error",
            )

        token = data.get("Token")
        if not token:
            raise ProviderAuthenticationError(
                str(credentials.store_id), "response carried no token",
            )

        balance = parse_balance(data)
        if balance is None:
            logger.warning(
                "provider_balance_missing",
                extra={"store_id": str(credentials.store_id)},
            )
            balance = Decimal("0")

        logger.info(
            "provider_authenticated",
            extra={
                "store_id": str(credentials.store_id),
                "sandbox": credentials.sandbox,
                "balance": balance,
            },
        )
        return ProviderSession(
            store_id=credentials.store_id,
            token=str(token),
            balance=balance,
            base_url=base_url,
        )

    def get_option_pricing(
        self, session: ProviderSession, option_code: str,
    ) -> OptionPricing:
        data = self._post(
            "GetAvailableProductOptionByCode",
            f"{session.base_url}/GetAvailableProductOptionByCode",
            {"Token": session.token, "ProductOptionCode": option_code},
            token=session.token,
        )

        if not data.get("OperationSucceeded"):
            raise ProviderPricingError(
                option_code, data.get("ErrorText") or "Unknown error",
            )

        option = data.get("AvailableProductOption")
        if not isinstance(option, dict):
            raise ProviderPricingError(option_code, "option not available")

        face_range = option.get("MinMaxFaceRangeValue") or {}
        wholesale_range = option.get("MinMaxRangeValue") or {}
        zero = Decimal("0")

        return OptionPricing(
            option_code=option_code,
            min_face_value=to_decimal(face_range.get("MinFaceValue"), zero),
            max_face_value=to_decimal(face_range.get("MaxFaceValue"), zero),
            min_wholesale_value=to_decimal(
                wholesale_range.get("MinWholesaleValue"), zero,
            ),
            max_wholesale_value=to_decimal(
                wholesale_range.get("MaxWholesaleValue"), zero,
            ),
            currency_code=option.get("CurrencyCode"),
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
        data = self._post(
            "DoTransaction",
            f"{session.base_url}/dotransaction",
            {
                "Token": session.token,
                "ExternalId": external_id,
                "ProductTypeCode": product_type_code,
                "ProductOptionCode": option_code,
                "Amount": _json_amount(face_amount),
                "Quantity": quantity,
            },
            token=session.token,
        )

        if not data.get("OperationSucceeded"):
            return IssueVoucherResult(
                succeeded=False,
                error_text=data.get("ErrorText") or "Unknown error",
                raw=data,
            )

        result = data.get("PaymentResultData") or {}
        return IssueVoucherResult(
            succeeded=True,
            serial_number=_optional_text(result.get("SerialNumber")),
            reference=_optional_text(result.get("Reference")),
            redeem_url=_optional_text(result.get("RedeemUrl")),
            settled_amount=_optional_decimal(result.get("ResponseAmount")),
            wholesale_amount=_optional_decimal(result.get("AmountWholesale")),
            transaction_id=_optional_text(result.get("TransactionId")),
            provider_transaction_id=_optional_text(
                result.get("ProviderTransactionId")
            ),
            raw=data,
        )

    def _post(
        self,
        operation: str,
        url: str,
        payload: dict[str, Any],
        token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self._http.post(
                url, json=payload, headers=headers, timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise ProviderTransportError(
                operation, f"timed out after {self.timeout:g}s",
            ) from exc
        except requests.RequestException as exc:
            raise ProviderTransportError(operation, str(exc)) from exc

        if not response.ok:
            raise ProviderTransportError(
                operation,
                f"HTTP {response.status_code}: {response.reason}",
                http_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderTransportError(
                operation, "response was not valid JSON",
                http_status=response.status_code,
            ) from exc

        if not isinstance(data, dict):
            raise ProviderTransportError(
                operation, "response was not a JSON object",
                http_status=response.status_code,
            )
        return data
