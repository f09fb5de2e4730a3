"""
Downstream storefront client for attaching digital codes to products.

The storefront endpoint is idempotent for repeated codes and reports the
codes it refused in ``data.rejected_codes``; every other submitted code
counts as accepted.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from voucher_config.settings import StorefrontSettings
from voucher_kernel.exceptions import StorefrontAttachmentError
from voucher_kernel.logging_config import get_logger

logger = get_logger("clients.storefront")


@dataclass(frozen=True)
class AttachResult:
    """Per-code outcome of one attach call."""

    product_id: str
    accepted: tuple[str, ...]
    rejected: tuple[str, ...] = ()
    message: str | None = None


class StorefrontClient(Protocol):
    def attach_codes(
        self,
        access_token: str,
        product_id: str,
        codes: Sequence[str],
    ) -> AttachResult: ...


class HttpStorefrontClient:
    """``StorefrontClient`` over HTTP using ``requests``."""

    def __init__(
        self,
        settings: StorefrontSettings,
        http: requests.Session | None = None,
    ):
        self._settings = settings
        self._http = http or requests.Session()

    def attach_codes(
        self,
        access_token: str,
        product_id: str,
        codes: Sequence[str],
    ) -> AttachResult:
        """
        POST ``{codes: [...]}`` to ``/products/{product_id}/digital-codes``.

        Raises:
            StorefrontAttachmentError: transport failure, non-2xx status,
                a body that is not a JSON object, or ``success: false``.
        """
        url = f"{self._settings.base_url}/products/{product_id}/digital-codes"
        try:
            response = self._http.post(
                url,
                json={"codes": list(codes)},
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                timeout=self._settings.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise StorefrontAttachmentError(product_id, str(exc)) from exc

        if not response.ok:
            raise StorefrontAttachmentError(
                product_id, f"HTTP {response.status_code} - {response.text}",
            )

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise StorefrontAttachmentError(
                product_id, "response was not valid JSON",
            ) from exc

        if not isinstance(body, dict):
            raise StorefrontAttachmentError(
                product_id, "response was not a JSON object",
            )
        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise StorefrontAttachmentError(
                product_id, "response data was not a JSON object",
            )
        if not body.get("success"):
            raise StorefrontAttachmentError(
                product_id, data.get("message") or "Unknown error",
            )

        rejected = set(data.get("rejected_codes") or ())
        accepted = tuple(code for code in codes if code not in rejected)

        logger.info(
            "storefront_codes_attached",
            extra={
                "product_id": product_id,
                "accepted": len(accepted),
                "rejected": len(rejected),
            },
        )
        return AttachResult(
            product_id=product_id,
            accepted=accepted,
            rejected=tuple(code for code in codes if code in rejected),
            message=data.get("message"),
        )
