"""Stripe coupon and promotion-code operations on connected accounts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import stripe as stripe_sdk

from billingos.config import Settings, get_settings

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    stripe_sdk.APIConnectionError,
    stripe_sdk.RateLimitError,
)


class PaymentMirrorError(RuntimeError):
    """A remote mirror call failed.

    ``transient`` marks network, timeout and rate-limit failures, which a
    caller could retry; everything else (invalid requests, auth) is permanent.
    """

    def __init__(self, operation: str, message: str, *, transient: bool = False) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.transient = transient


@dataclass(frozen=True)
class CouponSpec:
    name: str
    duration: str
    percent_off: float | None = None
    amount_off: int | None = None
    currency: str | None = None
    duration_in_months: int | None = None
    max_redemptions: int | None = None

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"name": self.name, "duration": self.duration}
        if self.percent_off is not None:
            params["percent_off"] = self.percent_off
        elif self.amount_off is not None and self.currency:
            params["amount_off"] = self.amount_off
            params["currency"] = self.currency
        else:
            raise ValueError("Either percent_off or amount_off/currency is required")
        if self.duration == "repeating" and self.duration_in_months is not None:
            params["duration_in_months"] = self.duration_in_months
        if self.max_redemptions is not None:
            params["max_redemptions"] = self.max_redemptions
        return params


class PaymentMirror(Protocol):
    """Remote coupon operations, each scoped to a connected account."""

    async def create_coupon(self, spec: CouponSpec, *, account_id: str) -> str: ...

    async def create_promotion_code(
        self,
        coupon_id: str,
        code: str,
        *,
        account_id: str,
        expires_at: datetime | None = None,
    ) -> str: ...

    async def update_coupon(self, coupon_id: str, *, name: str, account_id: str) -> None: ...

    async def deactivate_promotion_code(
        self, promotion_code_id: str, *, account_id: str
    ) -> None: ...

    async def delete_coupon(self, coupon_id: str, *, account_id: str) -> None: ...


def _get_stripe_client(settings: Settings):
    if not settings.stripe_secret_key:
        raise RuntimeError("Stripe is not configured")
    stripe_sdk.api_key = settings.stripe_secret_key
    stripe_sdk.max_network_retries = settings.stripe_max_network_retries
    stripe_sdk.default_http_client = stripe_sdk.RequestsClient(
        timeout=settings.stripe_timeout_seconds
    )
    return stripe_sdk


def _as_timestamp(value: datetime) -> int:
    normalized = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    return int(normalized.timestamp())


class StripePaymentMirror:
    """PaymentMirror backed by the Stripe SDK.

    The SDK is synchronous, so each call runs in a worker thread and is
    abandoned after ``timeout_seconds``.
    """

    def __init__(self, client: Any, *, timeout_seconds: float) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> StripePaymentMirror:
        settings = settings or get_settings()
        return cls(_get_stripe_client(settings), timeout_seconds=settings.stripe_timeout_seconds)

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self._timeout_seconds,
            )
        except TimeoutError as exc:
            raise PaymentMirrorError(
                operation,
                f"timed out after {self._timeout_seconds}s",
                transient=True,
            ) from exc
        except Exception as exc:
            raise PaymentMirrorError(
                operation,
                str(exc).strip() or exc.__class__.__name__,
                transient=isinstance(exc, _TRANSIENT_ERRORS),
            ) from exc

    async def create_coupon(self, spec: CouponSpec, *, account_id: str) -> str:
        coupon = await self._call(
            "create_coupon",
            self._client.Coupon.create,
            stripe_account=account_id,
            **spec.to_params(),
        )
        return str(coupon["id"])

    async def create_promotion_code(
        self,
        coupon_id: str,
        code: str,
        *,
        account_id: str,
        expires_at: datetime | None = None,
    ) -> str:
        payload: dict[str, Any] = {"coupon": coupon_id, "code": code, "active": True}
        if expires_at is not None:
            payload["expires_at"] = _as_timestamp(expires_at)
        promotion_code = await self._call(
            "create_promotion_code",
            self._client.PromotionCode.create,
            stripe_account=account_id,
            **payload,
        )
        return str(promotion_code["id"])

    async def update_coupon(self, coupon_id: str, *, name: str, account_id: str) -> None:
        # Stripe only allows name and metadata changes on an existing coupon.
        await self._call(
            "update_coupon",
            self._client.Coupon.modify,
            coupon_id,
            name=name,
            stripe_account=account_id,
        )

    async def deactivate_promotion_code(self, promotion_code_id: str, *, account_id: str) -> None:
        await self._call(
            "deactivate_promotion_code",
            self._client.PromotionCode.modify,
            promotion_code_id,
            active=False,
            stripe_account=account_id,
        )

    async def delete_coupon(self, coupon_id: str, *, account_id: str) -> None:
        await self._call(
            "delete_coupon",
            self._client.Coupon.delete,
            coupon_id,
            stripe_account=account_id,
        )
