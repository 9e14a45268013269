"""
Payment checkout adapter.

Loads the third-party checkout script once and turns the checkout widget's
callbacks (handler, modal.ondismiss, payment.failed) into a single awaitable
result for the booking flow.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from room_booking.config.settings import Settings
from room_booking.models.booking import GuestDetails, PaymentOrder, PaymentResult
from room_booking.utils.exceptions import (
    CheckoutBusyError,
    GatewayLoadError,
    PaymentFailedError,
    UserCancelledError,
)

logger = logging.getLogger(__name__)


class CheckoutWidget(Protocol):
    def open(self) -> None: ...


CheckoutFactory = Callable[[dict[str, Any]], CheckoutWidget]
ScriptInjector = Callable[[str], Awaitable[CheckoutFactory | None]]


class CheckoutScriptLoader:
    """
    Lazily injects the checkout script, at most once per loader.

    The host supplies `inject(url)`, which adds the script to the page and
    returns the widget constructor it exposes, or None if the constructor
    never appeared. Concurrent callers share one in-flight load.
    """

    def __init__(self, script_url: str, inject: ScriptInjector) -> None:
        self.script_url = script_url
        self._inject = inject
        self._load_task: asyncio.Task | None = None

    @property
    def is_loaded(self) -> bool:
        task = self._load_task
        return (
            task is not None
            and task.done()
            and not task.cancelled()
            and task.exception() is None
        )

    async def _load(self) -> CheckoutFactory:
        logger.info("Loading checkout script", extra={"script_url": self.script_url})
        try:
            factory = await self._inject(self.script_url)
        except Exception as e:
            raise GatewayLoadError(
                f"Failed to load payment gateway: {e}",
                details={"script_url": self.script_url},
            ) from e

        if factory is None:
            raise GatewayLoadError(
                "Payment gateway script loaded without a checkout constructor",
                details={"script_url": self.script_url},
            )
        return factory

    async def load(self) -> CheckoutFactory:
        """
        Return the checkout constructor, injecting the script on first use.

        Raises:
            GatewayLoadError: If the script failed to load; the next call retries
        """
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load())

        task = self._load_task
        try:
            return await asyncio.shield(task)
        except GatewayLoadError:
            if self._load_task is task:
                self._load_task = None
            raise


def build_checkout_options(
    order: PaymentOrder,
    guest: GuestDetails,
    settings: Settings,
    handler: Callable[[dict[str, Any]], None],
    ondismiss: Callable[[], None],
    description: str | None = None,
    notes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Checkout widget configuration for one payment order."""
    return {
        "key": order.key_id,
        "amount": order.amount,
        "currency": order.currency,
        "name": settings.merchant_name,
        "description": description or "Room Booking Payment",
        "order_id": order.order_id,
        "prefill": {
            "name": guest.name,
            "email": guest.email,
            "contact": guest.phone,
        },
        "notes": notes or {},
        "theme": {"color": settings.theme_color},
        "handler": handler,
        "modal": {"ondismiss": ondismiss},
    }


class PaymentGatewayAdapter:
    """Opens the checkout widget and awaits its outcome."""

    def __init__(
        self, loader: CheckoutScriptLoader, settings: Settings | None = None
    ) -> None:
        self.loader = loader
        self.settings = settings or Settings()
        self._pending: asyncio.Future[PaymentResult] | None = None

    @property
    def is_open(self) -> bool:
        return self._pending is not None

    def cancel(self) -> None:
        """Reject the open checkout, if any, and free the adapter for a new one."""
        future = self._pending
        if future is None:
            return
        self._pending = None
        if not future.done():
            logger.info("Abandoning open payment checkout")
            future.set_exception(UserCancelledError("Payment checkout was closed"))

    async def open(
        self,
        order: PaymentOrder,
        guest: GuestDetails,
        description: str | None = None,
        notes: dict[str, Any] | None = None,
    ) -> PaymentResult:
        """
        Open the checkout for an order and wait for the user to finish.

        Args:
            order: Server-issued payment order
            guest: Details used to prefill the checkout
            description: Line shown under the merchant name
            notes: Notes attached to the checkout

        Returns:
            PaymentResult from the widget's success handler

        Raises:
            CheckoutBusyError: If another checkout is still open
            GatewayLoadError: If the checkout script could not be loaded
            UserCancelledError: If the user dismissed the checkout or it was
                cancelled
            PaymentFailedError: If the widget reported a failed payment
        """
        if self._pending is not None:
            raise CheckoutBusyError("A payment checkout is already open")

        future: asyncio.Future[PaymentResult] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending = future
        try:
            factory = await self.loader.load()
            if future.done():
                # Cancelled while the script was loading
                return await future

            def handler(response: dict[str, Any]) -> None:
                if future.done():
                    logger.debug("Ignoring checkout callback after settlement")
                    return
                try:
                    future.set_result(PaymentResult.model_validate(response))
                except PydanticValidationError as e:
                    future.set_exception(
                        PaymentFailedError(f"Malformed checkout response: {e}")
                    )

            def ondismiss() -> None:
                if not future.done():
                    future.set_exception(
                        UserCancelledError("Payment cancelled by user")
                    )

            def on_payment_failed(response: dict[str, Any]) -> None:
                if future.done():
                    return
                error = (response or {}).get("error") or {}
                reason = error.get("description") or "Payment failed"
                future.set_exception(
                    PaymentFailedError(f"Payment failed: {reason}", details=error)
                )

            options = build_checkout_options(
                order,
                guest,
                self.settings,
                handler=handler,
                ondismiss=ondismiss,
                description=description,
                notes=notes,
            )

            widget = factory(options)
            if hasattr(widget, "on"):
                widget.on("payment.failed", on_payment_failed)

            logger.info(
                "Opening payment checkout",
                extra={"order_id": order.order_id, "amount": order.amount},
            )
            widget.open()
            return await future
        finally:
            if self._pending is future:
                self._pending = None
            if future.done() and not future.cancelled():
                future.exception()
