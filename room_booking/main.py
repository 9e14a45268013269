"""
Wiring for the room booking core.

Sets up logging and assembles a booking flow from settings, a credential
source, a notification sink and the host's checkout script injector.
"""

import json
import logging
from collections.abc import Callable

import httpx

from room_booking.auth.token_store import AuthProvider
from room_booking.clients.api_clients.booking_api import BookingAPIClient
from room_booking.clients.base_client import SecurityState
from room_booking.config.settings import Settings, get_settings
from room_booking.models.booking import RoomPricingInput
from room_booking.orchestration.booking_flow import (
    BookingOrchestrator,
    NotificationSink,
)
from room_booking.payments.gateway import (
    CheckoutScriptLoader,
    PaymentGatewayAdapter,
    ScriptInjector,
)
from room_booking.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    _RESERVED = set(vars(logging.makeLogRecord({})))

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Fields passed through `extra=`
        for key, value in vars(record).items():
            if key not in self._RESERVED and key not in log_entry:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(settings: Settings) -> None:
    """Setup logging configuration."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.enable_structured_logging:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logging.root.handlers = [handler]
    else:
        logging.basicConfig(level=level, format=settings.log_format)

    logging.getLogger().setLevel(level)
    # httpx logs every request at INFO; the client already does
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_booking_flow(
    room_id: str,
    room: RoomPricingInput,
    auth: AuthProvider,
    notify: NotificationSink,
    inject: ScriptInjector,
    settings: Settings | None = None,
    room_title: str | None = None,
    security_state: SecurityState | None = None,
    on_session_expired: Callable[[], None] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BookingOrchestrator:
    """
    Assemble a booking flow for one room.

    Args:
        room_id: Server id of the room being booked
        room: Rent and deposit of the room
        auth: Credential source of the current session
        notify: Sink for user-facing messages, called as (message, kind)
        inject: Host hook that loads the checkout script
        settings: Optional settings instance
        room_title: Shown in the checkout description
        security_state: CSRF/token cache shared with other clients
        on_session_expired: Called when the server rejects the session
        transport: Optional httpx transport

    Returns:
        A BookingOrchestrator in the details step

    Raises:
        ConfigurationError: If required settings are missing
    """
    settings = settings or get_settings()

    missing = settings.validate_required_settings()
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    api = BookingAPIClient(
        auth=auth,
        settings=settings,
        security_state=security_state or SecurityState(),
        on_session_expired=on_session_expired,
        transport=transport,
    )
    checkout = settings.get_checkout_config()
    loader = CheckoutScriptLoader(checkout["script_url"], inject)
    gateway = PaymentGatewayAdapter(loader, settings)

    logger.debug(
        "Booking flow assembled",
        extra={"room_id": room_id, **settings.get_client_config(), **checkout},
    )

    return BookingOrchestrator(
        room_id=room_id,
        room=room,
        api=api,
        gateway=gateway,
        auth=auth,
        notify=notify,
        settings=settings,
        room_title=room_title,
    )
