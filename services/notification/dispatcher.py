"""
services/notification/dispatcher.py
The fire-and-forget notify(event, payload) hook.

Events are published to the Celery notifications queue. Publishing goes
through a circuit breaker (broker outages stop costing request time) and a
short tenacity retry. A failure is logged and never reaches the caller.
"""

import logging

from pybreaker import CircuitBreaker, CircuitBreakerError
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)

notification_breaker = CircuitBreaker(
    fail_max=settings.NOTIFY_BREAKER_FAIL_MAX,
    reset_timeout=settings.NOTIFY_BREAKER_RESET_SECONDS,
    name="notifications",
)


class NotificationDispatcher:
    def __init__(self, breaker: CircuitBreaker = notification_breaker):
        self.breaker = breaker

    def _publish(self, event: str, payload: dict) -> None:
        from tasks.notification_tasks import dispatch_event

        dispatch_event.apply_async(args=[event, payload], queue="notifications")

    @retry(
        stop=stop_after_attempt(settings.NOTIFY_MAX_RETRIES),
        wait=wait_exponential(multiplier=0.2, max=2),
        retry=retry_if_not_exception_type(CircuitBreakerError),
        reraise=True,
    )
    def _publish_guarded(self, event: str, payload: dict) -> None:
        self.breaker.call(self._publish, event, payload)

    def notify(self, event: str, payload: dict) -> bool:
        """Returns False when the event could not be published."""
        try:
            self._publish_guarded(event, payload)
        except CircuitBreakerError:
            logger.warning(f"Notification circuit open, dropped '{event}'")
            return False
        except Exception as e:
            logger.warning(f"Notification '{event}' could not be published: {e}")
            return False
        return True


_dispatcher = NotificationDispatcher()


def get_notifier() -> NotificationDispatcher:
    """FastAPI dependency. Tests override it with a recorder."""
    return _dispatcher


def booking_payload(booking, recipients: list[str], **extra) -> dict:
    """Common payload for booking events. booking must be hydrated."""
    return {
        "booking_id": str(booking.id),
        "service_title": booking.service.title,
        "scheduled_date": booking.scheduled_date.isoformat(),
        "status": getattr(booking.status, "value", booking.status),
        "recipients": recipients,
        **extra,
    }
