"""
tasks/notification_tasks.py
Celery task behind the notify(event, payload) hook.

The task renders the event into a message and hands it to the delivery
channel. Channel delivery (email/SMS) lives outside this service; here the
hand-off is logged. Unknown events are logged and dropped.

Usage:
    from tasks.notification_tasks import dispatch_event
    dispatch_event.apply_async(args=["booking.created", {...}], queue="notifications")
"""

import logging

from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Templates ──────────────────────────────────────────────────────────────────

TEMPLATES = {
    "booking.created": (
        "New booking request",
        "A new booking for '{service_title}' is scheduled on {scheduled_date}.",
    ),
    "booking.status_changed": (
        "Booking {status}",
        "Your booking for '{service_title}' is now {status}.",
    ),
    "booking.cancelled": (
        "Booking cancelled",
        "The booking for '{service_title}' on {scheduled_date} was cancelled.",
    ),
    "booking.reviewed": (
        "New review",
        "A customer rated '{service_title}' {rating}/5.",
    ),
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def render(event: str, payload: dict) -> dict | None:
    """Returns {"title", "body", "recipients"} or None for unknown events."""
    template = TEMPLATES.get(event)
    if not template:
        return None
    title, body = template
    values = _Defaults(payload)
    return {
        "title": title.format_map(values),
        "body": body.format_map(values),
        "recipients": list(payload.get("recipients", [])),
    }


# ── Task ───────────────────────────────────────────────────────────────────────

@celery_app.task(
    name="tasks.notification_tasks.dispatch_event",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
)
def dispatch_event(self, event: str, payload: dict) -> dict:
    """Render the event and hand it to the delivery channel."""
    message = render(event, payload)
    if message is None:
        logger.warning(f"No template for notification event '{event}', dropped")
        return {"event": event, "delivered": False}

    for recipient in message["recipients"]:
        logger.info(f"Notification '{event}' queued for {recipient}: {message['title']}")

    return {"event": event, "delivered": True, "recipients": len(message["recipients"])}
