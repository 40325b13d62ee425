"""
Fire-and-forget event emission.

Handlers are plain callables taking (event, payload). They run after the
writing transaction has committed; a failing handler is logged and never
reaches the caller.
"""

from typing import Callable, Dict, List

from quote_reconciliation.utils.logging import log_agent_action, setup_logging


logger = setup_logging(__name__)

QUOTE_RECEIVED = "quote_received"
MATCH_NEEDS_REVIEW = "match_needs_review"
ORDER_CREATED = "order_created"

EVENTS = (QUOTE_RECEIVED, MATCH_NEEDS_REVIEW, ORDER_CREATED)

Handler = Callable[[str, dict], None]

_handlers: List[Handler] = []


def subscribe(handler: Handler) -> Handler:
    """Register a handler. Usable as a decorator."""
    if handler not in _handlers:
        _handlers.append(handler)
    return handler


def unsubscribe(handler: Handler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


def emit(event: str, payload: Dict) -> int:
    """
    Deliver an event to every handler.

    Returns:
        Number of handlers that accepted the event.
    """
    if event not in EVENTS:
        raise ValueError(f"Unknown event: {event}")

    log_agent_action(logger, "Notifications", event, details=payload)
    delivered = 0
    for handler in list(_handlers):
        try:
            handler(event, payload)
            delivered += 1
        except Exception as e:
            logger.warning(f"Notification handler {getattr(handler, '__name__', handler)} failed for {event}: {e}")
    return delivered
