# cp_core/common/events.py
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Any

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]

_registry: Dict[str, List[Handler]] = defaultdict(list)


def subscribe(event_name: str):
    """
    Decorator to register an event handler.
    Usage:
        @subscribe("billing.line_item.settled")
        def handler(payload): ...
    """
    def _decorator(fn: Handler) -> Handler:
        if fn not in _registry[event_name]:
            _registry[event_name].append(fn)
        return fn
    return _decorator


def publish(event_name: str, payload: Dict[str, Any]) -> None:
    """
    Publish an event to in-process subscribers.
    Keep payloads ID-based to avoid cross-app imports.

    Handlers run synchronously inside the caller's transaction; a handler that
    must not break the publisher is responsible for its own isolation.
    """
    handlers = _registry.get(event_name, [])
    logger.debug("Publishing event", extra={"event_name": event_name, "handlers": len(handlers)})
    for handler in handlers:
        handler(payload)
