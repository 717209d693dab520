"""Event Bus - In-process publish/subscribe"""
import threading
from typing import Any, Dict, List, Tuple

from ..domain.interfaces import EventBus, EventHandler
from ..domain.triggers import matches_trigger, normalize_event
from ..utils.logger import get_logger

logger = get_logger(__name__)


class LocalEventBus(EventBus):
    """
    Synchronous event bus
    
    Handlers subscribe with an exact event name, a ``prefix.*`` pattern or
    ``*``. emit() calls every matching handler in subscription order on the
    caller's thread. A handler that raises is logged and the remaining
    handlers still run.
    """
    
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Tuple[str, EventHandler]] = []
    
    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions.append((normalize_event(pattern), handler))
    
    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions = [
                (p, h) for p, h in self._subscriptions
                if not (p == normalize_event(pattern) and h == handler)
            ]
    
    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        event = normalize_event(event_name)
        with self._lock:
            handlers = [h for p, h in self._subscriptions if matches_trigger(p, event)]
        
        logger.debug(
            f"Emitting {event} to {len(handlers)} handler(s)",
            extra={"event": event}
        )
        
        for handler in handlers:
            try:
                handler(event, payload)
            except Exception as e:
                logger.error(
                    f"Event handler failed for {event}: {e}",
                    extra={"event": event, "error_type": type(e).__name__},
                    exc_info=True
                )
