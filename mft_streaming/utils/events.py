"""Event emitter for transfer lifecycle notifications."""
from typing import Callable, Dict, List
import asyncio
import logging
logger = logging.getLogger(__name__)

TRANSFER_START = "transfer_start"        # (request)
TRANSFER_COMPLETE = "transfer_complete"  # (outcome)
TRANSFER_FAIL = "transfer_fail"          # (outcome)


class EventEmitter:
    """Simple event emitter. Listeners may be plain callables or coroutines."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        listeners = self._listeners.setdefault(event_name, [])
        if callback not in listeners:
            listeners.append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        listeners = self._listeners.get(event_name, [])
        if callback in listeners:
            listeners.remove(callback)

    async def emit(self, event_name: str, *args, **kwargs):
        """
        Emit an event to all listeners.

        A failing listener is logged and never propagates into the transfer.
        """
        for callback in list(self._listeners.get(event_name, [])):
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(*args, **kwargs)
                else:
                    callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}")
