"""
Per-wizard event bus.

Steps, the scheduler and child wizards publish here; whoever renders or
embeds the wizard subscribes. One bus per wizard instance, never global.
"""

from enum import Enum
from typing import Callable, Dict, List, Optional

from .logger import StructuredLogger, get_logger


class WizardEvent(str, Enum):
    STEP_CHANGED = "step_changed"            # index, can_advance
    VALIDATION_CHANGED = "validation_changed"  # index, is_valid
    FIELD_VALIDATED = "field_validated"      # field_key, state
    WIZARD_RESET = "wizard_reset"            # index
    SUBMISSION_FAILED = "submission_failed"  # message, field_errors


Handler = Callable[..., None]


class EventBus:
    """Synchronous publish/subscribe keyed by WizardEvent."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self._handlers: Dict[WizardEvent, List[Handler]] = {}
        self._logger = logger or get_logger()

    def subscribe(self, topic: WizardEvent, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``topic``; returns an unsubscribe function."""
        self._handlers.setdefault(topic, []).append(handler)

        def unsubscribe():
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: WizardEvent, **payload) -> None:
        """
        Deliver ``payload`` to every handler of ``topic`` in subscription order.

        A failing handler is logged and skipped; it never breaks the
        publisher or the remaining handlers.
        """
        for handler in list(self._handlers.get(topic, [])):
            try:
                handler(**payload)
            except Exception as e:
                self._logger.record_error(type(e).__name__)
                self._logger.error(
                    "Event handler failed",
                    topic=topic.value,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )

    def handler_count(self, topic: WizardEvent) -> int:
        return len(self._handlers.get(topic, []))
