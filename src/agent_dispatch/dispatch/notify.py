"""Fire-and-forget change notifications for UI clients."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, topic: str, payload: dict[str, object]) -> None:
        """Signal that state under ``topic`` changed; must not raise."""


class LoggingNotifier:
    """Default notifier: records the signal in the log."""

    def notify(self, topic: str, payload: dict[str, object]) -> None:
        logger.debug("notify %s %s", topic, payload)


class CompositeNotifier:
    """Fan a signal out to several notifiers, isolating their failures."""

    def __init__(self, *notifiers: Notifier) -> None:
        self.notifiers = list(notifiers)

    def notify(self, topic: str, payload: dict[str, object]) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(topic, payload)
            except Exception:
                logger.exception("Notifier %r failed for %s", notifier, topic)
