"""Alert delivery for the scheduled recovery runner."""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class AlertSink(ABC):
    """Destination for operator alerts."""

    @abstractmethod
    def notify(self, message: str) -> None:
        raise NotImplementedError


class LoggingAlertSink(AlertSink):
    """Writes alerts to the log. The default when no paging system is wired in."""

    def __init__(self, logger_name: str = "payment_sync.alerts"):
        self._logger = logging.getLogger(logger_name)

    def notify(self, message: str) -> None:
        self._logger.warning(f"ALERT: {message}")
