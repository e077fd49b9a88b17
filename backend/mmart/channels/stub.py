import logging
from typing import Optional

from mmart.channels.base import ChannelSender

logger = logging.getLogger(__name__)


class LoggingSender(ChannelSender):
    """Development sender: logs the message instead of sending it."""

    def __init__(self, name: str = "dummy"):
        self.name = name

    def _deliver(self, address: str, message: str, subject: Optional[str] = None, html: Optional[str] = None) -> None:
        if subject:
            logger.info("[%s] would send to %s (%s): %s", self.name, address, subject, message)
        else:
            logger.info("[%s] would send to %s: %s", self.name, address, message)
