import logging
from typing import Optional

from mmart.core.errors import DeliveryFailed

logger = logging.getLogger(__name__)


class ChannelSender:
    """Delivers a message to a phone number or email address.

    Subclasses implement ``_deliver`` and raise on failure; ``send`` turns any
    failure into ``False`` so callers never have to handle transport errors.
    """

    name = "base"

    def send(
        self,
        address: str,
        message: str,
        subject: Optional[str] = None,
        html: Optional[str] = None,
    ) -> bool:
        try:
            self._deliver(address, message, subject=subject, html=html)
        except DeliveryFailed as e:
            logger.warning(
                "%s delivery to %s failed: %s",
                self.name,
                address,
                e.message,
                extra={"error_code": e.code},
            )
            return False
        except Exception as e:
            logger.exception("%s delivery to %s raised: %s", self.name, address, e)
            return False
        return True

    def _deliver(self, address: str, message: str, subject: Optional[str] = None, html: Optional[str] = None) -> None:
        raise NotImplementedError
