from abc import ABC, abstractmethod
from typing import Optional


class Transport(ABC):
    """Abstract chat transport: delivers outbound text and documents."""

    @abstractmethod
    async def send_text(self, recipient: str, text: str) -> bool:
        """Send a text message. Returns False when delivery failed."""
        pass

    @abstractmethod
    async def send_document(self, recipient: str, url: str, caption: Optional[str] = None) -> bool:
        """Send a document by public URL. Returns False when delivery failed."""
        pass

    @property
    def is_ready(self) -> bool:
        return True
