from mira.services.transport.base import Transport
from mira.services.transport.chatflow import ChatFlowTransport

__all__ = ["Transport", "ChatFlowTransport"]
