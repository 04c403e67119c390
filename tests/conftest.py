from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, Mock

import pytest

from mira.config import Settings
from mira.services.drive_service import DriveClient
from mira.services.pipeline import InboundMessage, MessagePipeline, build_context
from mira.services.sheets_service import SheetsClient
from mira.services.transport.base import Transport

CLIENT = "94771234567@s.whatsapp.net"
STAFF = "94770000001@s.whatsapp.net"
STAFF_ROWS = [
    ["Department", "Number", "Name"],
    ["accounts", "+94 77 000 0001", "Nimal"],
    ["it", "94770000002", "Kasun"],
]


class FakeClock:
    """Settable clock returning aware datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeSeconds:
    """Settable float clock for time.time/monotonic style callers."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(Transport):
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[tuple[str, str]] = []
        self.documents: list[tuple[str, str, Optional[str]]] = []
        self.failing_recipients: set[str] = set()

    @property
    def is_ready(self) -> bool:
        return True

    async def send_text(self, recipient: str, text: str) -> bool:
        if not self.ok or recipient in self.failing_recipients:
            return False
        self.sent.append((recipient, text))
        return True

    async def send_document(self, recipient: str, url: str, caption: Optional[str] = None) -> bool:
        if not self.ok:
            return False
        self.documents.append((recipient, url, caption))
        return True

    def texts_to(self, recipient: str) -> list[str]:
        return [text for to, text in self.sent if to == recipient]


def make_message(text: str, sender: str = CLIENT, timestamp: int = 1714550400, **kwargs) -> InboundMessage:
    return InboundMessage(sender=sender, text=text, timestamp=timestamp, **kwargs)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        staff_sheet_id="staff-sheet",
        factory_sheet_id="factory-sheet",
        sheet_id="elevation-sheet",
        elevation_avg_sheet_id="comparison-sheet",
        drive_folder_id="reports-folder",
        alert_bot_token=None,
        alert_chat_id=None,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sheets():
    client = Mock(spec=SheetsClient)
    client.get_values = AsyncMock(return_value=STAFF_ROWS)
    return client


@pytest.fixture
def drive():
    client = Mock(spec=DriveClient)
    client.find_report = AsyncMock(return_value=None)
    return client


@pytest.fixture
def context(test_settings, transport, sheets, drive):
    return build_context(test_settings, transport=transport, sheets=sheets, drive=drive)


@pytest.fixture
def pipeline(context):
    return MessagePipeline(context)
