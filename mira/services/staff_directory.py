import asyncio
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from mira.errors import TransientExternalFailure
from mira.logging_config import get_logger
from mira.services.sheets_service import Rows, SheetsClient

logger = get_logger("staff_directory")

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_STAFF_NAME = "Staff Member"


@dataclass(frozen=True)
class StaffMember:
    name: str
    number: str


StaffDirectory = dict[str, list[StaffMember]]


def normalize_staff_number(raw: str, jid_suffix: str) -> Optional[str]:
    """Turn a phone number cell into a transport JID, or None if it has no digits."""
    value = (raw or "").strip()
    if "@" in value:
        value = re.sub(r"\s+", "", value)
    else:
        digits = re.sub(r"\D", "", value)
        if not digits:
            return None
        value = f"{digits}{jid_suffix}"

    if not re.fullmatch(r"\d+" + re.escape(jid_suffix), value):
        return None
    return value


def parse_staff_rows(rows: Rows, jid_suffix: str) -> StaffDirectory:
    """Build department -> members from sheet rows (department, number, name); first row is a header."""
    directory: StaffDirectory = {}
    for row in rows[1:]:
        if not row or len(row) < 2:
            continue

        department, number = row[0], row[1]
        name = row[2] if len(row) > 2 else ""
        if not department or not number:
            continue

        jid = normalize_staff_number(number, jid_suffix)
        if jid is None:
            logger.warning("Invalid staff phone format", extra={"context": {"name": name, "number": number}})
            continue

        dept = department.strip().lower()
        directory.setdefault(dept, []).append(StaffMember(name=name.strip() or DEFAULT_STAFF_NAME, number=jid))
    return directory


class StaffDirectoryCache:
    """Department directory snapshot read from the staff sheet, cached with a TTL."""

    def __init__(
        self,
        sheets: SheetsClient,
        sheet_id: Optional[str],
        sheet_range: str,
        jid_suffix: str,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sheets = sheets
        self.sheet_id = sheet_id
        self.sheet_range = sheet_range
        self.jid_suffix = jid_suffix
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[StaffDirectory] = None
        self._fetched_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def _is_fresh(self) -> bool:
        return self._snapshot is not None and self._clock() - self._fetched_at < self.ttl_seconds

    async def get(self) -> StaffDirectory:
        if self._is_fresh():
            return self._snapshot
        return await self.refresh()

    async def refresh(self) -> StaffDirectory:
        """Fetch the sheet. On failure keep the previous snapshot (empty if none)."""
        async with self._lock:
            try:
                rows = await self.sheets.get_values(self.sheet_id, self.sheet_range)
            except TransientExternalFailure as e:
                logger.error("Error fetching staff directory", extra={"context": {"error": str(e)}})
                return self._snapshot or {}

            if len(rows) <= 1:
                logger.error("No staff data found")
                return self._snapshot or {}

            self._snapshot = parse_staff_rows(rows, self.jid_suffix)
            self._fetched_at = self._clock()
            logger.info(
                "Staff directory loaded",
                extra={"context": {dept: len(members) for dept, members in self._snapshot.items()}},
            )
            return self._snapshot

    async def members(self, department: str) -> list[StaffMember]:
        directory = await self.get()
        return list(directory.get(department.strip().lower(), []))
