from unittest.mock import AsyncMock, Mock

import pytest

from mira.errors import TransientExternalFailure
from mira.services.sheets_service import SheetsClient
from mira.services.staff_directory import (
    StaffDirectoryCache,
    StaffMember,
    normalize_staff_number,
    parse_staff_rows,
)
from tests.conftest import STAFF, STAFF_ROWS, FakeSeconds

SUFFIX = "@s.whatsapp.net"


def make_cache(rows=STAFF_ROWS, clock=None):
    sheets = Mock(spec=SheetsClient)
    sheets.get_values = AsyncMock(return_value=rows)
    cache = StaffDirectoryCache(sheets, "staff-sheet", "SF01", SUFFIX, ttl_seconds=300, clock=clock or FakeSeconds())
    return cache, sheets


class TestNormalizeStaffNumber:
    def test_digits_get_suffix(self):
        assert normalize_staff_number("+94 77-000 0001", SUFFIX) == STAFF

    def test_existing_jid_kept(self):
        assert normalize_staff_number(" 94770000001@s.whatsapp.net ", SUFFIX) == STAFF

    def test_invalid(self):
        assert normalize_staff_number("n/a", SUFFIX) is None
        assert normalize_staff_number("abc@example.com", SUFFIX) is None


class TestParseStaffRows:
    def test_groups_by_lower_case_department(self):
        directory = parse_staff_rows(
            [["Dept", "Number", "Name"], ["Accounts", "94770000001", "Nimal"], ["ACCOUNTS", "94770000003", ""]],
            SUFFIX,
        )
        assert directory["accounts"] == [
            StaffMember(name="Nimal", number=STAFF),
            StaffMember(name="Staff Member", number="94770000003@s.whatsapp.net"),
        ]

    def test_skips_header_and_invalid_rows(self):
        directory = parse_staff_rows(
            [["accounts", "94770000001", "Header"], ["it"], ["it", "none", "Bad"], ["", "9477", "No dept"]],
            SUFFIX,
        )
        assert directory == {}


class TestStaffDirectoryCache:
    @pytest.mark.asyncio
    async def test_members_by_department(self):
        cache, _ = make_cache()
        members = await cache.members("Accounts")
        assert [m.name for m in members] == ["Nimal"]
        assert cache.loaded is True

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self):
        clock = FakeSeconds()
        cache, sheets = make_cache(clock=clock)
        await cache.get()
        await cache.get()
        assert sheets.get_values.await_count == 1

        clock.advance(301)
        await cache.get()
        assert sheets.get_values.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_snapshot(self):
        cache, sheets = make_cache()
        await cache.refresh()

        sheets.get_values.side_effect = TransientExternalFailure("sheet down")
        directory = await cache.refresh()
        assert "accounts" in directory

    @pytest.mark.asyncio
    async def test_first_failure_is_empty(self):
        cache, sheets = make_cache()
        sheets.get_values.side_effect = TransientExternalFailure("sheet down")
        assert await cache.refresh() == {}
        assert cache.loaded is False
