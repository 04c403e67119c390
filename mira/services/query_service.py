"""Factory, elevation and market report lookups against the published sheets and Drive."""

import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Sequence

from mira.errors import TransientExternalFailure, ValidationFailure
from mira.logging_config import get_logger, mask_sender
from mira.services.drive_service import DriveClient
from mira.services.intent_service import MAX_FACTORY_CODES, extract_factory_codes
from mira.services.message_service import (
    MSG_ELEVATION_NOT_FOUND,
    MSG_FACTORY_CODES_MISSING,
    MSG_FACTORY_CODES_TOO_MANY,
    MSG_FACTORY_NOT_FOUND,
    MSG_REPORT_NOT_FOUND,
    MSG_SALE_NUMBER_REQUIRED,
    MSG_SOURCE_UNAVAILABLE,
    RULE,
    THIN_RULE,
)
from mira.services.result import Result
from mira.services.sheets_service import Rows, SheetsClient
from mira.services.transport.base import Transport

logger = get_logger("query_service")

FACTORY_HEADER_SEARCH_ROWS = 5
ELEVATION_HEADER_SEARCH_ROWS = 3
DOTTED_RULE = "┈" * 42

ELEVATION_EMOJIS = {
    "UH": "⛰️",
    "WH": "🏔️",
    "H": "🗻",
    "UM": "🏞️",
    "WM": "🌄",
    "M": "🌄",
    "L": "🌳",
    "BT": "🍃",
}
DEFAULT_ELEVATION_EMOJI = "🍃"


@dataclass
class FactoryRecord:
    elevation: str
    factory: str
    fcode: str
    wqty: str = "0"
    wavg: str = "0"
    mqty: str = "0"
    mavg: str = "0"
    yqty: str = "0"
    yavg: str = "0"
    wrank: str = "-"
    mrank: str = "-"
    yrank: str = "-"


def _as_int(value: Optional[str]) -> Optional[int]:
    """Leading integer of a cell, e.g. "045" -> 45, "38A" -> 38."""
    match = re.match(r"\s*(-?\d+)", value or "")
    return int(match.group(1)) if match else None


def _as_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return None


def _cell(row: Sequence[str], index: int, default: str) -> str:
    if index < 0 or index >= len(row):
        return default
    value = (row[index] or "").strip()
    return value or default


def find_header_row(rows: Rows, markers: Sequence[str], search_rows: int) -> Optional[tuple[int, list[str]]]:
    """Locate the first row (within `search_rows`) carrying any of the marker names."""
    for index, row in enumerate(rows[:search_rows]):
        if row and any(marker in (cell or "").upper() for cell in row for marker in markers):
            return index, [(cell or "").upper().strip() for cell in row]
    return None


def _index_of(headers: list[str], name: str) -> int:
    return headers.index(name) if name in headers else -1


def _sale_column(headers: list[str], short_sale_only: bool = False) -> int:
    for index, header in enumerate(headers):
        if "SALENO" in header:
            return index
        if "SALE" in header and (not short_sale_only or len(header) < 10):
            return index
    return -1


def _average_column(headers: list[str]) -> int:
    for index, header in enumerate(headers):
        if ("TOTAL" in header and "AVG" in header) or header == "TOTAL AVG":
            return index
    return -1


def parse_factory_rows(rows: Rows, factory_codes: Sequence[str], sale_no: Optional[str]) -> list[FactoryRecord]:
    header = find_header_row(rows, ("YEAR", "SALENO", "FCODE"), FACTORY_HEADER_SEARCH_ROWS)
    if header is None:
        logger.error("Header row not found in factory sheet")
        return []

    header_index, headers = header
    fcode_col = _index_of(headers, "FCODE")
    if fcode_col == -1:
        logger.error("FCODE column not found in factory sheet")
        return []

    sale_col = _sale_column(headers, short_sale_only=True)
    wanted_sale = _as_int(sale_no) if sale_no else None
    wanted_codes = {re.sub(r"\s+", "", code).upper() for code in factory_codes}
    columns = {
        name.lower(): _index_of(headers, name)
        for name in ("WQTY", "WAVG", "MQTY", "MAVG", "YQTY", "YAVG", "WRANK", "MRANK", "YRANK")
    }

    records: list[FactoryRecord] = []
    for row in rows[header_index + 1 :]:
        fcode = _cell(row, fcode_col, "")
        if not fcode or re.sub(r"\s+", "", fcode).upper() not in wanted_codes:
            continue
        if wanted_sale is not None and sale_col != -1 and _as_int(_cell(row, sale_col, "")) != wanted_sale:
            continue

        records.append(
            FactoryRecord(
                elevation=_cell(row, _index_of(headers, "ELEVATION"), "N/A"),
                factory=_cell(row, _index_of(headers, "FACTORY"), "Unknown"),
                fcode=fcode,
                **{
                    name: _cell(row, index, "-" if name.endswith("rank") else "0")
                    for name, index in columns.items()
                },
            )
        )
    return records


def parse_elevation_averages(rows: Rows, sale_no: str, search_rows: int) -> dict[str, str]:
    """Map elevation -> TOTAL AVG cell for one sale. Empty when the sheet has no usable header."""
    header = find_header_row(rows, ("SALENO",) if search_rows > 1 else ("SALE",), search_rows)
    if header is None:
        return {}

    header_index, headers = header
    sale_col = _sale_column(headers)
    elevation_col = _index_of(headers, "ELEVATION")
    avg_col = _average_column(headers)
    if -1 in (sale_col, elevation_col, avg_col):
        logger.error("Required elevation columns not found", extra={"context": {"headers": headers}})
        return {}

    wanted_sale = _as_int(sale_no)
    averages: dict[str, str] = {}
    for row in rows[header_index + 1 :]:
        if _as_int(_cell(row, sale_col, "")) != wanted_sale:
            continue
        elevation = _cell(row, elevation_col, "")
        average = _cell(row, avg_col, "")
        if elevation and average and average != "NULL":
            averages[elevation.upper()] = average
    return averages


def _format_quantity(value: float) -> str:
    return f"{value:,.0f}" if value.is_integer() else f"{value:,.2f}"


def _has_rank(rank: str) -> bool:
    return rank not in ("-", "0")


def _period_lines(title: str, qty: str, avg: str, rank: str) -> list[str]:
    lines = [
        title,
        f"   Quantity: {_format_quantity(_as_float(qty) or 0.0)} kg",
        f"   Average: Rs. {(_as_float(avg) or 0.0):.2f}",
    ]
    if _has_rank(rank):
        lines.append(f"   🏆 Rank: #{rank}")
    return lines


def _market_comparison(weekly_avg: float, market_avg: Optional[float]) -> Optional[str]:
    if not market_avg or weekly_avg <= 0:
        return None
    diff = weekly_avg - market_avg
    percent = diff / market_avg * 100
    if diff > 0:
        return f"   ✅ Above Market: +Rs. {diff:.2f} (+{percent:.1f}%)"
    if diff < 0:
        return f"   ⚠️ Below Market: Rs. {diff:.2f} ({percent:.1f}%)"
    return "   ➖ At Market Average"


def format_factory_report(
    records: Sequence[FactoryRecord], sale_no: Optional[str], market_averages: dict[str, float]
) -> str:
    by_elevation: "OrderedDict[str, list[FactoryRecord]]" = OrderedDict()
    for record in records:
        by_elevation.setdefault(record.elevation.upper(), []).append(record)

    lines = ["🏭 *FACTORY PERFORMANCE REPORT*"]
    if sale_no:
        lines.append(f"📊 Sale No: {sale_no}")
    lines += [RULE, ""]

    for elevation, factories in by_elevation.items():
        market_avg = market_averages.get(elevation)
        lines.append(f"{ELEVATION_EMOJIS.get(elevation, DEFAULT_ELEVATION_EMOJI)} *{elevation} ELEVATION*")
        if market_avg:
            lines.append(f"📈 Market Avg: Rs. {market_avg:.2f}")
        lines += [THIN_RULE, ""]

        for position, factory in enumerate(factories, start=1):
            lines += [f"*{position}. {factory.factory}*", f"   Code: {factory.fcode}", DOTTED_RULE]
            lines += _period_lines("📅 *WEEKLY PERFORMANCE*", factory.wqty, factory.wavg, factory.wrank)
            comparison = _market_comparison(_as_float(factory.wavg) or 0.0, market_avg)
            if comparison:
                lines.append(comparison)
            lines.append("")
            lines += _period_lines("📆 *MONTHLY PERFORMANCE*", factory.mqty, factory.mavg, factory.mrank)
            lines.append("")
            lines += _period_lines("📊 *YEARLY PERFORMANCE*", factory.yqty, factory.yavg, factory.yrank)
            lines += ["", THIN_RULE, ""]

    lines += [
        RULE,
        "💡 *Legend*",
        "✅ Above market | ⚠️ Below market | 🏆 Ranking",
        "📅 Week | 📆 Month | 📊 Year",
    ]
    return "\n".join(lines)


def format_elevation_averages(sale_no: str, averages: dict[str, str]) -> str:
    lines = ["📊 *ELEVATION AVERAGES*", f"Sale No: {sale_no}", RULE, ""]
    for elevation, average in averages.items():
        lines.append(f"{ELEVATION_EMOJIS.get(elevation, DEFAULT_ELEVATION_EMOJI)} {elevation:<10} Rs. {average}")
    lines += ["", RULE]
    return "\n".join(lines)


def validate_factory_request(text: str) -> list[str]:
    """Factory codes named in the message; raises ValidationFailure when none or too many."""
    codes = extract_factory_codes(text, limit=None)
    if not codes:
        raise ValidationFailure("No factory codes in request", user_message=MSG_FACTORY_CODES_MISSING)
    if len(codes) > MAX_FACTORY_CODES:
        raise ValidationFailure(
            f"{len(codes)} factory codes requested", user_message=MSG_FACTORY_CODES_TOO_MANY
        )
    return codes


def require_sale_number(sale_no: Optional[str], example: str) -> str:
    if not sale_no:
        raise ValidationFailure("Sale number missing", user_message=MSG_SALE_NUMBER_REQUIRED.format(example=example))
    return sale_no


class QueryService:
    def __init__(
        self,
        sheets: SheetsClient,
        drive: DriveClient,
        transport: Transport,
        *,
        factory_sheet_id: Optional[str],
        factory_sheet_name: str,
        elevation_sheet_id: Optional[str],
        elevation_sheet_name: str,
        comparison_sheet_id: Optional[str],
        comparison_sheet_name: str,
    ):
        self.sheets = sheets
        self.drive = drive
        self.transport = transport
        self.factory_sheet_id = factory_sheet_id
        self.factory_sheet_name = factory_sheet_name
        self.elevation_sheet_id = elevation_sheet_id
        self.elevation_sheet_name = elevation_sheet_name
        self.comparison_sheet_id = comparison_sheet_id
        self.comparison_sheet_name = comparison_sheet_name

    async def market_averages(self, sale_no: str) -> dict[str, float]:
        """Elevation market averages used for comparison; empty when unavailable."""
        try:
            rows = await self.sheets.get_values(self.comparison_sheet_id, self.comparison_sheet_name)
        except TransientExternalFailure as e:
            logger.warning("Market averages unavailable", extra={"context": {"sale_no": sale_no, "error": str(e)}})
            return {}

        averages = {}
        for elevation, value in parse_elevation_averages(rows, sale_no, search_rows=1).items():
            number = _as_float(value)
            if number is not None:
                averages[elevation] = number
        return averages

    async def factory_report(self, factory_codes: Sequence[str], sale_no: Optional[str]) -> Result[str]:
        codes = ", ".join(factory_codes)
        try:
            rows = await self.sheets.get_values(self.factory_sheet_id, f"{self.factory_sheet_name}!A:N")
        except TransientExternalFailure as e:
            return Result.failure(MSG_SOURCE_UNAVAILABLE, e.code)

        records = parse_factory_rows(rows, factory_codes, sale_no)
        if not records:
            sale = f" (Sale {sale_no})" if sale_no else ""
            return Result.failure(MSG_FACTORY_NOT_FOUND.format(codes=codes, sale=sale), "not_found")

        market_averages = await self.market_averages(sale_no) if sale_no else {}
        logger.info("Factory report built", extra={"context": {"codes": codes, "sale_no": sale_no, "rows": len(records)}})
        return Result.success(format_factory_report(records, sale_no, market_averages))

    async def elevation_averages(self, sale_no: str) -> Result[str]:
        try:
            rows = await self.sheets.get_values(self.elevation_sheet_id, f"{self.elevation_sheet_name}!A:H")
        except TransientExternalFailure as e:
            return Result.failure(MSG_SOURCE_UNAVAILABLE, e.code)

        averages = parse_elevation_averages(rows, sale_no, search_rows=ELEVATION_HEADER_SEARCH_ROWS)
        if not averages:
            return Result.failure(MSG_ELEVATION_NOT_FOUND.format(sale_no=sale_no), "not_found")
        return Result.success(format_elevation_averages(sale_no, averages))

    async def send_market_report(self, recipient: str, sale_no: str) -> Result[str]:
        """Find the sale's PDF in Drive and deliver it as a document."""
        not_found = MSG_REPORT_NOT_FOUND.format(sale_no=sale_no)
        try:
            report = await self.drive.find_report(sale_no)
        except TransientExternalFailure as e:
            return Result.failure(not_found, e.code)

        if report is None:
            return Result.failure(not_found, "not_found")

        if not await self.transport.send_document(recipient, report.download_url, caption=report.name):
            logger.error(
                "Market report delivery failed",
                extra={"context": {"sale_no": sale_no, "recipient": mask_sender(recipient)}},
            )
            return Result.failure(not_found, "delivery_failed")
        return Result.success(report.name)
