from typing import Optional
from urllib.parse import quote

import httpx

from mira.errors import TransientExternalFailure
from mira.logging_config import get_logger

logger = get_logger("sheets_service")

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"

Rows = list[list[str]]


class SheetsClient:
    """Read-only client for the Google Sheets values API."""

    def __init__(self, api_key: Optional[str], base_url: str = SHEETS_API_URL, timeout_seconds: float = 15.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def get_values(self, sheet_id: Optional[str], sheet_range: str) -> Rows:
        """Return the rows of `sheet_range` as lists of strings."""
        if not sheet_id:
            raise TransientExternalFailure(f"Sheet id not configured for range {sheet_range}")

        url = f"{self.base_url}/{sheet_id}/values/{quote(sheet_range, safe='!:')}"
        params = {"key": self.api_key} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Sheets request failed",
                extra={"context": {"sheet_id": sheet_id, "range": sheet_range, "error": str(e)}},
            )
            raise TransientExternalFailure(f"Sheets request failed for {sheet_range}: {e}") from e

        rows = payload.get("values") or []
        return [[str(cell) if cell is not None else "" for cell in row] for row in rows]
