from dataclasses import dataclass
from typing import Optional

import httpx

from mira.errors import TransientExternalFailure
from mira.logging_config import get_logger

logger = get_logger("drive_service")

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
PDF_MIME_TYPE = "application/pdf"


@dataclass
class DriveFile:
    id: str
    name: str
    download_url: str


class DriveClient:
    """Looks up market report PDFs in a shared Drive folder."""

    def __init__(self, api_key: Optional[str], folder_id: Optional[str], timeout_seconds: float = 15.0):
        self.api_key = api_key
        self.folder_id = folder_id
        self.timeout_seconds = timeout_seconds

    async def find_report(self, sale_no: str) -> Optional[DriveFile]:
        if not self.folder_id:
            raise TransientExternalFailure("Drive folder not configured")

        query = f"'{self.folder_id}' in parents and name contains '{sale_no}' and mimeType='{PDF_MIME_TYPE}'"
        params = {"q": query, "fields": "files(id, name, webContentLink)", "spaces": "drive"}
        if self.api_key:
            params["key"] = self.api_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(DRIVE_FILES_URL, params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Drive search failed", extra={"context": {"sale_no": sale_no, "error": str(e)}})
            raise TransientExternalFailure(f"Drive search failed for sale {sale_no}: {e}") from e

        files = payload.get("files") or []
        if not files:
            return None

        first = files[0]
        download_url = first.get("webContentLink") or f"https://drive.google.com/uc?export=download&id={first['id']}"
        return DriveFile(id=first["id"], name=first.get("name", ""), download_url=download_url)
