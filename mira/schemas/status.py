from typing import Optional

from pydantic import BaseModel


class StatsResponse(BaseModel):
    total_messages: int
    unique_users: int
    successful_requests: int
    failed_requests: int
    popular_intents: list[tuple[str, int]]
    average_response_time_ms: float
    error_rate: float
    uptime_seconds: float


class HealthResponse(BaseModel):
    status: str
    transport_ready: bool
    staff_directory_loaded: bool
    persistence_enabled: bool
    stores: dict[str, int]
    analytics: StatsResponse
    maintenance_running: Optional[bool] = None
