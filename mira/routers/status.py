from fastapi import APIRouter, Request

from mira.schemas.status import HealthResponse, StatsResponse

router = APIRouter()


@router.get("/")
async def root():
    return {"status": "ok", "service": "mira"}


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    context = request.app.state.context
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="ok",
        transport_ready=context.transport.is_ready,
        staff_directory_loaded=context.directory.loaded,
        persistence_enabled=context.repository is not None,
        stores=context.store_sizes(),
        analytics=StatsResponse(**context.analytics.snapshot()),
        maintenance_running=scheduler.running if scheduler else None,
    )


@router.get("/stats", response_model=StatsResponse)
async def stats(request: Request):
    return StatsResponse(**request.app.state.context.analytics.snapshot())
