"""
FastAPI Wait-Time Service for cafeteria corners
"""
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from functools import lru_cache
from typing import Dict, List, Optional
import asyncio
import logging

from aggregator import FanOutSummary
from catalog import RESTAURANTS, get_corner_display_name, get_restaurant
from config import get_settings
from date_utils import ServerClock, day_of_week, parse_hhmm, parse_optional_date
from exceptions import InvalidInput, SourceUnavailable
from menu_service import MenuService, MenuStatus
from predict import PredictionService
from router import SourceRouter, build_archive_store, build_live_store
from schedule import ScheduleEngine, sort_by_active_first
from waiting_service import WaitingService

settings = get_settings()

# Setup logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

# Initialize FastAPI
app = FastAPI(
    title="HY-eat Wait-Time Service",
    description="Corner operating status, queue snapshots and wait-time predictions",
    version="1.0.0"
)


# Long-lived collaborators, created on first use
@lru_cache()
def get_clock() -> ServerClock:
    return ServerClock()


@lru_cache()
def get_router() -> SourceRouter:
    return SourceRouter(build_live_store(), build_archive_store(), get_clock())


@lru_cache()
def get_waiting_service() -> WaitingService:
    return WaitingService(get_router())


@lru_cache()
def get_prediction_service() -> PredictionService:
    return PredictionService(get_router())


@lru_cache()
def get_menu_service() -> MenuService:
    return MenuService()


@lru_cache()
def get_schedule_engine() -> ScheduleEngine:
    return ScheduleEngine()


@app.on_event("startup")
async def startup_event():
    """Build stores up front so misconfiguration shows at boot"""
    try:
        router = get_router()
        logger.info(
            f"✅ Wait service ready (live={settings.WAITING_SOURCE}, archive={settings.ARCHIVE_SOURCE}, "
            f"menu={settings.MENU_SOURCE}, today={router.clock.today_key()})"
        )
        if not router.live_enabled:
            logger.warning("⚠️  Live waiting source is disabled; today's reads will return 503")
        if not router.archive_enabled:
            logger.warning("⚠️  Archive waiting source is disabled; past-date reads will return 503")
    except ValueError as e:
        logger.error(f"❌ Invalid source configuration: {e}")
        raise


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(
        status_code=400,
        content={"detail": {"error": type(exc).__name__, "message": str(exc)}},
    )


@app.exception_handler(SourceUnavailable)
async def source_unavailable_handler(request: Request, exc: SourceUnavailable):
    logger.error(f"❌ {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": {"error": "SourceUnavailable", "message": str(exc), "source": exc.source}},
    )


# Request/Response models
class WaitingRow(BaseModel):
    """One corner's queue at one instant"""
    timestamp: str
    restaurantId: str
    cornerId: str
    queue_len: int
    est_wait_time_min: int
    congestion_level: int
    data_type: str
    source: Optional[str] = None


class TimestampsResponse(BaseModel):
    timestamps: List[str]


class PredictionItem(BaseModel):
    restaurantId: str
    cornerId: str
    predictedQueueLen: float
    predictedWaitMin: int
    basedOnDays: int
    sampleSize: int


class PredictionMetadata(BaseModel):
    targetDate: str
    targetTime: str
    timezone: str
    timezoneOffset: str
    dayOfWeek: int
    dayOfWeekName: str
    timeBucket: str
    basedOnDays: int
    sampleSize: int
    confidence: str
    generatedAt: str


class PredictionResponse(BaseModel):
    predictions: List[PredictionItem]
    metadata: PredictionMetadata


class CornerStatusItem(BaseModel):
    cornerId: str
    name: str
    isActive: bool


class RestaurantStatusResponse(BaseModel):
    restaurantId: str
    date: str
    time: str
    corners: List[CornerStatusItem]


class RestaurantInfo(BaseModel):
    id: str
    name: str
    location: str
    hours: str
    cornerOrder: List[str]
    cornerNames: Dict[str, str]


class ConfigResponse(BaseModel):
    useDbWaiting: bool
    today: str
    tomorrow: str
    serverTime: str


class DatesResponse(BaseModel):
    dates: List[str]
    today: str


def _set_summary_headers(response: Response, summary: FanOutSummary):
    response.headers["X-FanOut-Attempted"] = str(summary.attempted)
    response.headers["X-FanOut-Failed"] = str(summary.failed)


# Endpoints
@app.get("/api/waiting/latest", response_model=List[WaitingRow])
async def waiting_latest(
    response: Response,
    date: Optional[str] = None,
    service: WaitingService = Depends(get_waiting_service),
):
    """Latest snapshot of the day; stale live data comes back as []"""
    result = await service.get_latest(date)
    _set_summary_headers(response, result.summary)
    return [s.to_dict() for s in result.snapshots]


@app.get("/api/waiting", response_model=List[WaitingRow])
async def waiting_at(
    response: Response,
    date: Optional[str] = None,
    time: Optional[str] = None,
    service: WaitingService = Depends(get_waiting_service),
):
    """
    Wait times at a requested instant

    Args:
        date: YYYY-MM-DD, defaults to today (KST)
        time: ISO timestamp, HH:MM, or omitted for the latest snapshot
    """
    result = await service.get_wait_time_at(date, time)
    _set_summary_headers(response, result.summary)
    return [s.to_dict() for s in result.snapshots]


@app.get("/api/waiting/all", response_model=List[WaitingRow])
async def waiting_all(
    response: Response,
    date: Optional[str] = None,
    service: WaitingService = Depends(get_waiting_service),
):
    result = await service.get_all(date)
    _set_summary_headers(response, result.summary)
    return [s.to_dict() for s in result.snapshots]


@app.get("/api/waiting/timestamps", response_model=TimestampsResponse)
async def waiting_timestamps(
    response: Response,
    date: Optional[str] = None,
    service: WaitingService = Depends(get_waiting_service),
):
    result = await service.get_timestamps(date)
    _set_summary_headers(response, result.summary)
    return TimestampsResponse(timestamps=result.timestamps)


@app.get("/api/predict", response_model=PredictionResponse)
async def predict(
    response: Response,
    time: Optional[str] = None,
    dayOfWeek: Optional[int] = None,
    service: PredictionService = Depends(get_prediction_service),
    clock: ServerClock = Depends(get_clock),
):
    """
    Predicted queue per corner from the same weekday and 5-minute bucket of
    past weeks. dayOfWeek (0 = Sunday) defaults to tomorrow's weekday.
    """
    target_dow = dayOfWeek if dayOfWeek is not None else day_of_week(clock.tomorrow_key())
    result = await service.predict(target_dow, time)
    _set_summary_headers(response, result.summary)

    return PredictionResponse(
        predictions=[PredictionItem(**p.to_dict()) for p in result.predictions],
        metadata=PredictionMetadata(**result.metadata(clock)),
    )


@app.get("/api/corners/status", response_model=List[RestaurantStatusResponse])
async def corners_status(
    date: Optional[str] = None,
    time: Optional[str] = None,
    restaurantId: Optional[str] = None,
    engine: ScheduleEngine = Depends(get_schedule_engine),
    menus: MenuService = Depends(get_menu_service),
    clock: ServerClock = Depends(get_clock),
):
    """Operating status per corner, active corners first"""
    date_key = parse_optional_date(date, clock)
    clock_time = time or clock.clock_time()
    parse_hhmm(clock_time)

    if restaurantId is not None:
        restaurant = get_restaurant(restaurantId)
        if restaurant is None:
            raise HTTPException(status_code=404, detail=f"Unknown restaurant: {restaurantId}")
        restaurants = [restaurant]
    else:
        restaurants = list(RESTAURANTS)

    payload = []
    for restaurant in restaurants:
        presence = await asyncio.to_thread(
            menus.menu_presence_for, restaurant.id, restaurant.corner_order, date_key
        )
        statuses = engine.statuses(restaurant.id, restaurant.corner_order, date_key, clock_time, presence)
        payload.append(RestaurantStatusResponse(
            restaurantId=restaurant.id,
            date=date_key,
            time=clock_time,
            corners=[
                CornerStatusItem(cornerId=s.corner_id, name=get_corner_display_name(s.corner_id), isActive=s.is_active)
                for s in sort_by_active_first(statuses)
            ],
        ))
    return payload


@app.get("/api/restaurants", response_model=List[RestaurantInfo])
async def restaurants():
    return [
        RestaurantInfo(
            id=r.id,
            name=r.name,
            location=r.location,
            hours=r.hours,
            cornerOrder=list(r.corner_order),
            cornerNames={c: get_corner_display_name(c) for c in r.corner_order},
        )
        for r in RESTAURANTS
    ]


@app.get("/api/config", response_model=ConfigResponse)
async def config(
    router: SourceRouter = Depends(get_router),
    clock: ServerClock = Depends(get_clock),
):
    """Server-side today/tomorrow so clients never trust their own clock"""
    return ConfigResponse(
        useDbWaiting=router.live_enabled,
        today=clock.today_key(),
        tomorrow=clock.tomorrow_key(),
        serverTime=clock.now_iso(),
    )


@app.get("/api/dates", response_model=DatesResponse)
async def dates(clock: ServerClock = Depends(get_clock)):
    return DatesResponse(dates=[], today=clock.today_key())


@app.get("/api/menu")
async def menu(
    date: Optional[str] = None,
    menus: MenuService = Depends(get_menu_service),
    clock: ServerClock = Depends(get_clock),
):
    """
    Menu object for a date (restaurantId -> cornerId -> item)

    404 when S3 has no menu for the date, 503 when the menu source is off.
    """
    date_key = parse_optional_date(date, clock)
    read = await asyncio.to_thread(menus.read_menus, date_key)

    if read.status == MenuStatus.DISABLED:
        raise HTTPException(
            status_code=503,
            detail={"error": "MENU_SERVICE_DISABLED", "message": read.message, "date": date_key},
        )
    if read.status == MenuStatus.NOT_AVAILABLE:
        raise HTTPException(
            status_code=404,
            detail={"error": "MENU_DATA_NOT_AVAILABLE", "message": read.message, "date": date_key, "source": "s3"},
        )
    return read.menus


async def _health(router: SourceRouter, menus: MenuService, clock: ServerClock) -> dict:
    connected = False
    if router.live_enabled and hasattr(router.live_store, "check_connection"):
        connected = await asyncio.to_thread(router.live_store.check_connection)

    archive_cache = None
    if router.archive_enabled and hasattr(router.archive_store, "cache_stats"):
        archive_cache = router.archive_store.cache_stats()

    return {
        "status": "ok",
        "timestamp": clock.now_iso(),
        "services": {
            "live": {
                "source": settings.WAITING_SOURCE,
                "enabled": router.live_enabled,
                "connected": connected,
            },
            "archive": {
                "source": settings.ARCHIVE_SOURCE,
                "enabled": router.archive_enabled,
                "cache": archive_cache,
            },
            "menu": {
                "enabled": menus.enabled,
                "cache": menus.cache_stats(),
            },
        },
    }


@app.get("/health")
async def health(
    router: SourceRouter = Depends(get_router),
    menus: MenuService = Depends(get_menu_service),
    clock: ServerClock = Depends(get_clock),
):
    """Health check endpoint"""
    return await _health(router, menus, clock)


@app.get("/api/health")
async def api_health(
    router: SourceRouter = Depends(get_router),
    menus: MenuService = Depends(get_menu_service),
    clock: ServerClock = Depends(get_clock),
):
    return await _health(router, menus, clock)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
