"""
SafeRoute 안전 경로 API (FastAPI)
- 경로 탐색: safe / fastest / optimize / analyze
- 위험 요소 제보: 등록, 조회, 주변 검색, 검수, 투표, 통계
- 시작 시 인덱스 로드, 주기적 백그라운드 갱신
"""

import asyncio
import logging
import threading
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from . import errors
from .config import CORS_ORIGINS, INDEX_REFRESH_SECONDS, SNAPSHOT_FILE, ScoringConfig
from .hazard_index import HazardIndex
from .route_finder import RouteSelection, SafeRouteService
from .routing_provider import OsrmRoutingProvider, RoutingProvider
from .schemas import (AnalyzeRequest, HazardCreate, HazardList, HazardOut, HazardStatistics, RiskZoneOut,
                      RouteRequest, RouteResponse, SafetyAnalysisResponse, ScoredRouteOut, StatusUpdate,
                      VoteRequest)
from .store import SqlHazardStore

# --- Logging Setup ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def raise_http(e: errors.SafeRouteError):
    """엔진 오류 → HTTP 응답"""
    if isinstance(e, errors.ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, errors.NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, errors.UpstreamUnavailable):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e),
                            headers={"Retry-After": str(e.retry_after)})
    if isinstance(e, errors.InvariantViolation):
        logger.error(f"Invariant violation: {e}")
        raise HTTPException(status_code=500, detail="Internal consistency error; request aborted")
    raise HTTPException(status_code=500, detail=str(e))


def _route_response(selection: RouteSelection) -> RouteResponse:
    result = selection.result
    return RouteResponse(
        mode=result.mode,
        route=ScoredRouteOut.from_ranked(result.chosen),
        alternatives=[ScoredRouteOut.from_ranked(r) for r in result.ranked if r.index != result.chosen.index],
        eligible_count=result.eligible_count,
        stale=selection.stale,
        degraded=selection.degraded,
    )


def create_app(store: Optional[SqlHazardStore] = None, provider: Optional[RoutingProvider] = None,
               config: Optional[ScoringConfig] = None, refresh_interval: float = INDEX_REFRESH_SECONDS,
               snapshot_file: Optional[str] = SNAPSHOT_FILE) -> FastAPI:
    config = config or ScoringConfig.from_env()
    store = store or SqlHazardStore()
    provider = provider or OsrmRoutingProvider()
    index = HazardIndex(store, config=config, snapshot_file=snapshot_file)
    service = SafeRouteService(provider, index, config=config)

    app = FastAPI(title="SafeRoute Safety Engine", version="1.0.0")
    app.state.store = store
    app.state.index = index
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def refresh_loop():
        while True:
            await asyncio.sleep(refresh_interval)
            await asyncio.to_thread(index.refresh_safely)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Loading hazard index...")
        try:
            await asyncio.to_thread(index.refresh)
        except errors.HazardDataUnavailable as e:
            logger.warning(f"Initial hazard load failed ({e}); trying saved snapshot")
            try:
                index.load_snapshot()
            except FileNotFoundError:
                logger.error("No saved hazard snapshot; route requests will fail until the store is reachable")
        if refresh_interval and refresh_interval > 0:
            app.state.refresh_task = asyncio.create_task(refresh_loop())

    @app.on_event("shutdown")
    async def shutdown_event():
        task = getattr(app.state, "refresh_task", None)
        if task is not None:
            task.cancel()
        index.close()

    async def run_cancellable(fn, *args):
        """워커 스레드에서 실행, 클라이언트 연결 종료 시 cancel 이벤트 설정"""
        cancel = threading.Event()
        try:
            return await asyncio.to_thread(fn, *args, cancel)
        except asyncio.CancelledError:
            cancel.set()
            logger.info("Request cancelled; abandoning candidate scoring")
            raise

    @app.get("/")
    def read_root():
        return {"message": "Welcome to SafeRoute Safety Engine"}

    @app.get("/api/health")
    def health():
        return {"status": "ok", "index": index.status()}

    # --- Route Endpoints ---

    async def _route(fn, req: RouteRequest) -> RouteResponse:
        logger.info(f"Route request ({fn.__name__}): {req.origin.as_tuple()} -> {req.destination.as_tuple()}")
        try:
            prefs = req.preferences.to_domain()
            selection = await run_cancellable(fn, req.origin.as_tuple(), req.destination.as_tuple(), prefs)
            return _route_response(selection)
        except errors.SafeRouteError as e:
            raise_http(e)

    @app.post("/api/route/safe", response_model=RouteResponse)
    async def safe_route(req: RouteRequest):
        return await _route(service.compute_safe_route, req)

    @app.post("/api/route/fastest", response_model=RouteResponse)
    async def fastest_route(req: RouteRequest):
        return await _route(service.compute_fastest_route, req)

    @app.post("/api/route/optimize", response_model=RouteResponse)
    async def optimize_route(req: RouteRequest):
        return await _route(service.optimize_route, req)

    @app.post("/api/route/analyze", response_model=SafetyAnalysisResponse)
    def analyze_route(req: AnalyzeRequest):
        try:
            analysis = service.analyze_route([p.as_tuple() for p in req.geometry], req.preferences.to_domain(),
                                             distance_m=req.distance_m, duration_s=req.duration_s)
        except errors.SafeRouteError as e:
            raise_http(e)
        return SafetyAnalysisResponse(
            overall_score=round(analysis.overall_score, 2),
            risk_zones=[RiskZoneOut.from_zone(z) for z in analysis.risk_zones],
            hazard_count=analysis.hazard_count,
            length_m=round(analysis.length_m, 1),
            summary=analysis.summary,
            stale=analysis.stale,
            degraded=analysis.degraded,
        )

    # --- Hazard Endpoints ---

    @app.post("/api/hazards", response_model=HazardOut, status_code=status.HTTP_201_CREATED)
    def create_hazard(req: HazardCreate):
        try:
            report = store.create(req.type, req.location.lat, req.location.lng, severity=req.severity,
                                  description=req.description, address=req.address)
        except errors.SafeRouteError as e:
            raise_http(e)
        return HazardOut.from_report(report, req.description, req.address)

    @app.get("/api/hazards", response_model=HazardList)
    def list_hazards(type: Optional[str] = None, status: Optional[str] = None):
        try:
            reports = store.list(hazard_type=type, status=status)
        except errors.SafeRouteError as e:
            raise_http(e)
        return HazardList(hazards=[HazardOut.from_report(r) for r in reports], count=len(reports))

    @app.get("/api/hazards/nearby", response_model=HazardList)
    def nearby_hazards(lat: float, lng: float, radius_km: float = Query(default=1.0, ge=0, le=50)):
        try:
            reports = store.find_nearby(lat, lng, radius_km)
        except errors.SafeRouteError as e:
            raise_http(e)
        return HazardList(hazards=[HazardOut.from_report(r) for r in reports], count=len(reports))

    @app.get("/api/hazards/statistics", response_model=HazardStatistics)
    def hazard_statistics():
        try:
            return store.statistics()
        except errors.SafeRouteError as e:
            raise_http(e)

    @app.post("/api/hazards/refresh")
    def refresh_index():
        try:
            snapshot = index.invalidate()
        except errors.SafeRouteError as e:
            raise_http(e)
        return {"version": snapshot.version, "hazards": len(snapshot)}

    @app.get("/api/hazards/{hazard_id}", response_model=HazardOut)
    def get_hazard(hazard_id: str):
        try:
            details = store.get_details(hazard_id)
        except errors.SafeRouteError as e:
            raise_http(e)
        return HazardOut.from_report(details["report"], details["description"], details["address"])

    @app.put("/api/hazards/{hazard_id}/status", response_model=HazardOut)
    def update_hazard_status(hazard_id: str, req: StatusUpdate):
        try:
            report = store.update_status(hazard_id, req.status)
        except errors.SafeRouteError as e:
            raise_http(e)
        # verified / rejected reports change what scoring sees
        if not index.refresh_safely():
            logger.warning("Index refresh after moderation failed; next scheduled refresh will retry")
        return HazardOut.from_report(report)

    @app.post("/api/hazards/{hazard_id}/vote", response_model=HazardOut)
    def vote_hazard(hazard_id: str, req: VoteRequest):
        try:
            report = store.vote(hazard_id, upvote=req.direction == "up")
        except errors.SafeRouteError as e:
            raise_http(e)
        return HazardOut.from_report(report)

    return app


if __name__ == "__main__":
    import uvicorn
    # uvicorn saferoute.main:create_app --factory
    uvicorn.run("saferoute.main:create_app", factory=True, host="0.0.0.0", port=8000)
