from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from geonear.CONSTANTS import DEFAULT_NEIGHBORS
from geonear.errors import LoadError
from geonear.nearest import NearestIndex
from geonear.pydantic_models import (
    ErrorResponse,
    IndexStatsResp,
    IndexStatusResp,
    Location,
    NearestMeta,
    NearestResp,
)
from geonear.settings import get_settings

log = structlog.get_logger(__name__)


def _stats_resp(stats):
    if stats is None:
        return None
    return IndexStatsResp(
        sourcePath=stats.source_path,
        totalRowsSeen=stats.total_rows_seen,
        totalRowsIndexed=stats.total_rows_indexed,
        totalRowsSkipped=stats.total_rows_skipped,
        buildDurationMillis=stats.build_duration_millis,
        builtAt=stats.built_at,
        usingTreeIndex=stats.using_tree_index,
    )


def _location(result):
    record = result.record
    return Location(
        id=record.id,
        name=record.name,
        level=record.level,
        latitude=record.latitude,
        longitude=record.longitude,
        auxiliaryCode=record.auxiliary_code,
        regionIds=list(record.region_ids),
        distanceMeters=result.distance_meters,
    )


def create_app(settings=None, index: Optional[NearestIndex] = None):
    settings = settings or get_settings()
    idx = index or NearestIndex.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.eager_index_build:
            try:
                await run_in_threadpool(idx.ensure_ready)
            except LoadError as exc:
                # Cached on the index; queries will answer 503 until restart
                log.error("startup_index_build_failed", error_code=exc.error_code)
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.idx = idx

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET"],
        allow_headers=settings.cors_allow_headers,
    )

    @app.get("/health")
    def health(request: Request):
        return {"status": "ok", "index": request.app.state.idx.state.value}

    @app.get(
        "/api/locations/nearest",
        response_model=NearestResp,
        responses={503: {"model": ErrorResponse}},
    )
    def nearest(
        request: Request,
        lat: float = Query(...),
        lng: float = Query(...),
        limit: Optional[int] = Query(DEFAULT_NEIGHBORS),
    ):
        """
        Return the nearest indexed locations to (lat, lng).

        Out-of-range input is normalized by the index rather than rejected:
        lat is clamped, lng wraps around the antimeridian and limit is
        clamped to 1-50.

        Returns:
            (NearestResp) results ordered by distance, plus index metadata
        """
        index: NearestIndex = request.app.state.idx
        try:
            found = index.find_nearest(lat, lng, limit)
        except LoadError as exc:
            raise HTTPException(
                status_code=503,
                detail=ErrorResponse(error=exc.error_code, detail=str(exc)).model_dump(),
            )

        stats = index.get_stats()
        return NearestResp(
            results=[_location(r) for r in found],
            meta=NearestMeta(
                count=len(found),
                totalIndexed=stats.total_rows_indexed,
                source=stats.source_path,
                loadedAt=stats.built_at,
                usingTreeIndex=stats.using_tree_index,
            ),
        )

    @app.get("/api/locations/stats", response_model=IndexStatusResp)
    def stats(request: Request):
        index: NearestIndex = request.app.state.idx
        return IndexStatusResp(state=index.state.value, stats=_stats_resp(index.get_stats()))

    return app


app = create_app()
