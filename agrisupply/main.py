"""FastAPI application entrypoint."""
from __future__ import annotations

import csv
import io
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse

from .config import Settings, get_settings
from .model import AggregationRequest, AggregationResult, ResultStatus
from .service import DEFAULT_CONTEXT, IndexUnavailableError, SupplyService

logger = logging.getLogger(__name__)
logging.getLogger("agrisupply").setLevel(get_settings().log_level.upper())

app = FastAPI(title="Nitrogen Supply Catchment Engine", version="0.1.0")

STATUS_CODES = {
    ResultStatus.ready: 200,
    ResultStatus.loading: 202,
    ResultStatus.error: 502,
    ResultStatus.cancelled: 409,
}


def get_supply_service(settings: Settings = Depends(get_settings)) -> SupplyService:
    return SupplyService(settings=settings)


@app.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict:
    return {
        "status": "ok",
        "overpass_endpoints": len(settings.overpass_endpoints),
        "allowed_countries": settings.allowed_countries,
    }


@app.get("/index")
def get_index(service: SupplyService = Depends(get_supply_service)) -> JSONResponse:
    try:
        index = service.build_index()
    except IndexUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder(index))


@app.get("/regions/{country}/{province}/points")
def get_region_points(
    country: str,
    province: str,
    datasets: Optional[List[str]] = Query(None),
    include_primary: bool = Query(True),
    service: SupplyService = Depends(get_supply_service),
) -> JSONResponse:
    try:
        supply = service.region_supply(country, province, _clean_keys(datasets), include_primary)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    status_code = STATUS_CODES[ResultStatus.error] if supply.status is ResultStatus.error else 200
    return JSONResponse(status_code=status_code, content=jsonable_encoder(supply))


@app.get("/aggregate")
def get_aggregate(
    country: str = Query(...),
    province: str = Query(...),
    radius_km: Optional[float] = Query(None, allow_inf_nan=False),
    landuse: Optional[List[str]] = Query(None),
    datasets: Optional[List[str]] = Query(None),
    include_primary: bool = Query(True),
    context: str = Query(DEFAULT_CONTEXT),
    service: SupplyService = Depends(get_supply_service),
) -> JSONResponse:
    result = _run_aggregation(service, country, province, radius_km, landuse, datasets, include_primary, context)
    return JSONResponse(status_code=STATUS_CODES[result.status], content=jsonable_encoder(result))


@app.get("/aggregate/status")
def get_aggregate_status(
    context: str = Query(DEFAULT_CONTEXT),
    service: SupplyService = Depends(get_supply_service),
) -> dict:
    status = service.status(context)
    return {"context": context, "status": status.value if status else None}


@app.get("/export/parcels.csv")
def export_parcels(
    country: str = Query(...),
    province: str = Query(...),
    radius_km: Optional[float] = Query(None, allow_inf_nan=False),
    landuse: Optional[List[str]] = Query(None),
    datasets: Optional[List[str]] = Query(None),
    include_primary: bool = Query(True),
    context: str = Query(DEFAULT_CONTEXT),
    service: SupplyService = Depends(get_supply_service),
) -> StreamingResponse:
    result = _run_aggregation(service, country, province, radius_km, landuse, datasets, include_primary, context)
    if result.status is not ResultStatus.ready:
        raise HTTPException(status_code=STATUS_CODES[result.status], detail=result.message or result.status.value)

    return StreamingResponse(
        io.BytesIO(_parcels_to_csv(result)),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=parcels.csv"},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _clean_keys(keys: Optional[List[str]]) -> Optional[List[str]]:
    if keys is None:
        return None
    return [key for key in keys if key.strip()]


def _run_aggregation(
    service: SupplyService,
    country: str,
    province: str,
    radius_km: Optional[float],
    landuse: Optional[List[str]],
    datasets: Optional[List[str]],
    include_primary: bool,
    context: str,
) -> AggregationResult:
    request = AggregationRequest(
        country=country,
        province=province,
        radius_km=service.settings.default_radius_km if radius_km is None else radius_km,
        landuse_tags=_clean_keys(landuse),
        dataset_keys=_clean_keys(datasets),
        include_primary=include_primary,
    )
    try:
        return service.aggregate(request, context_id=context)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _parcels_to_csv(result: AggregationResult) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["osm_id", "landuse", "area_m2", "fertilizer_share"])
    for parcel in result.parcels:
        writer.writerow([parcel.osm_id, parcel.landuse, parcel.area_m2, parcel.fertilizer_share])
    return buffer.getvalue().encode("utf-8")
