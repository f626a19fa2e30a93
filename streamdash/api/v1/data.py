"""Dashboard data endpoint: bandwidth series and stats, stream sessions, storage and filter options"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from streamdash.api.deps import get_bandwidth_engine, parse_int
from streamdash.api.responses import error_response, success_response
from streamdash.core.config import settings
from streamdash.services.bandwidth_service import BandwidthQueryEngine

router = APIRouter()

VALID_TYPES = ("bandwidth", "streaming", "storage", "filters", "projects")

# filterType -> dimension
FILTER_TYPES = {
    "tags": "tag",
    "domains": "domain",
    "regions": "region",
}


def _validation_error(field: str, message: str):
    return error_response("Input validation failed", {field: message}, status.HTTP_400_BAD_REQUEST)


@router.get("/data")
async def get_data(
    data_type: Optional[str] = Query(None, alias="type"),
    start_time: str = Query("-7d", alias="startTime"),
    end_time: str = Query("now()", alias="endTime"),
    project: Optional[str] = None,
    domain: Optional[str] = None,
    region: Optional[str] = None,
    tag: Optional[str] = None,
    granularity: str = "5min",
    stats: bool = False,
    filter_type: Optional[str] = Query(None, alias="filterType"),
    limit: Optional[str] = None,
    engine: BandwidthQueryEngine = Depends(get_bandwidth_engine),
):
    """Bandwidth series or stats, stream sessions, storage usage or filter options"""
    if not data_type:
        return _validation_error("type", "Missing required parameter: type")
    if data_type not in VALID_TYPES:
        return _validation_error("type", f"Unsupported type: {data_type}. Supported types: {', '.join(VALID_TYPES)}")

    if data_type == "bandwidth":
        filters = {"project": project, "domain": domain, "region": region, "tag": tag}
        if stats:
            result = await engine.stats(start_time, end_time, filters)
        else:
            result = await engine.query_legacy(start_time, end_time, filters, granularity)
        return success_response(result)

    if data_type == "streaming":
        rows = parse_int(limit, settings.LISTING_DEFAULT_LIMIT)
        return success_response(await engine.streaming(start_time, end_time, rows))

    if data_type == "storage":
        return success_response(await engine.storage(parse_int(limit, settings.LISTING_DEFAULT_LIMIT)))

    if data_type == "projects":
        return success_response(await engine.filter_options("project", start_time, end_time))

    if not filter_type:
        return _validation_error("filterType", "Missing required parameter: filterType")
    if filter_type not in FILTER_TYPES:
        return _validation_error(
            "filterType",
            f"Unsupported filterType: {filter_type}. Supported types: {', '.join(FILTER_TYPES)}",
        )
    return success_response(await engine.filter_options(FILTER_TYPES[filter_type], start_time, end_time))
