"""Bandwidth API endpoints"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from streamdash.api.deps import get_bandwidth_engine, parse_int, resolve_time_range
from streamdash.api.responses import success_response
from streamdash.schemas.bandwidth import BandwidthPoint, QueryRequest, SortSpec
from streamdash.services.bandwidth_service import BandwidthQueryEngine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/bandwidth")
async def get_bandwidth(
    page: Optional[str] = None,
    current: Optional[str] = None,
    page_size: Optional[str] = Query(None, alias="pageSize"),
    project: Optional[str] = None,
    domain: Optional[str] = None,
    region: Optional[str] = None,
    tag: Optional[str] = None,
    sort_field: str = Query("time", alias="sortField"),
    sort_order: str = Query("descend", alias="sortOrder"),
    granularity: str = "5min",
    start_time: Optional[str] = Query(None, alias="startTime"),
    end_time: Optional[str] = Query(None, alias="endTime"),
    date_range: Optional[str] = Query(None, alias="dateRange"),
    engine: BandwidthQueryEngine = Depends(get_bandwidth_engine),
):
    """Paged, filtered and sorted bandwidth records"""
    start, end = resolve_time_range(start_time, end_time, date_range)

    request = QueryRequest(
        start_time=start,
        end_time=end,
        page=parse_int(page or current, 1),
        page_size=parse_int(page_size, 20),
        filters={"project": project, "domain": domain, "region": region, "tag": tag},
        sort=SortSpec(field=sort_field, order=sort_order),
        granularity=granularity,
    )
    result = await engine.query(request)

    return success_response(result.data, total=result.total, totalKnown=result.total_known)


@router.post("/bandwidth", status_code=status.HTTP_201_CREATED)
async def create_bandwidth_point(
    point: BandwidthPoint,
    engine: BandwidthQueryEngine = Depends(get_bandwidth_engine),
):
    """Write one bandwidth sample"""
    await engine.write_point(point)
    logger.info(f"Wrote bandwidth sample for {point.project}/{point.domain} at {point.time}")
    return success_response(point)
