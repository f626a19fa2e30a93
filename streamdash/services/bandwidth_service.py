"""Bandwidth query engine: filtered, aggregated, sorted and paged views over InfluxDB"""
import asyncio
import json
import logging
import re
from contextlib import aclosing
from operator import attrgetter
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from influxdb_client import Point, WritePrecision
from redis.exceptions import RedisError

from streamdash.core.config import settings
from streamdash.core.exceptions import (
    CountUnavailable,
    InvalidFilterField,
    InvalidGranularity,
    InvalidSortField,
    QueryFailure,
    QueryTimeout,
    ResultTooLarge,
    StreamDashError,
)
from streamdash.schemas.bandwidth import (
    ALL_SENTINEL,
    BandwidthPage,
    BandwidthPoint,
    BandwidthRecord,
    BandwidthStats,
    Dimension,
    FilterOption,
    Granularity,
    QueryRequest,
    SortField,
)
from streamdash.schemas.usage import StorageUsage, StreamSession
from streamdash.services.flux import FluxQuery

logger = logging.getLogger(__name__)

FIELDS = ("upload", "download")

# Flux column each sort field maps to after pivot
SORT_COLUMNS = {
    SortField.TIME: "_time",
    SortField.UPLOAD: "upload",
    SortField.DOWNLOAD: "download",
    SortField.TOTAL: "total",
    SortField.PROJECT: "project",
    SortField.DOMAIN: "domain",
    SortField.REGION: "region",
    SortField.TAG: "tag",
}

WRAPPING_QUOTES_RE = re.compile(r'^"|"$')


def strip_quotes(value: Any) -> Optional[str]:
    """Drop the quote characters the store sometimes leaves around tag values"""
    if value is None or value == "":
        return None
    return WRAPPING_QUOTES_RE.sub("", str(value))


def _number(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def normalize_row(values: Mapping[str, Any]) -> BandwidthRecord:
    """Turn one pivoted store row into a BandwidthRecord"""
    return BandwidthRecord(
        time=values["_time"],
        upload=_number(values.get("upload")),
        download=_number(values.get("download")),
        project=strip_quotes(values.get("project")),
        domain=strip_quotes(values.get("domain")),
        region=strip_quotes(values.get("region")),
        tag=strip_quotes(values.get("tag")),
    )


def normalize_stream(values: Mapping[str, Any]) -> StreamSession:
    """Turn one pivoted streaming_data row into a StreamSession"""
    return StreamSession(
        id=strip_quotes(values.get("id")),
        stream_name=strip_quotes(values.get("streamName")) or "",
        type=strip_quotes(values.get("type")) or "push",
        domain=strip_quotes(values.get("domain")) or "",
        region=strip_quotes(values.get("region")) or "",
        bandwidth=_number(values.get("bandwidth")),
        duration=_number(values.get("duration")),
        viewers=int(_number(values.get("viewers"))),
        status=strip_quotes(values.get("status")) or "active",
        start_time=strip_quotes(values.get("startTime")) or "",
        updated_at=values.get("_time"),
    )


def _sort_key(field: SortField) -> Callable[[BandwidthRecord], Any]:
    if field is SortField.TIME:
        return attrgetter("time")
    if field is SortField.TOTAL:
        return attrgetter("total")
    if field in (SortField.UPLOAD, SortField.DOWNLOAD):
        return attrgetter(field.value)
    name = field.value
    # missing dimension values sort before present ones
    return lambda r: (getattr(r, name) is not None, getattr(r, name) or "")


def sort_records(records: Iterable[BandwidthRecord], field: SortField, descending: bool) -> List[BandwidthRecord]:
    """Sort by field, ties kept in time-ascending order so pages are stable"""
    ordered = sorted(records, key=attrgetter("time"))
    if field is SortField.TIME:
        return ordered[::-1] if descending else ordered
    return sorted(ordered, key=_sort_key(field), reverse=descending)


def parse_granularity(value: str) -> Granularity:
    try:
        return Granularity(value)
    except ValueError:
        allowed = ", ".join(g.value for g in Granularity)
        raise InvalidGranularity(f"Unsupported granularity: {value!r}", detail=f"Expected one of: {allowed}")


def parse_sort_field(value: str) -> SortField:
    try:
        return SortField(value)
    except ValueError:
        allowed = ", ".join(f.value for f in SortField)
        raise InvalidSortField(f"Unsupported sort field: {value!r}", detail=f"Expected one of: {allowed}")


def parse_dimension(value: str) -> Dimension:
    try:
        return Dimension(value)
    except ValueError:
        allowed = ", ".join(d.value for d in Dimension)
        raise InvalidFilterField(f"Unsupported dimension: {value!r}", detail=f"Expected one of: {allowed}")


def active_filters(filters: Optional[Mapping[str, Optional[str]]]) -> List[Tuple[str, str]]:
    """Validated (dimension, value) pairs, with empty and 'all' values dropped"""
    result = []
    for key, value in (filters or {}).items():
        dimension = parse_dimension(key)
        if value is None or value == "" or value == ALL_SENTINEL:
            continue
        result.append((dimension.value, str(value)))
    return result


class BandwidthQueryEngine:
    """Runs bandwidth queries against a time-series store.

    ``store`` needs ``query_stream(flux)`` (async iterator of row dicts) and
    ``write(point)``; ``cache`` is an optional Redis wrapper with get/set.
    The engine holds no per-request state and is safe to share.
    """

    def __init__(
        self,
        store,
        cache=None,
        *,
        bucket: Optional[str] = None,
        measurement: Optional[str] = None,
        timeout: Optional[float] = None,
        count_strategy: Optional[str] = None,
        max_rows: Optional[int] = None,
        max_page_size: Optional[int] = None,
        cache_ttl: Optional[int] = None,
        streaming_measurement: Optional[str] = None,
        storage_measurement: Optional[str] = None,
    ):
        self.store = store
        self.cache = cache
        self.bucket = bucket or settings.INFLUX_BUCKET
        self.measurement = measurement or settings.INFLUX_MEASUREMENT
        self.timeout = timeout if timeout is not None else settings.INFLUX_QUERY_TIMEOUT
        self.count_strategy = count_strategy or settings.BANDWIDTH_COUNT_STRATEGY
        self.max_rows = max_rows if max_rows is not None else settings.BANDWIDTH_MAX_ROWS
        self.max_page_size = max_page_size or settings.BANDWIDTH_MAX_PAGE_SIZE
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.FILTER_OPTIONS_CACHE_TTL
        self.streaming_measurement = streaming_measurement or settings.INFLUX_STREAMING_MEASUREMENT
        self.storage_measurement = storage_measurement or settings.INFLUX_STORAGE_MEASUREMENT

    # Store access

    async def _guarded(self, awaitable: Awaitable):
        """Apply the query deadline and map store errors to QueryFailure"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"InfluxDB query timed out after {self.timeout}s")
            raise QueryTimeout(f"Query did not complete within {self.timeout} seconds") from e
        except StreamDashError:
            raise
        except Exception as e:
            logger.error(f"InfluxDB query error: {e}")
            raise QueryFailure("InfluxDB query failed", detail=str(e)) from e

    async def _rows(self, flux: str, max_rows: Optional[int] = None) -> List[Dict[str, Any]]:
        rows = []
        async with aclosing(self.store.query_stream(flux)) as stream:
            async for values in stream:
                rows.append(values)
                if max_rows is not None and len(rows) > max_rows:
                    raise ResultTooLarge(
                        f"Query matched more than {max_rows} rows",
                        detail="Narrow the time range, add filters or use a coarser granularity",
                    )
        return rows

    async def _collect(self, flux: str, max_rows: Optional[int] = None) -> List[Dict[str, Any]]:
        logger.debug(f"Running Flux query:\n{flux}")
        return await self._guarded(self._rows(flux, max_rows))

    async def _count(self, flux: str) -> int:
        try:
            rows = await self._collect(flux)
        except QueryFailure as e:
            raise CountUnavailable("Count query failed", detail=e.message) from e
        # count() replaces the counted column's values with the count
        return int(sum(row.get("_time") or 0 for row in rows))

    def _base_query(self, start_time: str, end_time: str, filters: List[Tuple[str, str]],
                    granularity: Granularity) -> FluxQuery:
        query = FluxQuery(self.bucket).range(start_time, end_time).measurement(self.measurement)
        for dimension, value in filters:
            query.where(dimension, value)
        query.fields(*FIELDS)
        if granularity.window:
            query.aggregate_window(granularity.window, "mean")
        return query.pivot()

    # Operations

    async def query(self, request: QueryRequest) -> BandwidthPage:
        """Return one page of bandwidth records plus the total row count"""
        granularity = parse_granularity(request.granularity)
        sort_field = parse_sort_field(request.sort.field)
        filters = active_filters(request.filters)
        page_size = min(request.page_size, self.max_page_size)
        offset = (request.page - 1) * page_size

        if self.count_strategy == "separate":
            return await self._query_separate(request, filters, granularity, sort_field, page_size, offset)

        flux = self._base_query(request.start_time, request.end_time, filters, granularity).render()
        rows = await self._collect(flux, max_rows=self.max_rows)
        records = sort_records((normalize_row(r) for r in rows), sort_field, request.sort.descending)
        return BandwidthPage(data=records[offset:offset + page_size], total=len(records))

    async def _query_separate(self, request: QueryRequest, filters: List[Tuple[str, str]],
                              granularity: Granularity, sort_field: SortField,
                              page_size: int, offset: int) -> BandwidthPage:
        data_query = self._base_query(request.start_time, request.end_time, filters, granularity).group()
        if sort_field is SortField.TOTAL:
            data_query.with_total(*FIELDS)
        data_query.sort(SORT_COLUMNS[sort_field], desc=request.sort.descending).limit(page_size, offset)

        count_query = (
            self._base_query(request.start_time, request.end_time, filters, granularity)
            .group()
            .count("_time")
        )

        data_result, count_result = await asyncio.gather(
            self._collect(data_query.render()),
            self._count(count_query.render()),
            return_exceptions=True,
        )
        if isinstance(data_result, BaseException):
            raise data_result

        records = [normalize_row(r) for r in data_result]
        if isinstance(count_result, CountUnavailable):
            logger.warning(f"Bandwidth count unavailable, returning page without total: {count_result.detail}")
            return BandwidthPage(data=records, total=None, total_known=False)
        if isinstance(count_result, BaseException):
            raise count_result
        return BandwidthPage(data=records, total=count_result)

    async def query_legacy(self, start_time: str, end_time: str,
                           filters: Optional[Mapping[str, Optional[str]]] = None,
                           granularity: str = Granularity.FIVE_MINUTES.value) -> List[BandwidthRecord]:
        """Unpaged records in time-ascending order"""
        window = parse_granularity(granularity)
        flux = self._base_query(start_time, end_time, active_filters(filters), window).render()
        rows = await self._collect(flux, max_rows=self.max_rows)
        return sort_records((normalize_row(r) for r in rows), SortField.TIME, descending=False)

    async def stats(self, start_time: str, end_time: str,
                    filters: Optional[Mapping[str, Optional[str]]] = None) -> BandwidthStats:
        """Peak and mean upload/download over raw samples in the range"""
        flux = self._base_query(start_time, end_time, active_filters(filters), Granularity.RAW).render()

        async def reduce_rows() -> BandwidthStats:
            result = BandwidthStats()
            sum_upload = sum_download = 0.0
            async with aclosing(self.store.query_stream(flux)) as stream:
                async for values in stream:
                    upload = _number(values.get("upload"))
                    download = _number(values.get("download"))
                    result.max_upload = max(result.max_upload, upload)
                    result.max_download = max(result.max_download, download)
                    sum_upload += upload
                    sum_download += download
                    result.count += 1
            if result.count:
                result.avg_upload = sum_upload / result.count
                result.avg_download = sum_download / result.count
            return result

        return await self._guarded(reduce_rows())

    async def filter_options(self, dimension: str, start_time: str, end_time: str) -> List[FilterOption]:
        """Distinct values of one dimension, led by the 'all' option"""
        dim = parse_dimension(dimension)
        cache_key = f"bandwidth:filters:{self.measurement}:{dim.value}:{start_time}:{end_time}"

        cached = await self._cache_get(cache_key)
        if cached is not None:
            return [FilterOption(**option) for option in json.loads(cached)]

        flux = (
            FluxQuery(self.bucket)
            .range(start_time, end_time)
            .measurement(self.measurement)
            .keep(dim.value)
            .group()
            .distinct(dim.value)
            .render()
        )
        rows = await self._collect(flux, max_rows=self.max_rows)
        values = {strip_quotes(row.get("_value")) for row in rows}
        values -= {None, "unknown"}

        options = [FilterOption(label=f"All {dim.value}s", value=ALL_SENTINEL)]
        options.extend(FilterOption(label=v, value=v) for v in sorted(values))
        await self._cache_set(cache_key, json.dumps([o.model_dump() for o in options]))
        return options

    def _listing_limit(self, limit: Optional[int]) -> int:
        limit = limit or settings.LISTING_DEFAULT_LIMIT
        return max(1, min(limit, self.max_rows))

    def _latest_first(self, measurement: str, start_time: str, end_time: str, limit: int) -> str:
        return (
            FluxQuery(self.bucket)
            .range(start_time, end_time)
            .measurement(measurement)
            .pivot()
            .group()
            .sort("_time", desc=True)
            .limit(limit)
            .render()
        )

    async def streaming(self, start_time: str, end_time: str, limit: Optional[int] = None) -> List[StreamSession]:
        """Latest sample of each stream seen in the range, newest first.

        limit bounds the rows read from the store, so fewer sessions than
        limit come back when a stream reported more than once.
        """
        flux = self._latest_first(self.streaming_measurement, start_time, end_time, self._listing_limit(limit))
        rows = await self._collect(flux)

        sessions: Dict[str, StreamSession] = {}
        for row in rows:
            stream_id = strip_quotes(row.get("id"))
            if stream_id and stream_id not in sessions:
                sessions[stream_id] = normalize_stream(row)
        return list(sessions.values())

    async def storage(self, limit: Optional[int] = None) -> List[StorageUsage]:
        """Most recent storage size per project and domain"""
        flux = self._latest_first(self.storage_measurement, settings.STORAGE_LOOKBACK, "now()",
                                  self._listing_limit(limit))
        rows = await self._collect(flux)

        usage: Dict[str, StorageUsage] = {}
        for row in rows:
            project = strip_quotes(row.get("project")) or ""
            domain = strip_quotes(row.get("domain")) or ""
            key = f"{project}-{domain}"
            if key not in usage:
                usage[key] = StorageUsage(
                    id=key,
                    project=project,
                    domain=domain,
                    size=_number(row.get("size")),
                    update_time=row["_time"],
                )
        return list(usage.values())

    async def write_point(self, point: BandwidthPoint):
        """Store one bandwidth sample"""
        record = (
            Point(self.measurement)
            .tag("project", point.project)
            .tag("domain", point.domain)
            .tag("region", point.region)
            .tag("tag", point.tag)
            .field("upload", float(point.upload))
            .field("download", float(point.download))
            .time(point.time, WritePrecision.MS)
        )
        await self._guarded(self.store.write(record))

    # Cache

    async def _cache_get(self, key: str) -> Optional[str]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(key)
        except RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def _cache_set(self, key: str, value: str):
        if self.cache is None:
            return
        try:
            await self.cache.set(key, value, expire=self.cache_ttl)
        except RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")
