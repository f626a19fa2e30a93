"""Shared test fixtures."""

import asyncio
import re
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from streamdash.services.bandwidth_service import BandwidthQueryEngine

TAG_FILTER_RE = re.compile(r'r\.(project|domain|region|tag) == "((?:[^"\\]|\\.)*)"')
WINDOW_RE = re.compile(r"aggregateWindow\(every: (\d+)([mhd])")
DISTINCT_RE = re.compile(r'distinct\(column: "(\w+)"\)')
SORT_RE = re.compile(r'sort\(columns: \["(\w+)"\], desc: (true|false)\)')
LIMIT_RE = re.compile(r"limit\(n: (\d+), offset: (\d+)\)")
MEASUREMENT_RE = re.compile(r'r\._measurement == "((?:[^"\\]|\\.)*)"')
DEFAULT_MEASUREMENT = "bandwidth_usage"
UNIT_SECONDS = {"m": 60, "h": 3600, "d": 86400}
TAGS = ("project", "domain", "region", "tag")


def _unescape(value):
    return value.replace('\\"', '"').replace("\\\\", "\\")


class FakeStore:
    """In-memory stand-in for the InfluxDB client.

    Rows are raw wide samples; a row without a _measurement belongs to
    bandwidth_usage. The measurement filter, tag equality filters,
    aggregateWindow (mean, window-start timestamps), the synthetic total,
    sort(), limit(), distinct() and count() in the issued Flux are honoured
    so results can be checked end to end; range() is not.
    """

    def __init__(self, rows=None, error=None, count_error=None, delay=0.0):
        self.rows = list(rows or [])
        self.error = error
        self.count_error = count_error
        self.delay = delay
        self.queries = []
        self.points = []
        self.open_streams = 0

    def _filtered(self, flux):
        match = MEASUREMENT_RE.search(flux)
        measurement = _unescape(match.group(1)) if match else DEFAULT_MEASUREMENT
        rows = [r for r in self.rows if r.get("_measurement", DEFAULT_MEASUREMENT) == measurement]
        for column, value in TAG_FILTER_RE.findall(flux):
            value = _unescape(value)
            rows = [r for r in rows if r.get(column) == value]
        return rows

    def _aggregated(self, flux, rows):
        match = WINDOW_RE.search(flux)
        if not match:
            return rows
        size = int(match.group(1)) * UNIT_SECONDS[match.group(2)]
        buckets = defaultdict(lambda: defaultdict(list))
        for row in rows:
            ts = int(row["_time"].timestamp())
            start = datetime.fromtimestamp(ts - ts % size, tz=timezone.utc)
            key = (start,) + tuple(row.get(t) for t in TAGS)
            for field in ("upload", "download"):
                if row.get(field) is not None:
                    buckets[key][field].append(row[field])
        result = []
        for key, fields in buckets.items():
            out = {"_time": key[0]}
            out.update({t: v for t, v in zip(TAGS, key[1:]) if v is not None})
            for field, values in fields.items():
                out[field] = sum(values) / len(values)
            result.append(out)
        return result

    def _ordered(self, flux, rows):
        rows = [dict(r) for r in rows]
        if "r with total:" in flux:
            for row in rows:
                row["total"] = float(row.get("upload") or 0.0) + float(row.get("download") or 0.0)

        match = SORT_RE.search(flux)
        if match:
            column, desc = match.group(1), match.group(2) == "true"
            rows.sort(key=lambda r: r["_time"])
            # nulls first, like Flux
            rows.sort(key=lambda r: (r.get(column) is not None, r.get(column) or 0), reverse=desc)

        match = LIMIT_RE.search(flux)
        if match:
            n, offset = int(match.group(1)), int(match.group(2))
            rows = rows[offset:offset + n]
        return rows

    def _execute(self, flux):
        if 'count(column: "_time")' in flux:
            if self.count_error:
                raise self.count_error
            return [{"_time": len(self._aggregated(flux, self._filtered(flux)))}]

        if self.error:
            raise self.error

        distinct = DISTINCT_RE.search(flux)
        if distinct:
            column = distinct.group(1)
            seen = []
            for row in self._filtered(flux):
                value = row.get(column)
                if value is not None and value not in seen:
                    seen.append(value)
            return [{"_value": value} for value in seen]

        return self._ordered(flux, self._aggregated(flux, self._filtered(flux)))

    async def query_stream(self, flux):
        self.queries.append(flux)
        self.open_streams += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            for row in self._execute(flux):
                yield row
        finally:
            self.open_streams -= 1

    async def write(self, point):
        if self.error:
            raise self.error
        self.points.append(point)


class FakeCache:
    """Dict-backed stand-in for the Redis wrapper."""

    def __init__(self):
        self.values = {}
        self.expiries = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, expire=None):
        self.values[key] = value
        self.expiries[key] = expire


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_samples(count, project="proj-A", step_minutes=5, start=BASE_TIME, **tags):
    """count raw samples, one every step_minutes, with growing values"""
    return [
        {
            "_time": start + timedelta(minutes=i * step_minutes),
            "upload": float(i + 1),
            "download": float(2 * (i + 1)),
            "project": project,
            "domain": tags.get("domain", "cdn.example.com"),
            "region": tags.get("region", "eu-west"),
            "tag": tags.get("tag", "live"),
        }
        for i in range(count)
    ]


@pytest.fixture
def samples():
    """12 five-minute samples for proj-A and 6 for proj-B in the same hour"""
    return make_samples(12) + make_samples(6, project="proj-B", region="us-east")


@pytest.fixture
def store(samples):
    return FakeStore(samples)


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def engine(store, cache):
    return BandwidthQueryEngine(
        store,
        cache,
        bucket="streaming-data",
        measurement="bandwidth_usage",
        timeout=1.0,
        count_strategy="exact",
        max_rows=1000,
        max_page_size=100,
        cache_ttl=60,
    )


def make_stream_rows():
    """Two reports for s-1, one for s-2 and one row without an id"""
    def row(minutes, **values):
        return {"_measurement": "streaming_data", "_time": BASE_TIME + timedelta(minutes=minutes), **values}

    return [
        row(0, id="s-1", streamName="Morning show", bandwidth=3.0, viewers=5, status="starting"),
        row(5, id="s-2", streamName="Match replay", domain="live.example.com", bandwidth=7.5, viewers=10.0),
        row(10, id='"s-1"', streamName='"Morning show"', type='"pull"', domain='"live.example.com"',
            region="eu-west", bandwidth=12.5, duration=600, viewers=42.0, status='"active"',
            startTime='"2024-01-01T00:00:00Z"'),
        row(15, streamName="orphan", bandwidth=1.0),
    ]


def make_storage_rows():
    """proj-A reported twice, proj-B once"""
    def row(minutes, project, domain, size):
        return {"_measurement": "storage_usage", "_time": BASE_TIME + timedelta(minutes=minutes),
                "project": project, "domain": domain, "size": size}

    return [
        row(0, "proj-A", "cdn.example.com", 10.0),
        row(5, '"proj-B"', "img.example.com", 4.0),
        row(10, "proj-A", "cdn.example.com", 20.0),
    ]
