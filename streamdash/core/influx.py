"""InfluxDB connection and utilities"""
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, Optional

from influxdb_client import Point
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync

from streamdash.core.config import settings
from streamdash.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


class InfluxClient:
    """Process-wide InfluxDB client wrapper.

    Created once in the application lifespan and shared by every request;
    the underlying aiohttp session pools connections.
    """

    def __init__(self):
        self.client: Optional[InfluxDBClientAsync] = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def connect(self):
        """Open the client (must run inside the event loop)"""
        self.client = InfluxDBClientAsync(
            url=settings.INFLUX_URL,
            token=settings.INFLUX_TOKEN,
            org=settings.INFLUX_ORG,
            # ms; outlasts the engine query deadline
            timeout=int((settings.INFLUX_QUERY_TIMEOUT + 5) * 1000),
        )
        logger.info(f"InfluxDB client created for {settings.INFLUX_URL} (org={settings.INFLUX_ORG})")

    async def disconnect(self):
        """Close the client"""
        if self.client:
            await self.client.close()
            self.client = None

    def _require(self) -> InfluxDBClientAsync:
        if self.client is None:
            raise StoreUnavailable("InfluxDB client is not connected")
        return self.client

    async def query_stream(self, flux: str) -> AsyncIterator[Dict[str, Any]]:
        """Run a Flux query and yield each record's column values"""
        query_api = self._require().query_api()
        records = await query_api.query_stream(flux, org=settings.INFLUX_ORG)
        async with aclosing(records):
            async for record in records:
                yield record.values

    async def write(self, point: Point):
        """Write a single point to the configured bucket"""
        write_api = self._require().write_api()
        await write_api.write(bucket=settings.INFLUX_BUCKET, org=settings.INFLUX_ORG, record=point)

    async def ping(self) -> bool:
        if self.client is None:
            return False
        return await self.client.ping()


influx_client = InfluxClient()
