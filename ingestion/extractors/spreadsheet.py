"""
Windowed retrieval of large dataset exports.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from core.config import settings
from core.exceptions import ParseError
from ingestion.client import ApiClient
from ingestion.endpoints import Endpoint
from ingestion.transformers.decoders import PayloadDecoder, Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Chunk:
    offset: int
    records: List[Record]
    strategy: str
    size_bytes: int


class SpreadsheetIngestor:
    """
    Fetches an export endpoint one server-side window at a time and decodes
    each window with the ``PayloadDecoder`` chain.

    Decoding runs in a worker thread; windows are still fetched one after
    another. A window that cannot be decoded raises ``ParseError`` with its
    offset; windows already handed to the caller are unaffected.
    """

    def __init__(
        self,
        client: ApiClient,
        decoder: Optional[PayloadDecoder] = None,
        chunk_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.decoder = decoder or PayloadDecoder()
        self.chunk_delay = settings.PAGE_DELAY if chunk_delay is None else chunk_delay
        self._sleep = sleep

    async def fetch_and_decode(
        self,
        endpoint: Endpoint,
        window_size: int,
        offset: int,
        params: Optional[Dict[str, Any]] = None,
    ) -> Chunk:
        query = {**(params or {}), "limit": window_size, "offset": offset}
        payload = await self.client.get_file(endpoint.path, query)
        logger.info(
            f"Fetched {endpoint.name} window at offset {offset}: "
            f"{payload.size} bytes ({payload.content_type or 'unknown type'})"
        )

        try:
            result = await asyncio.to_thread(self.decoder.decode, payload.content, payload.content_type)
        except ParseError as e:
            e.context.update(endpoint=endpoint.name, offset=offset, window_size=window_size)
            raise

        return Chunk(
            offset=offset,
            records=result.records,
            strategy=result.strategy,
            size_bytes=payload.size,
        )

    async def iter_chunks(
        self,
        endpoint: Endpoint,
        window_size: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
        start_offset: int = 0,
    ) -> AsyncIterator[Chunk]:
        """Yield windows until one comes back empty or undersized."""
        window_size = window_size or settings.SPREADSHEET_WINDOW_SIZE
        offset = start_offset

        while True:
            chunk = await self.fetch_and_decode(endpoint, window_size, offset, params)
            yield chunk

            if len(chunk.records) < window_size:
                logger.info(f"{endpoint.name}: last window at offset {offset} ({len(chunk.records)} records)")
                break

            offset += window_size
            if self.chunk_delay:
                await self._sleep(self.chunk_delay)
