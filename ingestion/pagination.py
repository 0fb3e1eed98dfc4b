"""
Paginated retrieval of provider list endpoints.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from core.config import settings
from core.exceptions import AuthError, ExtractionError
from ingestion.client import ApiClient
from ingestion.endpoints import Endpoint, PaginationStyle
from ingestion.envelopes import Page, extract_single

logger = logging.getLogger(__name__)


def has_more_pages(endpoint: Endpoint, page: Page, page_number: int) -> bool:
    """
    Decide whether another page should be requested.

    Stops on an empty page, an undersized page, or (page style) once the
    server-reported ``total_pages`` is reached.
    """
    if page.count == 0:
        return False
    if page.count < endpoint.page_size:
        return False
    if endpoint.style == PaginationStyle.PAGE and page.total_pages is not None:
        return page_number < page.total_pages
    return True


class PagedRetriever:
    """
    Sequential page loop over one list endpoint.

    Pages are requested strictly one after another with a fixed delay in
    between. Every call to ``iter_pages`` starts again from the first page.
    Retries happen per page inside the ``ApiClient``.
    """

    def __init__(
        self,
        client: ApiClient,
        page_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.page_delay = settings.PAGE_DELAY if page_delay is None else page_delay
        self._sleep = sleep

    async def iter_pages(
        self,
        endpoint: Endpoint,
        path: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[Page]:
        path = path or endpoint.path
        offset = 0
        page_number = 1

        while True:
            query = dict(params or {})
            if endpoint.style == PaginationStyle.OFFSET:
                query.update(offset=offset, limit=endpoint.page_size)
            else:
                query.update(page=page_number, per_page=endpoint.page_size)

            payload = await self.client.get_json(path, query)
            page = endpoint.extract(payload)
            logger.debug(f"{endpoint.name} page {page_number}: {page.count} entries")
            yield page

            if not has_more_pages(endpoint, page, page_number):
                break

            offset += endpoint.page_size
            page_number += 1
            if self.page_delay:
                await self._sleep(self.page_delay)

    async def fetch_all(
        self,
        endpoint: Endpoint,
        path: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Materialize every page of an endpoint into one list."""
        items: List[Dict[str, Any]] = []
        pages = 0
        async for page in self.iter_pages(endpoint, path=path, params=params):
            items.extend(page.items)
            pages += 1

        logger.info(f"Fetched {len(items)} items from {endpoint.name} in {pages} page(s)")
        return items

    async def fetch_once(
        self,
        endpoint: Endpoint,
        path: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Items of an endpoint that answers in a single unpaginated response."""
        payload = await self.client.get_json(path or endpoint.path, params)
        items = endpoint.extract(payload).items
        logger.info(f"Fetched {len(items)} items from {endpoint.name}")
        return items

    async def fetch_object(
        self,
        endpoint: Endpoint,
        path: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = await self.client.get_json(path or endpoint.path, params)
        return extract_single(payload, endpoint)

    async def fetch_details(
        self,
        endpoint: Endpoint,
        keys: Sequence[str],
        path_param: str,
        concurrency: Optional[int] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """
        Fetch the detail object for each key, ``concurrency`` requests at a time.

        A key whose request fails (other than on authentication) is left out
        of the result so the caller can keep its summary record.
        """
        size = concurrency or settings.ENRICHMENT_CONCURRENCY
        details: Dict[str, Dict[str, Any]] = {}
        failed = 0

        for start in range(0, len(keys), size):
            group = list(keys[start:start + size])
            responses = await asyncio.gather(
                *(self.client.get_json(endpoint.render(**{path_param: key})) for key in group),
                return_exceptions=True
            )

            for key, response in zip(group, responses):
                if isinstance(response, AuthError):
                    raise response
                if isinstance(response, ExtractionError):
                    failed += 1
                    logger.warning(f"Detail fetch for {endpoint.name} {key} failed: {response.message}")
                    continue
                if isinstance(response, BaseException):
                    raise response
                details[key] = extract_single(response, endpoint)

            logger.info(f"Fetched {endpoint.name} details {min(start + size, len(keys))}/{len(keys)}")

        if failed:
            logger.warning(f"{failed} {endpoint.name} detail request(s) failed; summary records kept")
        return details
