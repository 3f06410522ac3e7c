"""
Cursor-paginated GraphQL client for indexed market data (pool ticks).

Pages are requested with ``id > cursor`` in ascending id order. A page shorter
than the page size ends the sequence; a full page continues from its last id.
"""

import asyncio
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, TypeVar

import aiohttp

from ..constants import DEFAULT_PAGE_SIZE
from ..exceptions import DataError, NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

POOL_TICKS_QUERY = """
query PoolTicks($pool: String, $cursor: String, $first: Int = 1000) {
  ticks(
    first: $first
    orderBy: id
    orderDirection: asc
    where: { id_gt: $cursor, pool: $pool }
  ) {
    id
    tickIdx
    liquidityNet
    liquidityGross
  }
}
"""


async def collect_pages(pages: AsyncIterable[List[T]]) -> List[T]:
    """Drain a paginated sequence into one ordered list."""
    out: List[T] = []
    async for page in pages:
        out.extend(page)
    return out


class PaginatedGraphQLClient:
    """
    GraphQL client that walks id-ordered collections page by page.

    Each page is retried independently with a constant delay; when a page
    still fails after ``max_attempts`` the whole pagination is aborted.
    """

    DEFAULT_LIMIT = DEFAULT_PAGE_SIZE

    def __init__(
        self,
        endpoint: str,
        session: Optional[aiohttp.ClientSession] = None,
        page_size: int = DEFAULT_LIMIT,
        max_attempts: int = 3,
        retry_delay: float = 0.0,
        timeout_sec: float = 30.0,
    ):
        """
        Args:
            endpoint: GraphQL HTTP endpoint
            session: Shared aiohttp session (created lazily if omitted)
            page_size: Default records per page when the query does not set ``first``
            max_attempts: Attempts per page before giving up
            retry_delay: Constant delay between attempts (seconds)
            timeout_sec: Per-request timeout
        """
        self.endpoint = endpoint
        self._session = session
        self._owns_session = session is None
        self.page_size = page_size
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def request(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute one GraphQL request and return its ``data`` object.

        Raises:
            NetworkError: On transport failures or non-200 responses
            DataError: When the response carries GraphQL errors or no data
        """
        session = await self._get_session()
        try:
            async with session.post(
                self.endpoint, json={"query": query, "variables": variables}
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise NetworkError(
                        f"GraphQL request failed with HTTP {response.status}: {text[:200]}",
                        endpoint=self.endpoint,
                        status_code=response.status,
                    )
                payload = await response.json()
        except aiohttp.ClientError as e:
            raise NetworkError(f"GraphQL request failed: {e}", endpoint=self.endpoint)

        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            raise DataError(f"GraphQL errors: {messages}", source=self.endpoint)
        data = payload.get("data")
        if data is None:
            raise DataError("GraphQL response has no data", source=self.endpoint)
        return data

    async def _request_with_retry(
        self, query: str, variables: Dict[str, Any]
    ) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.request(query, variables)
            except (NetworkError, DataError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt < self.max_attempts:
                    logger.warning(
                        f"GraphQL page request failed ({attempt}/{self.max_attempts}): {e}. "
                        "Retrying..."
                    )
                    await asyncio.sleep(self.retry_delay)

        raise DataError(
            f"GraphQL page request failed after {self.max_attempts} attempts: {last_error}",
            source=self.endpoint,
            details={"variables": variables},
        )

    async def paginate(
        self,
        accessor: str,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield pages of records from the collection named ``accessor``.

        Args:
            accessor: Top-level field holding the records (e.g. "ticks")
            query: GraphQL document taking ``$cursor`` and ``$first``
            variables: Extra query variables

        Yields:
            Lists of raw records in ascending id order
        """
        variables = dict(variables or {})
        limit = int(variables.get("first") or self.page_size)
        variables["first"] = limit
        cursor: Optional[str] = ""

        while cursor is not None:
            data = await self._request_with_retry(query, {**variables, "cursor": cursor})
            records = data.get(accessor)
            if records is None:
                raise DataError(f"GraphQL response missing '{accessor}'", source=self.endpoint)

            yield records
            cursor = records[-1]["id"] if len(records) == limit else None

    async def fetch_pool_ticks(self, pool_address: str) -> List[Dict[str, Any]]:
        """All tick records of one pool, in ascending id order."""
        return await collect_pages(
            self.paginate("ticks", POOL_TICKS_QUERY, {"pool": pool_address.lower()})
        )
