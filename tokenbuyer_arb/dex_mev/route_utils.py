"""
Route population: attach full tick sets to concentrated-liquidity pools so the
route can be priced locally during the profit search.
"""

import dataclasses
import logging
from typing import Optional

from .graphql_client import PaginatedGraphQLClient
from .pool_math import compute_v3_pool_address
from .types import Route, TickInfo, V3Pool

logger = logging.getLogger(__name__)


class RoutePopulator:
    """Enriches routes with tick data from the indexed data source."""

    def __init__(
        self,
        client: PaginatedGraphQLClient,
        factory: Optional[str] = None,
        init_code_hash: Optional[str] = None,
    ):
        """
        Args:
            client: Paginated client for the tick collection
            factory: V3 factory, used to derive addresses of pools without one
            init_code_hash: V3 pool init-code hash for the same derivation
        """
        self.client = client
        self.factory = factory
        self.init_code_hash = init_code_hash

    def pool_address(self, pool: V3Pool) -> str:
        if pool.address:
            return pool.address
        if not (self.factory and self.init_code_hash):
            raise ValueError("Pool has no address and no factory is configured")
        return compute_v3_pool_address(
            self.factory, pool.token0, pool.token1, pool.fee, self.init_code_hash
        )

    async def populate(self, route: Route) -> Route:
        """
        Return a copy of ``route`` whose V3 pools carry their sorted tick sets.

        Constant-reserve pools pass through unchanged. Fetch failures propagate.
        """
        pools = []
        for pool in route.pools:
            if not isinstance(pool, V3Pool):
                pools.append(pool)
                continue

            address = self.pool_address(pool)
            records = await self.client.fetch_pool_ticks(address)
            ticks = sorted(
                (TickInfo.from_record(record) for record in records),
                key=lambda tick: tick.tick_idx,
            )
            logger.debug(f"Loaded {len(ticks)} ticks for pool {address}")
            pools.append(dataclasses.replace(pool, address=address, ticks=tuple(ticks)))

        return dataclasses.replace(route, pools=tuple(pools))
