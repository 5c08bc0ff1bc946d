"""Service container wiring stores, caches and domain services."""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from kpi_recon.config import ReconConfig, get_config
from kpi_recon.domain.services import (
    ApprovalService,
    BOQAggregationService,
    BulkOrchestrator,
    UserDirectory,
    UserInfoCache,
)
from kpi_recon.infrastructure.store import InMemoryRecordStore, RecordStore, SqlRecordStore
from kpi_recon.models import ReconTables


class ServiceContainer:
    """
    Holds the four stores and builds each service once, on first use.

    The user cache is owned by the container and injected into the
    directory, so invalidation is explicit and per container.
    """

    def __init__(
        self,
        live_store: RecordStore,
        rejected_store: RecordStore,
        boq_store: RecordStore,
        users_store: RecordStore,
        config: Optional[ReconConfig] = None,
        engine: Optional[AsyncEngine] = None,
        tables: Optional[ReconTables] = None,
    ) -> None:
        self.config = config or get_config()
        self.live_store = live_store
        self.rejected_store = rejected_store
        self.boq_store = boq_store
        self.users_store = users_store
        self.engine = engine
        self.tables = tables
        self._user_cache = None
        self._users = None
        self._aggregator = None
        self._approvals = None
        self._bulk = None

    @classmethod
    def from_engine(
        cls,
        engine: AsyncEngine,
        config: Optional[ReconConfig] = None,
        tables: Optional[ReconTables] = None,
    ) -> "ServiceContainer":
        """Container over SQL tables of one database."""
        config = config or get_config()
        tables = tables or ReconTables(config)
        return cls(
            live_store=SqlRecordStore(engine, tables.live_kpi),
            rejected_store=SqlRecordStore(engine, tables.rejected_kpi),
            boq_store=SqlRecordStore(engine, tables.boq),
            users_store=SqlRecordStore(engine, tables.users),
            config=config,
            engine=engine,
            tables=tables,
        )

    @classmethod
    def in_memory(cls, config: Optional[ReconConfig] = None) -> "ServiceContainer":
        """Container over empty in-memory stores."""
        config = config or get_config()
        return cls(
            live_store=InMemoryRecordStore(config.live_kpi_table),
            rejected_store=InMemoryRecordStore(config.rejected_kpi_table),
            boq_store=InMemoryRecordStore(config.boq_table),
            users_store=InMemoryRecordStore(config.users_table),
            config=config,
        )

    def user_cache(self) -> UserInfoCache:
        if self._user_cache is None:
            self._user_cache = UserInfoCache(ttl_seconds=self.config.user_cache_ttl_seconds)
        return self._user_cache

    def users(self) -> UserDirectory:
        if self._users is None:
            self._users = UserDirectory(self.users_store, self.user_cache())
        return self._users

    def aggregator(self) -> BOQAggregationService:
        if self._aggregator is None:
            self._aggregator = BOQAggregationService(self.live_store, self.boq_store, self.config)
        return self._aggregator

    def approvals(self) -> ApprovalService:
        if self._approvals is None:
            self._approvals = ApprovalService(
                self.live_store,
                self.rejected_store,
                aggregator=self.aggregator(),
                config=self.config,
            )
        return self._approvals

    def bulk(self) -> BulkOrchestrator:
        if self._bulk is None:
            self._bulk = BulkOrchestrator(self.approvals(), self.config)
        return self._bulk

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
