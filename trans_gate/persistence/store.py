# trans_gate/persistence/store.py
"""
指标持久化的存储层：一个 `MetricsStore` 协议，以及基于 SQLAlchemy 异步引擎的实现。

批量写入使用“重复即跳过”语义（SQLite 的 `INSERT OR IGNORE`，PostgreSQL 的
`ON CONFLICT DO NOTHING`），因此同一批记录重试写入是幂等的。
锁的创建依赖主键约束，是原子的“不存在才插入”。
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import structlog
from pydantic import BaseModel
from sqlalchemy import Insert, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from trans_gate.exceptions import LockConflictError, PersistenceError
from trans_gate.persistence.schema import ApiMetric, Base, ServiceLock

logger = structlog.get_logger(__name__)


class MetricRecord(BaseModel):
    """写入 `api_metrics` 的一行，也是本地转储文件中的一行 JSON。"""

    operation: str
    timestamp: int  # epoch 毫秒
    success: int
    failure: int
    success_rate: float
    failure_rate: float
    p95: float
    instance_id: str


class LockRecord(BaseModel):
    service: str
    instance_id: str
    acquired_at: int  # epoch 毫秒


@runtime_checkable
class MetricsStore(Protocol):
    """持久化指标与服务锁所需的最小存储接口。"""

    async def insert_many(self, records: Sequence[MetricRecord]) -> int: ...

    async def insert_one(self, record: MetricRecord) -> None: ...

    async def create_lock(self, lock: LockRecord) -> None:
        """原子创建锁；已存在时抛出 `LockConflictError`。"""
        ...

    async def get_lock(self, service: str) -> LockRecord | None: ...

    async def refresh_lock(self, service: str, instance_id: str, acquired_at: int) -> bool: ...

    async def delete_lock(self, service: str, instance_id: str) -> bool: ...

    async def delete_stale_locks(self, service: str, older_than: int) -> int: ...

    async def close(self) -> None: ...


class SQLAlchemyMetricsStore:
    """`MetricsStore` 协议的 SQLAlchemy 异步实现（aiosqlite / asyncpg）。"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine, expire_on_commit=False
        )
        self.dialect = engine.dialect.name

    @classmethod
    def from_url(cls, database_url: str) -> SQLAlchemyMetricsStore:
        return cls(create_async_engine(database_url))

    async def create_all(self) -> None:
        """创建指标相关的两张表（已存在则跳过）。"""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise PersistenceError(f"创建指标表失败: {e}") from e

    def _insert_ignore(self) -> Insert:
        if self.dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as pg_insert

            return pg_insert(ApiMetric.__table__).on_conflict_do_nothing(
                constraint="uq_api_metrics_snapshot"
            )
        return insert(ApiMetric.__table__).prefix_with("OR IGNORE")

    async def insert_many(self, records: Sequence[MetricRecord]) -> int:
        """批量写入，重复行被跳过。返回提交的记录数。"""
        if not records:
            return 0
        try:
            async with self._sessionmaker.begin() as session:
                await session.execute(
                    self._insert_ignore(), [r.model_dump() for r in records]
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"批量写入指标失败: {e}") from e
        return len(records)

    async def insert_one(self, record: MetricRecord) -> None:
        try:
            async with self._sessionmaker.begin() as session:
                await session.execute(insert(ApiMetric).values(**record.model_dump()))
        except SQLAlchemyError as e:
            raise PersistenceError(f"写入单条指标失败: {e}") from e

    async def count_metrics(self, operation: str | None = None) -> int:
        stmt = select(func.count()).select_from(ApiMetric)
        if operation is not None:
            stmt = stmt.where(ApiMetric.operation == operation)
        try:
            async with self._sessionmaker() as session:
                return int((await session.execute(stmt)).scalar_one())
        except SQLAlchemyError as e:
            raise PersistenceError(f"统计指标失败: {e}") from e

    async def recent_metrics(
        self, operation: str | None = None, limit: int = 20
    ) -> list[MetricRecord]:
        """按时间倒序返回最近的快照。"""
        stmt = select(ApiMetric).order_by(ApiMetric.timestamp.desc(), ApiMetric.id.desc())
        if operation is not None:
            stmt = stmt.where(ApiMetric.operation == operation)
        try:
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt.limit(limit))).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"读取指标失败: {e}") from e
        return [
            MetricRecord(
                operation=r.operation,
                timestamp=r.timestamp,
                success=r.success,
                failure=r.failure,
                success_rate=r.success_rate,
                failure_rate=r.failure_rate,
                p95=r.p95,
                instance_id=r.instance_id,
            )
            for r in rows
        ]

    async def create_lock(self, lock: LockRecord) -> None:
        try:
            async with self._sessionmaker.begin() as session:
                await session.execute(insert(ServiceLock).values(**lock.model_dump()))
        except IntegrityError as e:
            raise LockConflictError(f"服务锁 '{lock.service}' 已被持有") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"创建服务锁失败: {e}") from e

    async def get_lock(self, service: str) -> LockRecord | None:
        try:
            async with self._sessionmaker() as session:
                row = (
                    await session.execute(
                        select(ServiceLock).where(ServiceLock.service == service)
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"读取服务锁失败: {e}") from e
        if row is None:
            return None
        return LockRecord(
            service=row.service, instance_id=row.instance_id, acquired_at=row.acquired_at
        )

    async def refresh_lock(self, service: str, instance_id: str, acquired_at: int) -> bool:
        """仅当锁属于 `instance_id` 时更新其时间戳。"""
        try:
            async with self._sessionmaker.begin() as session:
                result = await session.execute(
                    update(ServiceLock)
                    .where(
                        ServiceLock.service == service,
                        ServiceLock.instance_id == instance_id,
                    )
                    .values(acquired_at=acquired_at)
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"刷新服务锁失败: {e}") from e
        return bool(result.rowcount)

    async def delete_lock(self, service: str, instance_id: str) -> bool:
        try:
            async with self._sessionmaker.begin() as session:
                result = await session.execute(
                    delete(ServiceLock).where(
                        ServiceLock.service == service,
                        ServiceLock.instance_id == instance_id,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"释放服务锁失败: {e}") from e
        return bool(result.rowcount)

    async def delete_stale_locks(self, service: str, older_than: int) -> int:
        try:
            async with self._sessionmaker.begin() as session:
                result = await session.execute(
                    delete(ServiceLock).where(
                        ServiceLock.service == service,
                        ServiceLock.acquired_at < older_than,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"清理过期服务锁失败: {e}") from e
        return int(result.rowcount or 0)

    async def close(self) -> None:
        await self.engine.dispose()
        logger.debug("指标数据库引擎已释放。")
