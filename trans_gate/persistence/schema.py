# trans_gate/persistence/schema.py
"""指标持久化使用的两张表：`api_metrics`（指标快照）与 `service_locks`（单写者锁）。"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Float,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ApiMetric(Base):
    """一次持久化周期中某个操作的指标快照。同一实例同一时刻的同一操作只保留一行。"""

    __tablename__ = "api_metrics"
    __table_args__ = (
        UniqueConstraint(
            "operation", "timestamp", "instance_id", name="uq_api_metrics_snapshot"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch 毫秒
    success: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    failure_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    p95: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    instance_id: Mapped[str] = mapped_column(String(255), nullable=False)


class ServiceLock(Base):
    """单写者锁。行存在即表示被持有；主键保证创建是原子的“不存在才插入”。"""

    __tablename__ = "service_locks"

    service: Mapped[str] = mapped_column(String(255), primary_key=True)
    instance_id: Mapped[str] = mapped_column(String(255), nullable=False)
    acquired_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch 毫秒
