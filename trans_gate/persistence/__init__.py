# trans_gate/persistence/__init__.py
"""本模块作为指标持久化层的公共入口，导出核心组件。"""

from trans_gate.config import PersistenceConfig
from trans_gate.persistence.metrics import FlushResult, MetricsPersistence
from trans_gate.persistence.store import (
    LockRecord,
    MetricRecord,
    MetricsStore,
    SQLAlchemyMetricsStore,
)


def create_metrics_store(config: PersistenceConfig) -> SQLAlchemyMetricsStore:
    """根据配置创建存储实例。这是实例化持久化层的唯一入口。"""
    return SQLAlchemyMetricsStore.from_url(config.database_url)


__all__ = [
    "FlushResult",
    "LockRecord",
    "MetricRecord",
    "MetricsPersistence",
    "MetricsStore",
    "SQLAlchemyMetricsStore",
    "create_metrics_store",
]
