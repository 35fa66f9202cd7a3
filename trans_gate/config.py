# trans_gate/config.py
"""
Trans-Gate 配置（Pydantic v2）

- 顶层 `TransGateConfig` 从环境变量 / .env 加载，前缀 `TG_`，
  嵌套字段使用 `__` 分隔，例如 `TG_CLIENT__MAX_RETRIES=3`。
- 各子模型只描述数据与约束，不做 I/O。
"""

from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine.url import make_url

# ===================== 子模型 =====================


class ClientConfig(BaseModel):
    """弹性客户端：缓存、去重、重试。"""

    max_retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0, description="首次重试等待（秒）")
    max_retry_delay: float = Field(default=10.0, ge=0, description="退避上限（秒）")
    use_exponential_backoff: bool = True
    cache_ttl: int = Field(default=3600, gt=0, description="缓存存活时间（秒）")
    max_entries: int = Field(default=1000, gt=0)
    max_in_flight: int = Field(default=500, gt=0)
    request_timeout: float = Field(default=45.0, gt=0, description="单次尝试硬超时（秒）")
    cache_sweep_interval: float = Field(default=300.0, ge=0)
    monitor_operation: str = "translation.chat_completions"

    @model_validator(mode="after")
    def _check_backoff_consistency(self) -> "ClientConfig":
        if self.max_retry_delay < self.retry_delay:
            raise ValueError("max_retry_delay 必须大于或等于 retry_delay")
        return self


class EngineSettings(BaseModel):
    """远端生成端点。"""

    active_engine: Literal["openai", "debug"] = "openai"
    api_key: Optional[SecretStr] = None
    endpoint: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    fallback_model: Optional[str] = None
    temperature: float = Field(default=0.2, ge=0)
    timeout_total: float = Field(default=45.0, gt=0)
    timeout_connect: float = Field(default=5.0, gt=0)
    rpm: Optional[int] = Field(default=None, gt=0)
    rps: Optional[int] = Field(default=None, gt=0)
    max_concurrency: Optional[int] = Field(default=None, gt=0)


class OrchestratorConfig(BaseModel):
    long_text_threshold: int = Field(default=1500, gt=0)
    max_chunk_size: int = Field(default=1000, gt=0)
    chunk_concurrency: int = Field(default=1, gt=0)


class QualityConfig(BaseModel):
    brand_terms: list[str] = Field(default_factory=list)
    brand_max_length: int = Field(default=50, gt=0)
    placeholder_fallback_text: Optional[str] = None
    strict_retry: bool = True
    config_key_fallback: bool = True


class MonitorConfig(BaseModel):
    """API 监控阈值。比例类阈值取值 0~1。"""

    enabled: bool = True
    operations: list[str] = Field(default_factory=list)
    min_sample: int = Field(default=20, ge=1)
    failure_warn: float = Field(default=0.001, ge=0, le=1)
    failure_error: float = Field(default=0.005, ge=0, le=1)
    p95_warn_ratio: float = Field(default=1.05, gt=0)
    p95_error_ratio: float = Field(default=1.1, gt=0)
    max_samples_per_operation: int = Field(default=10_000, gt=0)


class PersistenceConfig(BaseModel):
    """指标持久化（单写者）。"""

    enabled: bool = False
    database_url: str = Field(
        default="sqlite+aiosqlite:///trans_gate_metrics.db",
        description="异步 DSN（sqlite+aiosqlite / postgresql+asyncpg）",
    )
    interval_ms: int = Field(default=60 * 60 * 1000, gt=0)
    max_retries: int = Field(default=3, ge=1)
    lock_timeout_ms: int = Field(default=5 * 60 * 1000, gt=0)
    service_name: str = "metrics-persistence"
    instance_id: str = Field(default_factory=lambda: f"instance-{os.getpid()}")
    dump_dir: str = "logs"

    @field_validator("database_url")
    @classmethod
    def _validate_async_driver(cls, v: str) -> str:
        allowed = {"sqlite+aiosqlite", "postgresql+asyncpg"}
        try:
            drv = make_url(v).drivername.lower()
        except Exception as e:
            raise ValueError(f"非法数据库 URL：{v!r}（{e}）") from e
        if drv not in allowed:
            raise ValueError(
                f"不支持的运行期数据库驱动：{drv!r}，仅允许 {', '.join(sorted(allowed))}"
            )
        return v


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console"] = "console"


# ===================== 顶层配置 =====================
class TransGateConfig(BaseSettings):
    """Trans-Gate 核心配置模型。"""

    client: ClientConfig = Field(default_factory=ClientConfig)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="TG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
