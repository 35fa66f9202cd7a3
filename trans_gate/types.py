# trans_gate/types.py
"""
本模块定义了 Trans-Gate 翻译管线的核心数据类型。

请求与结果在构造后不可变（frozen），管线各阶段通过 `model_copy(update=...)`
派生新对象，而不是原地修改。
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Strategy(str, Enum):
    """三种执行策略，由内容形态决定。"""

    SIMPLE = "simple"
    ENHANCED = "enhanced"
    LONG_TEXT = "long_text"


class TranslationRequest(BaseModel):
    """调用方提交的一次翻译请求。"""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    target_language: str = Field(min_length=1)
    system_prompt: str | None = None
    strategy_hint: Strategy | None = None
    extras: dict[str, Any] = Field(default_factory=dict)

    @field_validator("target_language")
    @classmethod
    def _strip_language(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("target_language 不能为空")
        return v


class ResultMeta(BaseModel):
    """翻译结果的执行元数据。"""

    model_config = ConfigDict(frozen=True)

    duration: float = 0.0  # 毫秒
    retry_count: int = 0
    strategy: str | None = None
    cache_hit: bool = False
    fallback: str | None = None
    quality_flag: str | None = None
    chunk_count: int | None = None
    skipped_reason: str | None = None


class TranslationResult(BaseModel):
    """管线返回给调用方的结构化结果。"""

    model_config = ConfigDict(frozen=True)

    success: bool
    text: str
    error: str | None = None
    is_original: bool = False
    language: str | None = None
    meta: ResultMeta = Field(default_factory=ResultMeta)

    @classmethod
    def original(
        cls,
        text: str,
        language: str | None,
        *,
        success: bool = True,
        error: str | None = None,
        **meta: Any,
    ) -> TranslationResult:
        """构造一个“有意返回原文”的结果（跳过、降级或容错失败）。"""
        return cls(
            success=success,
            text=text,
            error=error,
            is_original=True,
            language=language,
            meta=ResultMeta(**meta),
        )

    def with_meta(self, **updates: Any) -> TranslationResult:
        """返回一个更新了部分元数据的新结果。"""
        return self.model_copy(update={"meta": self.meta.model_copy(update=updates)})


class CompletionCall(BaseModel):
    """交给引擎的一次远端调用所需的全部参数。"""

    model_config = ConfigDict(frozen=True)

    text: str
    target_language: str
    system_prompt: str
    model: str | None = None
    temperature: float | None = None


class EngineSuccess(BaseModel):
    """代表远端端点成功返回的单次生成结果。"""

    text: str
    status_code: int | None = 200


class EngineError(BaseModel):
    """代表远端端点的单次失败结果，并指明是否可重试。"""

    error_message: str
    is_retryable: bool
    status_code: int | str | None = None


EngineResult = Union[EngineSuccess, EngineError]


class MetricSample(BaseModel):
    """一次远端调用尝试的监控样本（只追加，不可变）。"""

    model_config = ConfigDict(frozen=True)

    operation: str
    success: bool
    duration: float | None = None  # 毫秒
    status_code: int | str | None = None
    method: str = "POST"
    timestamp: float = Field(default_factory=time.time)  # 秒


class CompletenessReport(BaseModel):
    """质量门对译文完整性的判定。"""

    is_complete: bool
    reason: str
