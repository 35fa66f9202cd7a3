# trans_gate/fallbacks.py
"""
降级链：主请求路径耗尽重试后，`ResilientClient` 按顺序尝试这里的降级步骤。

每个步骤根据失败上下文给出一组请求覆盖项；返回 None 表示该步骤不适用，直接跳过。
"""

from abc import ABC
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from trans_gate import prompts
from trans_gate.protection import PLACEHOLDER_PATTERN
from trans_gate.types import TranslationRequest


class RequestOverrides(BaseModel):
    """降级步骤对原请求的局部覆盖。未设置的字段沿用原请求。"""

    model_config = ConfigDict(frozen=True)

    text: str | None = None
    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_retries: int = Field(default=0, ge=0)


@dataclass(frozen=True)
class FallbackContext:
    request: TranslationRequest
    system_prompt: str
    last_error: str | None
    last_status: int | str | None
    attempts: int


class FallbackStep(ABC):
    """降级步骤的基类。默认实现不做任何事（跳过）。"""

    name: str = "noop"

    def prepare(self, ctx: FallbackContext) -> RequestOverrides | None:
        return None


class SimplifiedPromptFallback(FallbackStep):
    """改用最短的系统提示词再试一次。"""

    name = "simplified-prompt"

    def __init__(self, max_retries: int = 1):
        self.max_retries = max_retries

    def prepare(self, ctx: FallbackContext) -> RequestOverrides | None:
        prompt = prompts.simplified_prompt(
            ctx.request.target_language,
            keep_placeholders=bool(PLACEHOLDER_PATTERN.search(ctx.request.text)),
        )
        if prompt == ctx.system_prompt:
            return None
        return RequestOverrides(system_prompt=prompt, max_retries=self.max_retries)


class ModelFallback(FallbackStep):
    """切换到备用模型。"""

    name = "model"

    def __init__(self, model: str, max_retries: int = 0):
        self.model = model
        self.max_retries = max_retries

    def prepare(self, ctx: FallbackContext) -> RequestOverrides | None:
        return RequestOverrides(model=self.model, max_retries=self.max_retries)


class StaticFallback(FallbackStep):
    """固定的覆盖项，主要供调用方临时组合降级链使用。"""

    def __init__(self, name: str, overrides: RequestOverrides):
        self.name = name
        self.overrides = overrides

    def prepare(self, ctx: FallbackContext) -> RequestOverrides | None:
        return self.overrides


def default_fallbacks(fallback_model: str | None = None) -> list[FallbackStep]:
    steps: list[FallbackStep] = [SimplifiedPromptFallback()]
    if fallback_model:
        steps.append(ModelFallback(fallback_model))
    return steps
