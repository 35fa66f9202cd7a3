# trans_gate/engines/debug.py
"""提供一个用于本地运行和测试的离线调试引擎。"""

from typing import Literal

from trans_gate.config import EngineSettings
from trans_gate.engines.base import BaseCompletionEngine
from trans_gate.types import CompletionCall, EngineError, EngineResult, EngineSuccess


class DebugEngine(BaseCompletionEngine):
    """
    一个确定性的调试引擎：在原文前加上 `[目标语言]` 标记后原样返回，
    因此占位符与标签都会完整保留。
    """

    VERSION = "1.0.0"

    def __init__(
        self,
        settings: EngineSettings | None = None,
        mode: Literal["SUCCESS", "FAIL"] = "SUCCESS",
        fail_on_text: str | None = None,
        fail_is_retryable: bool = True,
        translation_map: dict[str, str] | None = None,
    ):
        super().__init__(settings or EngineSettings(active_engine="debug"))
        self.mode = mode
        self.fail_on_text = fail_on_text
        self.fail_is_retryable = fail_is_retryable
        self.translation_map = translation_map or {}
        self.calls: list[CompletionCall] = []

    async def _execute(self, call: CompletionCall) -> EngineResult:
        self.calls.append(call)
        if self.mode == "FAIL":
            return EngineError(
                error_message="DebugEngine is in FAIL mode.",
                is_retryable=self.fail_is_retryable,
                status_code=503 if self.fail_is_retryable else 400,
            )
        if self.fail_on_text and call.text == self.fail_on_text:
            return EngineError(
                error_message=f"模拟失败：检测到配置的文本 '{call.text}'",
                is_retryable=self.fail_is_retryable,
                status_code=503 if self.fail_is_retryable else 400,
            )
        text = self.translation_map.get(
            call.text, f"[{call.target_language}] {call.text}"
        )
        return EngineSuccess(text=text)
