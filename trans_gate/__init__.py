"""Trans-Gate: 一个带占位符保护、分块、重试降级与质量门的弹性 LLM 翻译管线。

该模块导出协调器、配置与核心数据类型，供嵌入方直接使用。
"""

__version__ = "0.1.0"

from .config import TransGateConfig
from .coordinator import Coordinator
from .types import Strategy, TranslationRequest, TranslationResult

__all__ = [
    "__version__",
    "Coordinator",
    "Strategy",
    "TransGateConfig",
    "TranslationRequest",
    "TranslationResult",
]
