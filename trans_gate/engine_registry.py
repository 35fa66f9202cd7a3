# trans_gate/engine_registry.py
"""本模块负责动态发现和加载 `trans_gate.engines` 包下所有可用的生成引擎。"""

import importlib
import pkgutil
from typing import Any

import structlog

from trans_gate.engines.base import BaseCompletionEngine
from trans_gate.exceptions import EngineNotFoundError

log = structlog.get_logger(__name__)
ENGINE_REGISTRY: dict[str, type[BaseCompletionEngine]] = {}


def discover_engines() -> None:
    """
    动态发现 `trans_gate.engines` 包下的所有引擎并注册。

    此函数是幂等的，只在首次调用时执行发现操作。
    """
    if ENGINE_REGISTRY:
        return

    import trans_gate.engines

    successful_engines: list[str] = []
    skipped_engines: list[dict[str, str]] = []

    for module_info in pkgutil.iter_modules(trans_gate.engines.__path__):
        module_name = module_info.name
        if module_name == "base" or module_name.startswith("_"):
            continue
        try:
            module = importlib.import_module(f"trans_gate.engines.{module_name}")
        except ImportError as e:
            skipped_engines.append(
                {"engine_name": module_name, "missing_dependency": str(e.name)}
            )
            continue
        for attr in vars(module).values():
            if (
                isinstance(attr, type)
                and issubclass(attr, BaseCompletionEngine)
                and attr is not BaseCompletionEngine
                and attr.__module__ == module.__name__
            ):
                engine_name = attr.__name__.replace("Engine", "").lower()
                ENGINE_REGISTRY[engine_name] = attr
                successful_engines.append(engine_name)

    log_payload: dict[str, Any] = {"registered": sorted(successful_engines)}
    if skipped_engines:
        log_payload["skipped"] = skipped_engines
    log.info("引擎发现完成。", **log_payload)


def get_engine_class(name: str) -> type[BaseCompletionEngine]:
    discover_engines()
    try:
        return ENGINE_REGISTRY[name]
    except KeyError:
        raise EngineNotFoundError(
            f"引擎 '{name}' 未注册。可用引擎: {sorted(ENGINE_REGISTRY)}"
        ) from None
