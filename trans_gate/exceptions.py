# trans_gate/exceptions.py
"""
本模块定义了 Trans-Gate 项目中所有自定义的、语义化的异常类型。

翻译管线的公共操作从不向调用方抛出这些异常：远端失败、占位符损坏、
持久化失败都会被转换为结构化结果。这里的异常主要用于组件之间的边界，
以及配置和编程错误。
"""


class TransGateError(Exception):
    """
    所有 Trans-Gate 自定义异常的通用基类。
    捕获此异常可以处理所有源自本项目的预期错误。
    """

    pass


class ConfigurationError(TransGateError):
    """
    表示在加载、解析或验证配置时发生的错误。
    例如，缺少 API 密钥，或数据库 URL 使用了不支持的驱动。
    """

    pass


class EngineNotFoundError(TransGateError, KeyError):
    """
    表示尝试访问一个未注册的引擎时引发的错误。
    继承自 KeyError 是为了保持与字典查找行为的一致性。
    """

    pass


class ProtectionError(TransGateError):
    """表示受保护的占位符在往返过程中被破坏，无法完整恢复。"""

    def __init__(self, missing_tokens: list[str]):
        self.missing_tokens = missing_tokens
        super().__init__(f"{len(missing_tokens)} 个占位符无法恢复: {missing_tokens[:5]}")


class PersistenceError(TransGateError):
    """
    表示在指标持久化层操作（连接、写入）中发生的错误。
    通常是底层 SQLAlchemy 异常的包装。
    """

    pass


class LockConflictError(PersistenceError):
    """表示服务锁已被其他实例持有。这是一个设计内的结果，而非故障。"""

    pass
