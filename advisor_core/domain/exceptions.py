"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一捕获并映射为 HTTP 状态码。

传播策略：
- ContextUnavailable 只在 ContextAssembler 内部出现，不会抛给调用方。
- LLMTimeout / LLMUnavailable 由 ChatOrchestrator 吸收，转成兜底回复。
- ValidationError / ConversationNotFound 直接抛给调用方，且不写任何存储。
- PersistenceError 原样抛出，调用方可以整体重试 send_message。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败（消息为空/过长、ID 格式错误等）。"""


class ConversationNotFound(BusinessError):
    """会话不存在或不属于当前用户。

    两种情况统一报告为 NotFound，避免泄露会话是否存在。
    """

    def __init__(self, conversation_id: str, **extra):
        super().__init__(
            code="CONVERSATION_NOT_FOUND",
            message="Conversation not found",
            http_status=404,
            conversation_id=conversation_id,
            **extra,
        )


class RequestCancelled(BusinessError):
    """调用方在 LLM 调用开始前取消了请求，本次调用不落库。"""


class PersistenceError(BusinessError):
    """存储层读写失败，对本次调用是致命错误。"""


class ContextUnavailable(BusinessError):
    """健康数据协作方不可用，由 ContextAssembler 降级为空上下文。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等（可重试）。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出，http_status 为上游状态码。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由 LLMGateway 负责重试/退避策略。"""


class MalformedResponse(BusinessError):
    """Provider 返回了无法解析或为空的内容（不可重试）。"""


class LLMTimeout(BusinessError):
    """LLM 调用超出整体截止时间。"""


class LLMUnavailable(BusinessError):
    """重试耗尽，或 Provider 返回了不可重试的错误。"""
