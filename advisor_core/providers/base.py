"""Provider 抽象接口。

上层 LLMGateway 不直接依赖具体厂商的 HTTP SDK，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenAICompatibleClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 每次 chat 只做一次 HTTP 尝试；重试、退避与截止时间由 LLMGateway 负责。
"""

from typing import Optional, Protocol

from advisor_core.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req, timeout): 执行一次非流式对话调用，返回统一的 ChatResult。
      失败时抛出 NetworkError / RateLimitError / ApiError / MalformedResponse。
    """

    name: str

    def chat(self, req: ChatRequest, timeout: Optional[float] = None) -> ChatResult:
        ...
