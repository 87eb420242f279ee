"""OpenAI 兼容 Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 chat/completions HTTP 请求（OpenAI 与 OpenRouter 共用同一格式）。
3. 调用 HTTP 接口并把网络/API 异常映射为业务异常。
4. 将响应 JSON 解析为统一的 ChatResult。

这里只做单次尝试，不做重试。
"""

from typing import Any, Dict, List, Optional

import httpx

from advisor_core.config.settings import settings
from advisor_core.domain.exceptions import ApiError, MalformedResponse, NetworkError, RateLimitError
from advisor_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from advisor_core.providers.registry import ModelConfig, ProviderConfig, get_provider_config


class OpenAICompatibleClient:
    """OpenAI 兼容接口的客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 对外统一调用入口，返回 ChatResult。
    """

    def __init__(self, cfg=settings, provider: str = "openai"):
        # cfg 里包含 api_key、base_url 覆盖与超时等配置
        self._settings = cfg
        self._provider_cfg: ProviderConfig = get_provider_config(provider)
        self.name = self._provider_cfg.name

    def chat(self, req: ChatRequest, timeout: Optional[float] = None) -> ChatResult:
        api_key = getattr(self._settings, "llm_api_key", None)
        if not api_key:
            # 缺少密钥等同于上游拒绝，交给 Gateway 按不可重试处理
            raise ApiError(code="MISSING_API_KEY", message="LLM_API_KEY not set", http_status=401)
        model_cfg = self._model_config(req.model)
        payload = self._build_payload(req, model_cfg)
        http_timeout = timeout if timeout is not None else self._settings.llm_timeout
        base = getattr(self._settings, "llm_base_url", None) or self._provider_cfg.base_url
        try:
            with httpx.Client(timeout=http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base.rstrip('/')}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=str(e) or "request timed out", provider=self.name)
        except httpx.RequestError as e:
            # DNS 失败、连接被拒等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse(code="MALFORMED_RESPONSE", message=f"invalid JSON: {e}", http_status=502)
        return self._parse_response(data, req)

    def _model_config(self, logical_name: str) -> ModelConfig:
        cfg = self._provider_cfg.models.get(logical_name)
        if cfg is not None:
            return cfg
        # 未登记的模型名直接透传给厂商
        return ModelConfig(
            logical_name=logical_name,
            provider_model=logical_name,
            max_tokens=self._settings.llm_max_tokens,
            default_temperature=self._settings.llm_temperature,
        )

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "top_p": req.top_p,
        }
        if req.user:
            payload["user"] = req.user
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        if not isinstance(data, dict):
            raise MalformedResponse(code="MALFORMED_RESPONSE", message="response is not an object", http_status=502)
        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise MalformedResponse(code="MALFORMED_RESPONSE", message="choices is not a list", http_status=502)
        choices: List[ChatChoice] = []
        for i, ch in enumerate(raw_choices):
            msg = ch.get("message") if isinstance(ch, dict) else None
            if not isinstance(msg, dict):
                raise MalformedResponse(code="MALFORMED_RESPONSE", message=f"choice {i} has no message object", http_status=502)
            content = msg.get("content")
            if not isinstance(content, str):
                continue
            choices.append(
                ChatChoice(
                    index=i,
                    message=ChatMessage(role="assistant", content=content),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        if not choices:
            raise MalformedResponse(code="MALFORMED_RESPONSE", message="response has no message content", http_status=502)
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=self._parse_usage(data.get("usage")), raw=data)

    @staticmethod
    def _parse_usage(usage_raw: Any) -> Optional[ChatUsage]:
        # usage 只是统计信息，格式不对时丢弃，不影响回复本身
        if not isinstance(usage_raw, dict):
            return None

        def _count(key: str) -> int:
            value = usage_raw.get(key, 0)
            return value if isinstance(value, int) and not isinstance(value, bool) else 0

        return ChatUsage(
            prompt_tokens=_count("prompt_tokens"),
            completion_tokens=_count("completion_tokens"),
            total_tokens=_count("total_tokens"),
        )
