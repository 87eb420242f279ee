"""LLMGateway：在 ProviderClient 之上实现截止时间、重试与指数退避。

- 整体时限为 llm_timeout，由 RequestContext 承载，与调用方的截止时间取较早者。
- 可重试：5xx、429、网络错误/超时。
- 不可重试：其他 4xx、无法解析或为空的响应，立即失败。
- 重试耗尽抛出 LLMUnavailable；超出截止时间抛出 LLMTimeout。
  兜底文案不在这里生成，由 ChatOrchestrator 决定。
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from advisor_core.config.settings import settings
from advisor_core.domain.context import RequestContext
from advisor_core.domain.exceptions import (
    ApiError,
    BusinessError,
    LLMTimeout,
    LLMUnavailable,
    MalformedResponse,
    NetworkError,
    RateLimitError,
)
from advisor_core.domain.models import ChatMessage, ChatRequest, ChatResult
from advisor_core.infrastructure.logging.logger import log_event
from advisor_core.providers.base import ProviderClient

# 等待单次调用时检查取消信号的间隔（秒）
_POLL_INTERVAL = 0.05


@dataclass
class LLMReply:
    """一次成功调用的结果：只保留助手文本与少量元数据。"""

    text: str
    model: str
    provider: str
    usage: Optional[Dict[str, int]] = None
    attempts: int = 1


def _is_transient(err: BusinessError) -> bool:
    if isinstance(err, (NetworkError, RateLimitError)):
        return True
    if isinstance(err, ApiError):
        return err.http_status >= 500
    return False


class LLMGateway:
    def __init__(self, provider: ProviderClient, cfg=settings):
        self._provider = provider
        self._settings = cfg

    def backoff_delay(self, attempt: int) -> float:
        """第 attempt 次失败（从 0 开始）之后的等待秒数。"""
        return min(self._settings.llm_backoff_base * (2 ** attempt), self._settings.llm_backoff_max)

    def invoke(self, ctx: RequestContext, messages: List[ChatMessage], user: Optional[str] = None) -> LLMReply:
        call_ctx = ctx.with_timeout(self._settings.llm_timeout)
        log_ctx = {"trace_id": ctx.trace_id, "provider": self._provider.name}
        req = ChatRequest(
            provider=self._provider.name,
            model=self._settings.default_model,
            messages=messages,
            temperature=self._settings.llm_temperature,
            max_tokens=self._settings.llm_max_tokens,
            user=user,
        )
        max_attempts = self._settings.llm_max_retries
        last_error: Optional[BusinessError] = None
        for attempt in range(max_attempts):
            if call_ctx.cancelled:
                raise self._interrupted(call_ctx, attempt, last_error)
            remaining = call_ctx.remaining()
            per_try = self._settings.llm_timeout if remaining is None else min(remaining, self._settings.llm_timeout)
            started = time.monotonic()
            try:
                result = self._attempt(call_ctx, req, per_try, attempt, last_error)
            except (ApiError, NetworkError, RateLimitError, MalformedResponse) as e:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                if not _is_transient(e):
                    log_event(
                        logging.WARNING,
                        "llm.non_retryable",
                        log_ctx,
                        attempt=attempt + 1,
                        code=e.code,
                        http_status=e.http_status,
                        elapsed_ms=elapsed_ms,
                    )
                    raise LLMUnavailable(
                        code=e.code,
                        message=e.message,
                        http_status=503,
                        attempts=attempt + 1,
                    ) from e
                last_error = e
                log_event(
                    logging.WARNING,
                    "llm.retryable_failure",
                    log_ctx,
                    attempt=attempt + 1,
                    code=e.code,
                    http_status=e.http_status,
                    elapsed_ms=elapsed_ms,
                )
            else:
                text = result.choices[0].message.content
                usage = None
                if result.usage is not None:
                    usage = {
                        "prompt_tokens": result.usage.prompt_tokens,
                        "completion_tokens": result.usage.completion_tokens,
                        "total_tokens": result.usage.total_tokens,
                    }
                raw_model = (result.raw or {}).get("model") if isinstance(result.raw, dict) else None
                log_event(
                    logging.INFO,
                    "llm.success",
                    log_ctx,
                    attempt=attempt + 1,
                    elapsed_ms=int((time.monotonic() - started) * 1000),
                )
                return LLMReply(
                    text=text,
                    model=raw_model or result.model,
                    provider=result.provider,
                    usage=usage,
                    attempts=attempt + 1,
                )

            if attempt + 1 >= max_attempts:
                break
            delay = self.backoff_delay(attempt)
            remaining = call_ctx.remaining()
            if remaining is not None and delay >= remaining:
                # 等完退避就已超时，不再空等
                raise LLMTimeout(
                    code="LLM_TIMEOUT",
                    message="LLM deadline exceeded",
                    http_status=504,
                    attempts=attempt + 1,
                ) from last_error
            log_event(logging.INFO, "llm.backoff", log_ctx, attempt=attempt + 1, delay=delay)
            if call_ctx.wait(delay):
                raise self._interrupted(call_ctx, attempt + 1, last_error)

        raise LLMUnavailable(
            code="LLM_UNAVAILABLE",
            message=f"LLM unavailable after {max_attempts} attempts",
            http_status=503,
            attempts=max_attempts,
        ) from last_error

    def _attempt(
        self,
        call_ctx: RequestContext,
        req: ChatRequest,
        per_try: float,
        attempt: int,
        last_error: Optional[BusinessError],
    ) -> ChatResult:
        """在工作线程中执行一次 Provider 调用，调用方等待完成、取消或超时。

        被放弃的工作线程会在后台跑完，耗时受 per_try 限制，其结果直接丢弃。
        """
        box: Dict[str, Any] = {}
        done = threading.Event()

        def _run() -> None:
            try:
                box["result"] = self._provider.chat(req, timeout=per_try)
            except Exception as e:  # 交回调用线程重新抛出
                box["error"] = e
            finally:
                done.set()

        threading.Thread(target=_run, name=f"llm-attempt-{attempt + 1}", daemon=True).start()
        while not done.is_set():
            if call_ctx.cancelled:
                raise self._interrupted(call_ctx, attempt + 1, last_error)
            remaining = call_ctx.remaining()
            done.wait(_POLL_INTERVAL if remaining is None else min(_POLL_INTERVAL, remaining))
        if "error" in box:
            raise box["error"]
        # 回复到达时请求已被取消，同样丢弃
        if call_ctx.cancelled:
            raise self._interrupted(call_ctx, attempt + 1, last_error)
        return box["result"]

    @staticmethod
    def _interrupted(call_ctx: RequestContext, attempts: int, cause: Optional[BusinessError]) -> BusinessError:
        if call_ctx.expired:
            err: BusinessError = LLMTimeout(
                code="LLM_TIMEOUT", message="LLM deadline exceeded", http_status=504, attempts=attempts
            )
        else:
            err = LLMUnavailable(
                code="LLM_CANCELLED", message="LLM call cancelled", http_status=503, attempts=attempts
            )
        err.__cause__ = cause
        return err
