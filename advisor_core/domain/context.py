"""请求级取消上下文。

调用方的截止时间通过 RequestContext 沿 ContextAssembler → PromptBuilder → LLMGateway
传播。任何线程都可以调用 cancel()；等待中的退避会被立即唤醒。
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional
from uuid import uuid4


class RequestContext:
    """截止时间 + 取消信号。

    Args:
        timeout: 相对截止时间（秒），None 表示不限时。
        trace_id: 日志关联 ID，为空时自动生成。
        clock: 单调时钟，测试中可替换。
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        *,
        trace_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        _cancelled: Optional[threading.Event] = None,
        _deadline: Optional[float] = None,
    ) -> None:
        self._clock = clock
        self._cancelled = _cancelled or threading.Event()
        self._deadline = _deadline
        if timeout is not None:
            own = clock() + max(0.0, timeout)
            self._deadline = own if self._deadline is None else min(self._deadline, own)
        self.trace_id = trace_id or f"tr-{uuid4().hex}"

    @classmethod
    def background(cls) -> "RequestContext":
        return cls()

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def cancelled(self) -> bool:
        """显式取消或已过截止时间。"""
        return self._cancelled.is_set() or self.expired

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def with_timeout(self, timeout: float) -> "RequestContext":
        """派生一个更紧的子上下文，共享取消信号，截止时间取两者较早者。"""
        return RequestContext(
            timeout,
            trace_id=self.trace_id,
            clock=self._clock,
            _cancelled=self._cancelled,
            _deadline=self._deadline,
        )

    def wait(self, seconds: float) -> bool:
        """最多等待 seconds 秒（不超过剩余时间），被取消时返回 True。"""
        remaining = self.remaining()
        timeout = seconds if remaining is None else min(seconds, remaining)
        if timeout > 0:
            self._cancelled.wait(timeout)
        return self.cancelled
