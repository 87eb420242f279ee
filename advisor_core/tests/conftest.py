import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from advisor_core.config.settings import Settings
from advisor_core.domain.models import ChatChoice, ChatMessage, ChatResult, ChatUsage


class ScriptedProvider:
    """按脚本依次返回文本或抛出异常的假 Provider。

    script 用完后重复最后一项；callable 会收到请求并返回文本。
    """

    name = "fake"

    def __init__(self, script: Optional[list] = None):
        self._script = list(script or ["Stay hydrated and rest."])
        self._lock = threading.Lock()
        self.requests = []
        self.timeouts = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def chat(self, req, timeout=None):
        with self._lock:
            idx = min(len(self.requests), len(self._script) - 1)
            self.requests.append(req)
            self.timeouts.append(timeout)
            step = self._script[idx]
        if isinstance(step, BaseException):
            raise step
        text = step(req) if callable(step) else step
        usage = ChatUsage(prompt_tokens=3, completion_tokens=5, total_tokens=8)
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=text), finish_reason="stop")],
            usage=usage,
            raw={"model": "fake-model-1"},
        )


class StaticHealthProvider:
    def __init__(self, records=None, error: Optional[Exception] = None):
        self._records = records or {}
        self._error = error
        self.calls = []

    def get_recent(self, user_id, category, limit):
        self.calls.append((user_id, category, limit))
        if self._error is not None:
            raise self._error
        return list(self._records.get(category, []))


class SteppingClock:
    """每次调用前进固定步长的 UTC 时钟；step 为 0 时时间静止。"""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def storage_root():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d) / ".storage"


@pytest.fixture
def make_settings(storage_root) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = dict(
            storage_root=str(storage_root),
            llm_backoff_base=0.0,
            llm_backoff_max=0.0,
            llm_timeout=5.0,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def scripted_provider() -> Callable[[List], ScriptedProvider]:
    return ScriptedProvider


@pytest.fixture
def static_health():
    return StaticHealthProvider


@pytest.fixture
def clock_factory():
    return SteppingClock
