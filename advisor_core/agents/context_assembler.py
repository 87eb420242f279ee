"""ContextAssembler：为单次 send_message 组装健康上下文块。

每个类别调用一次 HealthContextProvider，不做缓存；协作方返回的记录再按上限截断。
任一类别调用失败或返回无法渲染的记录时，整个上下文降级为空块，
并记录一条 warning，本轮对话继续进行。
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from advisor_core.config.settings import settings
from advisor_core.domain.context import RequestContext
from advisor_core.domain.exceptions import RequestCancelled
from advisor_core.domain.health import (
    CATEGORIES,
    ContextBlock,
    HealthContextProvider,
    HealthRecord,
    LabResultRecord,
    MealRecord,
    SymptomRecord,
)
from advisor_core.infrastructure.logging.logger import log_event

SECTION_TITLES = {
    "meal": "Recent meals:",
    "labResult": "Recent lab results:",
    "symptom": "Recent symptoms:",
}

RECORD_TYPES = {
    "meal": MealRecord,
    "labResult": LabResultRecord,
    "symptom": SymptomRecord,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def recency_label(recorded_at: datetime, now: datetime) -> str:
    """相对时间标签：just now / N hours ago / yesterday / N days ago。"""
    if recorded_at.tzinfo is None:
        recorded_at = recorded_at.replace(tzinfo=timezone.utc)
    seconds = (now - recorded_at).total_seconds()
    if seconds < 3600:
        return "just now"
    hours = int(seconds // 3600)
    if hours < 24:
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    days = hours // 24
    if days == 1:
        return "yesterday"
    return f"{days} days ago"


def render_record(record: HealthRecord, now: datetime) -> str:
    if isinstance(record, MealRecord):
        label = recency_label(record.recorded_at, now)
        return f"- {label}: {record.description} ({record.meal_type})"
    if isinstance(record, LabResultRecord):
        label = recency_label(record.test_date or record.recorded_at, now)
        line = f"- {label}: {record.test_type}"
        if record.results:
            line += f" - {json.dumps(record.results, sort_keys=True, ensure_ascii=False, default=str)}"
        if record.notes:
            line += f" (notes: {record.notes})"
        return line
    if isinstance(record, SymptomRecord):
        label = recency_label(record.recorded_at, now)
        details = f"Severity: {record.severity}"
        if record.duration:
            details += f", Duration: {record.duration}"
        return f"- {label}: {record.description} ({details})"
    raise TypeError(f"Unsupported health record: {type(record).__name__}")


class ContextAssembler:
    def __init__(
        self,
        provider: HealthContextProvider,
        cap_per_category: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._provider = provider
        self._cap = settings.context_cap_per_category if cap_per_category is None else cap_per_category
        self._clock = clock

    def build(self, user_id: str, ctx: RequestContext) -> ContextBlock:
        log_ctx = {"trace_id": ctx.trace_id, "user_id": user_id}
        fetched: Dict[str, List[HealthRecord]] = {}
        for category in CATEGORIES:
            if ctx.cancelled:
                raise RequestCancelled(code="REQUEST_CANCELLED", message="Request cancelled", http_status=499)
            try:
                records = list(self._provider.get_recent(user_id, category, self._cap) or [])[: self._cap]
            except Exception as e:
                return self._degraded(log_ctx, category, f"{type(e).__name__}: {e}")
            expected = RECORD_TYPES[category]
            stray = next((r for r in records if not isinstance(r, expected)), None)
            if stray is not None:
                return self._degraded(log_ctx, category, f"unexpected record type {type(stray).__name__}")
            fetched[category] = records

        now = self._clock()
        sections: List[str] = []
        for category in CATEGORIES:
            records = fetched[category]
            if not records:
                continue
            try:
                lines = [SECTION_TITLES[category]] + [render_record(r, now) for r in records]
            except (TypeError, ValueError, AttributeError) as e:
                # 字段类型不对（例如 recorded_at 不是 datetime）
                return self._degraded(log_ctx, category, f"{type(e).__name__}: {e}")
            sections.append("\n".join(lines))

        block = ContextBlock(
            recent_meals=fetched["meal"],
            recent_lab_results=fetched["labResult"],
            recent_symptoms=fetched["symptom"],
            text="\n\n".join(sections),
        )
        log_event(
            logging.INFO,
            "context.built",
            log_ctx,
            meals=len(block.recent_meals),
            lab_results=len(block.recent_lab_results),
            symptoms=len(block.recent_symptoms),
        )
        return block

    @staticmethod
    def _degraded(log_ctx: Dict[str, Any], category: str, reason: str) -> ContextBlock:
        log_event(logging.WARNING, "context.degraded", log_ctx, category=category, error=reason)
        return ContextBlock(degraded=True)
