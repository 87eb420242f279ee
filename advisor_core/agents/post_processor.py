"""ResponsePostProcessor：LLM 原始文本 → 最终助手回复。

纯函数、幂等：process(process(x)) == process(x)。
"""

import re
from typing import List, Optional, Tuple

from advisor_core.config.settings import settings
from advisor_core.domain.exceptions import MalformedResponse

DISCLAIMER = (
    "IMPORTANT: This information is for general wellness purposes only and not a substitute for "
    "professional medical advice, diagnosis, or treatment. Always consult qualified healthcare "
    "providers with questions about your health conditions."
)

# 命中任一标记即认为回复里已有等价免责声明（不区分大小写）
DISCLAIMER_MARKERS: Tuple[str, ...] = (
    "not a medical professional",
    "not a substitute for professional medical advice",
    "not medical advice",
    "consult healthcare professionals",
    "consult a healthcare professional",
)

SAFETY_RULES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b(diagnose|diagnosis|diagnoses|diagnosing)\b", re.IGNORECASE), "potentially indicate"),
    (re.compile(r"\b(prescribe|prescription|treatment plan)\b", re.IGNORECASE), "consider discussing with your doctor"),
    (re.compile(r"\b(cure|treat|heal)\b", re.IGNORECASE), "potentially help with"),
    (
        re.compile(r"\b(should take|must take|need to take)\b", re.IGNORECASE),
        "might consider discussing with your doctor",
    ),
]

_HSPACE = re.compile(r"[ \t\f\v]+")
_BLANK_RUN = re.compile(r"\n{3,}")
_ELLIPSIS = "..."


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_HSPACE.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_RUN.sub("\n\n", "\n".join(lines)).strip()


def has_disclaimer(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in DISCLAIMER_MARKERS)


def apply_safety_filters(text: str) -> str:
    for pattern, replacement in SAFETY_RULES:
        text = pattern.sub(replacement, text)
    return text


class ResponsePostProcessor:
    def __init__(
        self,
        max_length: Optional[int] = None,
        safety_filters: Optional[bool] = None,
        disclaimer: str = DISCLAIMER,
    ):
        self._max_length = settings.max_response_length if max_length is None else max_length
        self._safety_filters = settings.safety_filters_enabled if safety_filters is None else safety_filters
        self._disclaimer = disclaimer

    def process(self, raw_text: Optional[str]) -> str:
        if not isinstance(raw_text, str):
            raise MalformedResponse(code="MALFORMED_RESPONSE", message="LLM returned no text", http_status=502)
        body = normalize_whitespace(raw_text)
        if not body:
            raise MalformedResponse(code="EMPTY_RESPONSE", message="LLM returned empty text", http_status=502)

        # 已带标准免责声明时先剥离，保证截断与过滤只作用于正文
        had_standard = body.endswith(self._disclaimer)
        if had_standard:
            body = body[: -len(self._disclaimer)].rstrip()
        if self._safety_filters:
            body = apply_safety_filters(body)
        body = self._truncate(body)

        if not body:
            return self._disclaimer
        if had_standard or not has_disclaimer(body):
            return f"{body}\n\n{self._disclaimer}"
        return body

    def _truncate(self, body: str) -> str:
        if len(body) <= self._max_length:
            return body
        return body[: self._max_length - len(_ELLIPSIS)].rstrip() + _ELLIPSIS
