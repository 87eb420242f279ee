"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取 system prompt 文本：

- "health-advisor": 有个人健康上下文时使用。
- "health-advisor-no-context": 上下文为空（无记录或协作方降级）时使用。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent

PROMPT_FILES = {
    "health-advisor": "health_advisor_system.md",
    "health-advisor-no-context": "health_advisor_no_context.md",
}


@lru_cache(maxsize=None)
def load_system_prompt(kind: str = "health-advisor", locale: str = "en") -> str:
    """根据提示词类型和语言加载系统提示词文本。"""

    try:
        fname = PROMPTS_DIR / locale / PROMPT_FILES[kind]
    except KeyError:
        raise ValueError(f"Unknown prompt kind: {kind!r}")
    return fname.read_text(encoding="utf-8").strip()
