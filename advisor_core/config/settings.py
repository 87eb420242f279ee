"""配置管理模块。

支持从初始化参数、环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
config.yaml 的位置可以用 ADVISOR_CONFIG_FILE 显式指定。
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, YamlConfigSettingsSource


DEFAULT_FALLBACK_MESSAGE = (
    "I apologize, but I'm currently unable to provide a personalized response. "
    "Our service is experiencing technical difficulties. Please try again in a few minutes. "
    "If you have an urgent health concern, please contact your healthcare provider directly."
)


def _resolve_config_file() -> Optional[Path]:
    """返回第一个存在的 config.yaml，找不到时返回 None。"""
    candidates = []
    explicit = os.getenv("ADVISOR_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])
    for path in candidates:
        if path.is_file():
            return path
    return None


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="openai",
        description="默认使用的 Provider 名称，例如 openai、openrouter",
    )
    default_model: str = Field(
        default="health-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )
    llm_api_key: Optional[str] = Field(default=None, description="LLM Provider API 密钥")
    llm_base_url: Optional[str] = Field(
        default=None,
        description="覆盖 registry 中的 API 基础URL",
    )
    llm_temperature: float = Field(default=0.5, ge=0.0, le=2.0, description="生成温度，健康建议偏确定性")
    llm_max_tokens: int = Field(default=1500, ge=1, description="单次回复最大 token 数")

    # ---- LLMGateway：超时/重试 ----
    llm_timeout: float = Field(default=10.0, gt=0.0, description="单次 send_message 的 LLM 总时限（秒）")
    llm_max_retries: int = Field(default=3, ge=1, le=10, description="最大尝试次数（含首次）")
    llm_backoff_base: float = Field(default=1.0, ge=0.0, description="指数退避基准（秒）")
    llm_backoff_max: float = Field(default=8.0, ge=0.0, description="单次退避上限（秒）")

    # ---- 上下文与提示词 ----
    history_depth_for_prompt: int = Field(default=10, ge=0, le=100, description="提示词中携带的历史消息条数")
    context_cap_per_category: int = Field(default=5, ge=1, le=50, description="每个健康类别最多注入的记录数")
    max_message_length: int = Field(default=500, ge=1, description="用户消息最大字符数")
    prompt_locale: str = Field(default="en", description="系统提示词语言目录")

    # ---- 分页 ----
    history_page_default: int = Field(default=20, ge=1, le=50)
    history_page_max: int = Field(default=50, ge=1, le=50)
    conversations_page_default: int = Field(default=10, ge=1, le=50)
    conversations_page_max: int = Field(default=50, ge=1, le=50)

    # ---- 回复后处理 ----
    fallback_message: str = Field(
        default=DEFAULT_FALLBACK_MESSAGE,
        min_length=1,
        description="LLM 不可用时写入历史的兜底回复",
    )
    max_response_length: int = Field(default=8000, ge=100, description="助手回复最大字符数（不含免责声明）")
    safety_filters_enabled: bool = Field(default=False, description="是否改写处方/诊断类措辞")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("llm_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @model_validator(mode="after")
    def check_page_defaults(self) -> "Settings":
        if self.history_page_default > self.history_page_max:
            raise ValueError("history_page_default must not exceed history_page_max")
        if self.conversations_page_default > self.conversations_page_max:
            raise ValueError("conversations_page_default must not exceed conversations_page_max")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=_resolve_config_file()),
            file_secret_settings,
        )


settings = Settings()
