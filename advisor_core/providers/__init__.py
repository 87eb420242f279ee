"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供 OpenAI 兼容的具体实现 (openai_client)。
- 在 Provider 之上做超时/重试/退避 (gateway)。
"""

from typing import Optional

from advisor_core.config.settings import settings
from advisor_core.providers.base import ProviderClient
from advisor_core.providers.openai_client import OpenAICompatibleClient


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "openai")).lower()
    return OpenAICompatibleClient(settings, provider=provider_name)
