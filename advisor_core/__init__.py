"""Advisor Core 顶层包。

该包提供健康顾问聊天的编排核心实现，
包括配置加载、领域模型、Provider 适配与重试、健康上下文组装、
提示词构建、回复后处理、会话/消息持久化以及对外服务函数。
"""

from advisor_core.agents.orchestrator import ChatOrchestrator, Page, TurnResult
from advisor_core.domain.context import RequestContext

__all__ = ["ChatOrchestrator", "Page", "TurnResult", "RequestContext"]
