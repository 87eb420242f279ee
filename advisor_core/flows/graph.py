"""LangGraph construction and node implementations for one send_message turn.

resolve_conversation → build_context → assemble_prompt → invoke_llm
    → post_process → persist_turn → END
    → fallback     → persist_turn → END

业务异常（ValidationError、ConversationNotFound、RequestCancelled、PersistenceError）
直接从 graph.invoke 抛出，对应失败终态；LLM 侧失败走 fallback 分支。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from advisor_core.agents.context_assembler import ContextAssembler
from advisor_core.agents.post_processor import ResponsePostProcessor
from advisor_core.agents.validation import derive_title
from advisor_core.domain.conversation import ConversationStore, MessageStore, TurnEntry
from advisor_core.domain.exceptions import (
    LLMTimeout,
    LLMUnavailable,
    MalformedResponse,
    PersistenceError,
    RequestCancelled,
)
from advisor_core.flows.state import TurnState
from advisor_core.infrastructure.locks import KeyedLock
from advisor_core.infrastructure.logging.logger import log_event
from advisor_core.prompts import load_system_prompt
from advisor_core.prompts.builder import PromptBuilder
from advisor_core.providers.gateway import LLMGateway


@dataclass
class TurnDependencies:
    conversations: ConversationStore
    messages: MessageStore
    assembler: ContextAssembler
    builder: PromptBuilder
    gateway: LLMGateway
    post_processor: ResponsePostProcessor
    locks: KeyedLock
    fallback_message: str
    history_depth: int
    prompt_locale: str = "en"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _check_cancelled(state: TurnState, stage: str) -> None:
    if state["ctx"].cancelled:
        log_event(logging.INFO, "turn.cancelled", state["log_ctx"], stage=stage)
        raise RequestCancelled(code="REQUEST_CANCELLED", message="Request cancelled", http_status=499)


def resolve_conversation_node(state: TurnState, deps: TurnDependencies) -> TurnState:
    """确定本轮所属会话。

    新会话只记下标题，真正创建推迟到 persist_turn，
    这样在调用 LLM 之前取消的请求不会留下空会话。
    """
    _check_cancelled(state, "resolve_conversation")
    user_id = state["user_id"]
    if state.get("force_new") or not state.get("conversation_id"):
        state["title"] = state.get("title") or derive_title(state["text"])
        state["conversation"] = None
        state["created"] = True
        return state
    conv = deps.conversations.get(state["conversation_id"], user_id)
    state["created"] = False
    state["conversation"] = conv
    state["log_ctx"]["conversation_id"] = conv.id
    return state


def build_context_node(state: TurnState, deps: TurnDependencies) -> TurnState:
    _check_cancelled(state, "build_context")
    state["context_block"] = deps.assembler.build(state["user_id"], state["ctx"])
    return state


def assemble_prompt_node(state: TurnState, deps: TurnDependencies) -> TurnState:
    _check_cancelled(state, "assemble_prompt")
    block = state["context_block"]
    conv = state.get("conversation")
    recent = deps.messages.recent_for_context(conv.id, deps.history_depth) if conv is not None else []
    history = list(reversed(recent))
    kind = "health-advisor-no-context" if block.is_empty else "health-advisor"
    instructions = load_system_prompt(kind, deps.prompt_locale)
    state["prompt"] = deps.builder.assemble(instructions, block, history, state["text"])
    log_event(
        logging.INFO,
        "turn.prompt_assembled",
        state["log_ctx"],
        prompt_kind=kind,
        history=len(history),
        context_degraded=block.degraded,
    )
    # 最后一个可以无副作用放弃的位置
    _check_cancelled(state, "before_invoke_llm")
    return state


def invoke_llm_node(state: TurnState, deps: TurnDependencies) -> TurnState:
    try:
        state["reply"] = deps.gateway.invoke(state["ctx"], state["prompt"], user=state["user_id"])
        state["llm_error"] = None
    except (LLMTimeout, LLMUnavailable) as e:
        state["reply"] = None
        state["llm_error"] = e.code
        log_event(logging.WARNING, "turn.llm_failed", state["log_ctx"], code=e.code, error=type(e).__name__)
    return state


def post_process_node(state: TurnState, deps: TurnDependencies) -> TurnState:
    reply = state["reply"]
    try:
        final_text = deps.post_processor.process(reply.text)
    except MalformedResponse as e:
        state["llm_error"] = e.code
        log_event(logging.WARNING, "turn.malformed_reply", state["log_ctx"], code=e.code)
        return state
    state["final_text"] = final_text
    state["assistant_metadata"] = {
        "fallback": False,
        "model": reply.model,
        "provider": reply.provider,
        "token_usage": reply.usage,
        "attempts": reply.attempts,
        "processed_at": _now_iso(),
    }
    return state


def fallback_node(state: TurnState, deps: TurnDependencies) -> TurnState:
    state["final_text"] = deps.fallback_message
    state["assistant_metadata"] = {
        "fallback": True,
        "error_code": state.get("llm_error"),
        "processed_at": _now_iso(),
    }
    log_event(logging.WARNING, "turn.fallback", state["log_ctx"], code=state.get("llm_error"))
    return state


def persist_turn_node(state: TurnState, deps: TurnDependencies) -> TurnState:
    conv = state.get("conversation")
    if conv is None:
        conv = deps.conversations.create(state["user_id"], state["title"])
        state["conversation"] = conv
        state["log_ctx"]["conversation_id"] = conv.id
        log_event(
            logging.INFO, "turn.conversation_created", state["log_ctx"], conversation_id=conv.id, title=conv.title
        )
    entries = [
        TurnEntry(role="user", content=state["text"]),
        TurnEntry(role="assistant", content=state["final_text"], metadata=state["assistant_metadata"]),
    ]
    with deps.locks.hold(conv.id):
        user_msg, assistant_msg = deps.messages.append_turn(conv.id, state["user_id"], entries)
        try:
            state["conversation"] = deps.conversations.touch_last_message(conv.id)
        except PersistenceError as e:
            # 消息已落盘，本轮算成功；排序时间戳留待下一轮刷新
            log_event(logging.WARNING, "turn.touch_failed", state["log_ctx"], code=e.code, error=e.message)
    state["user_message"] = user_msg
    state["assistant_message"] = assistant_msg
    log_event(
        logging.INFO,
        "turn.persisted",
        state["log_ctx"],
        user_message_id=user_msg.id,
        assistant_message_id=assistant_msg.id,
        fallback=state["assistant_metadata"].get("fallback", False),
    )
    return state


def llm_router(state: TurnState) -> str:
    return "post_process" if state.get("reply") is not None else "fallback"


def post_process_router(state: TurnState) -> str:
    return "fallback" if state.get("llm_error") else "persist_turn"


def build_turn_graph(deps: TurnDependencies) -> CompiledStateGraph:
    graph = StateGraph(TurnState)
    graph.add_node("resolve_conversation", lambda s: resolve_conversation_node(s, deps))
    graph.add_node("build_context", lambda s: build_context_node(s, deps))
    graph.add_node("assemble_prompt", lambda s: assemble_prompt_node(s, deps))
    graph.add_node("invoke_llm", lambda s: invoke_llm_node(s, deps))
    graph.add_node("post_process", lambda s: post_process_node(s, deps))
    graph.add_node("fallback", lambda s: fallback_node(s, deps))
    graph.add_node("persist_turn", lambda s: persist_turn_node(s, deps))
    graph.set_entry_point("resolve_conversation")
    graph.add_edge("resolve_conversation", "build_context")
    graph.add_edge("build_context", "assemble_prompt")
    graph.add_edge("assemble_prompt", "invoke_llm")
    graph.add_conditional_edges("invoke_llm", llm_router, {"post_process": "post_process", "fallback": "fallback"})
    graph.add_conditional_edges(
        "post_process", post_process_router, {"fallback": "fallback", "persist_turn": "persist_turn"}
    )
    graph.add_edge("fallback", "persist_turn")
    graph.add_edge("persist_turn", END)
    return graph.compile()


def initial_state(ctx, user_id: str, text: str, conversation_id, force_new: bool, title) -> Dict[str, Any]:
    return {
        "ctx": ctx,
        "log_ctx": {"trace_id": ctx.trace_id, "user_id": user_id},
        "user_id": user_id,
        "text": text,
        "conversation_id": conversation_id,
        "force_new": force_new,
        "title": title,
        "reply": None,
        "llm_error": None,
    }
