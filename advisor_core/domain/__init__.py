"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 会话与消息的存储模型及 ConversationStore / MessageStore 抽象。
- health: 健康记录变体、HealthContextProvider 协议与 ContextBlock。
- context: 请求级取消上下文 RequestContext。
- exceptions: 业务异常类型定义。
"""
