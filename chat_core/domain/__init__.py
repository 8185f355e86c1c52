"""领域层模型与协议。

包含：
- models: 统一的 UIMessage / MessageChunk / ChatHistoryItem 与生成参数模型。
- provider_setting: Provider 类型、代理与设置。
- conversation: 消息持久化网关协议。
- exceptions: 业务异常与带 kind 标签的 LlmError。
"""
