"""OpenAI 兼容协议适配器。

适用于官方 OpenAI 以及所有兼容 chat/completions 格式的服务（DeepSeek、Moonshot、GLM 等）：
- URL: {base_url}{chat_completions_path}
- 认证: Authorization: Bearer <api_key>
- 流式: `data: {json}` 事件，以 `data: [DONE]` 结束。

本实现只依赖公共字段：model/messages/temperature/max_tokens/top_p/stream。
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from chat_core.domain.exceptions import LlmError, LlmErrorKind
from chat_core.domain.models import (
    ImageAspectRatio,
    ImageGenerationItem,
    ImageGenerationParams,
    ImageGenerationResult,
    ImagePart,
    MessageChoice,
    MessageChunk,
    Model,
    ModelType,
    TextGenerationParams,
    TextPart,
    UIMessage,
    new_chunk_id,
    normalize_role,
)
from chat_core.domain.provider_setting import ProviderKind, ProviderSetting
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.network.http_client import HttpClient
from chat_core.infrastructure.network.sse_client import SseClient, SseRequest
from chat_core.providers.json_utils import decode_json_object, merge_custom_body, require_list
from chat_core.providers.key_roulette import KeyRoulette
from chat_core.providers.registry import OPENAI_CONFIG, ProviderConfig

DONE_TOKEN = "[DONE]"

_IMAGE_MODEL_HINTS = ("dall-e", "image", "kwai", "kolors", "flux")

_DALLE_SIZES = {
    ImageAspectRatio.SQUARE: "1024x1024",
    ImageAspectRatio.LANDSCAPE: "1536x1024",
    ImageAspectRatio.PORTRAIT: "1024x1536",
}


class OpenAIClient:
    """OpenAI 兼容 Provider 客户端实现。"""

    kind = ProviderKind.OPENAI

    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        sse_client: Optional[SseClient] = None,
        key_roulette: Optional[KeyRoulette] = None,
        config: ProviderConfig = OPENAI_CONFIG,
    ):
        self._http = http_client or HttpClient()
        self._sse = sse_client or SseClient()
        self._keys = key_roulette or KeyRoulette()
        self._config = config

    # ---- 模型列表 ----

    async def list_models(self, setting: ProviderSetting) -> List[Model]:
        key = self._require_key(setting)
        resp = await self._http.execute(
            "GET",
            f"{self._base_url(setting)}/models",
            headers={"Authorization": f"Bearer {key}"},
            proxy=setting.proxy_url,
        )
        data = decode_json_object(resp.body, "models")
        models: List[Model] = []
        for item in require_list(data, "data", "models"):
            model_id = item.get("id") if isinstance(item, dict) else None
            if not model_id:
                continue
            # 简单规则：ID 含图像类关键词时视为图像生成模型
            lowered = model_id.lower()
            mtype = ModelType.IMAGE if any(h in lowered for h in _IMAGE_MODEL_HINTS) else ModelType.CHAT
            models.append(Model(model_id=model_id, display_name=model_id, type=mtype))
        return models

    # ---- 非流式 ----

    async def generate_text(
        self,
        setting: ProviderSetting,
        messages: List[UIMessage],
        params: TextGenerationParams,
    ) -> MessageChunk:
        request = self._build_request(setting, messages, params, stream=False)
        resp = await self._http.execute(
            request.method,
            request.url,
            headers=request.headers,
            json_body=request.json_body,
            proxy=request.proxy,
        )
        data = decode_json_object(resp.body, "chat completion")
        return self._parse_response(data, params)

    # ---- 流式 ----

    async def stream_text(
        self,
        setting: ProviderSetting,
        messages: List[UIMessage],
        params: TextGenerationParams,
        task_id: str,
    ) -> AsyncIterator[MessageChunk]:
        request = self._build_request(setting, messages, params, stream=True)
        async for payload in self._sse.stream(request, task_id):
            if payload == DONE_TOKEN:
                break
            try:
                data = json.loads(payload)
            except json.JSONDecodeError:
                log_event(logging.DEBUG, "Skipped malformed stream event", task_id=task_id)
                continue
            chunk = self._parse_stream_chunk(data, params)
            if chunk is not None:
                yield chunk

    # ---- 图像生成 ----

    async def generate_image(
        self,
        setting: ProviderSetting,
        params: ImageGenerationParams,
    ) -> ImageGenerationResult:
        key = self._require_key(setting)
        payload: Dict[str, Any] = {"model": params.model.model_id, "prompt": params.prompt}
        if params.num_of_images > 1:
            payload["n"] = params.num_of_images
        # 只有 DALL-E 才下发 size，其他兼容服务上的模型可能不支持
        if "dall-e" in params.model.model_id.lower():
            payload["size"] = _DALLE_SIZES[params.aspect_ratio]
        payload = merge_custom_body(payload, params.custom_body)

        resp = await self._http.execute(
            "POST",
            f"{self._base_url(setting)}/images/generations",
            headers=self._headers(key, params.custom_headers),
            json_body=payload,
            proxy=setting.proxy_url,
        )
        data = decode_json_object(resp.body, "image generation")
        items: List[ImageGenerationItem] = []
        for image in require_list(data, "data", "image generation"):
            image = image if isinstance(image, dict) else {}
            b64 = image.get("b64_json")
            url = image.get("url")
            if b64:
                items.append(ImageGenerationItem(data=b64, mime_type="image/png"))
            elif url:
                items.append(ImageGenerationItem(data=url, mime_type="image/png"))
            else:
                raise LlmError.request("No b64_json or url in response")
        return ImageGenerationResult(items=items)

    # ---- 辅助方法 ----

    def _build_request(
        self,
        setting: ProviderSetting,
        messages: List[UIMessage],
        params: TextGenerationParams,
        stream: bool,
    ) -> SseRequest:
        key = self._require_key(setting)
        payload: Dict[str, Any] = {
            "model": params.model.model_id,
            "messages": [self._message_to_payload(m) for m in messages],
            "stream": stream,
        }
        if params.temperature is not None:
            payload["temperature"] = params.temperature
        if params.top_p is not None:
            payload["top_p"] = params.top_p
        if params.max_tokens is not None:
            payload["max_tokens"] = params.max_tokens
        payload = merge_custom_body(payload, params.custom_body)
        return SseRequest(
            url=f"{self._base_url(setting)}{setting.chat_completions_path}",
            json_body=payload,
            headers=self._headers(key, params.custom_headers),
            proxy=setting.proxy_url,
        )

    def _message_to_payload(self, message: UIMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self._config.wire_role(message.role)}
        if message.has_non_text_parts():
            content = []
            for part in message.parts:
                if isinstance(part, TextPart):
                    content.append({"type": "text", "text": part.text})
                elif isinstance(part, ImagePart):
                    content.append({"type": "image_url", "image_url": {"url": part.url}})
            payload["content"] = content
        else:
            payload["content"] = message.to_text()
        return payload

    def _parse_response(self, data: Dict[str, Any], params: TextGenerationParams) -> MessageChunk:
        choices: List[MessageChoice] = []
        for i, ch in enumerate(require_list(data, "choices", "chat completion")):
            msg = ch.get("message") if isinstance(ch, dict) else None
            if not isinstance(msg, dict):
                raise LlmError.request("Choice without message in chat completion")
            content = msg.get("content")
            if content is not None and not isinstance(content, str):
                raise LlmError.request("Unexpected message content in chat completion")
            choices.append(
                MessageChoice(
                    index=ch.get("index", i),
                    message=UIMessage.text(normalize_role(msg.get("role") or "assistant"), content or ""),
                    finish_reason=self._config.finish_reason(ch.get("finish_reason")),
                )
            )
        if not choices:
            raise LlmError.request("No choices in chat completion")
        return MessageChunk(
            id=data.get("id") or new_chunk_id(),
            model_id=data.get("model") or params.model.model_id,
            choices=choices,
            usage=data.get("usage") or None,
        )

    def _parse_stream_chunk(self, data: Any, params: TextGenerationParams) -> Optional[MessageChunk]:
        """解析一条流式事件；结构异常或既无文本又无结束原因时返回 None。"""

        if not isinstance(data, dict) or not isinstance(data.get("choices"), list):
            return None
        choices: List[MessageChoice] = []
        for i, ch in enumerate(data["choices"]):
            if not isinstance(ch, dict):
                continue
            delta = ch.get("delta") or {}
            content = delta.get("content") if isinstance(delta, dict) else None
            text = content if isinstance(content, str) else ""
            finish_reason = self._config.finish_reason(ch.get("finish_reason"))
            if not text and finish_reason is None:
                continue
            role = normalize_role(delta.get("role") or "assistant") if isinstance(delta, dict) else "assistant"
            choices.append(
                MessageChoice(
                    index=ch.get("index", i),
                    delta=UIMessage.text(role, text),
                    finish_reason=finish_reason,
                )
            )
        if not choices:
            return None
        return MessageChunk(
            id=data.get("id") or new_chunk_id(),
            model_id=data.get("model") or params.model.model_id,
            choices=choices,
            usage=data.get("usage") or None,
        )

    def _require_key(self, setting: ProviderSetting) -> str:
        key = self._keys.next(setting.api_key)
        if not key:
            raise LlmError(LlmErrorKind.AUTHENTICATION, f"API key not set for provider {setting.name!r}")
        return key

    def _base_url(self, setting: ProviderSetting) -> str:
        return (setting.base_url or self._config.default_base_url).rstrip("/")

    @staticmethod
    def _headers(key: str, custom_headers: Dict[str, str]) -> Dict[str, str]:
        headers = dict(custom_headers)
        headers["Authorization"] = f"Bearer {key}"
        headers["Content-Type"] = "application/json"
        return headers
