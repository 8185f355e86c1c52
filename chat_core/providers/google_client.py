"""Google Gemini 协议适配器。

- 流式: POST {base_url}/models/{model}:streamGenerateContent?alt=sse&key=<api_key>
- 非流式调用聚合流式结果。
- 角色: user -> user，其余 -> model；system 消息提升为 systemInstruction。
- 结束原因: STOP 映射为 stop；非 STOP 的结束原因出现后停止读取。
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
)
from chat_core.domain.provider_setting import ProviderKind, ProviderSetting
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.network.http_client import HttpClient
from chat_core.infrastructure.network.sse_client import SseClient, SseRequest
from chat_core.providers.json_utils import decode_json_object, merge_custom_body, require_list
from chat_core.providers.key_roulette import KeyRoulette
from chat_core.providers.registry import GOOGLE_CONFIG, ProviderConfig

_IMAGEN_RATIOS = {
    ImageAspectRatio.SQUARE: "1:1",
    ImageAspectRatio.LANDSCAPE: "4:3",
    ImageAspectRatio.PORTRAIT: "3:4",
}


def _split_data_url(url: str) -> Optional[Dict[str, str]]:
    """把 data:image/png;base64,xxx 拆成 inline_data；非 data URL 返回 None。"""

    if not url.startswith("data:") or ";base64," not in url:
        return None
    header, data = url.split(";base64,", 1)
    return {"mime_type": header[len("data:"):] or "image/png", "data": data}


class GoogleClient:
    """Gemini / Imagen Provider 客户端实现。"""

    kind = ProviderKind.GOOGLE

    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        sse_client: Optional[SseClient] = None,
        key_roulette: Optional[KeyRoulette] = None,
        config: ProviderConfig = GOOGLE_CONFIG,
    ):
        self._http = http_client or HttpClient()
        self._sse = sse_client or SseClient()
        self._keys = key_roulette or KeyRoulette()
        self._config = config

    async def list_models(self, setting: ProviderSetting) -> List[Model]:
        key = self._require_key(setting)
        resp = await self._http.execute(
            "GET",
            f"{self._base_url(setting)}/models",
            params={"key": key},
            proxy=setting.proxy_url,
        )
        data = decode_json_object(resp.body, "models")
        models: List[Model] = []
        for item in require_list(data, "models", "models"):
            if not isinstance(item, dict) or not item.get("name"):
                continue
            name = item["name"]
            methods = item.get("supportedGenerationMethods") or []
            is_image = "image" in name.lower() or "predict" in methods
            if "generateContent" not in methods and not is_image:
                continue
            model_id = name[len("models/"):] if name.startswith("models/") else name
            models.append(
                Model(
                    model_id=model_id,
                    display_name=item.get("displayName") or model_id,
                    type=ModelType.IMAGE if is_image else ModelType.CHAT,
                )
            )
        return models

    async def generate_text(
        self,
        setting: ProviderSetting,
        messages: List[UIMessage],
        params: TextGenerationParams,
    ) -> MessageChunk:
        texts: List[str] = []
        finish_reason: Optional[str] = None
        usage: Optional[Dict[str, int]] = None
        received = False
        # 非流式没有外部 task_id，使用一次性的 id
        async for chunk in self.stream_text(setting, messages, params, new_chunk_id()):
            received = True
            texts.append(chunk.delta_text())
            finish_reason = chunk.finish_reason or finish_reason
            usage = chunk.usage or usage
        if not received:
            raise LlmError.request("Gemini 响应为空或缺少 candidates")
        return MessageChunk(
            id=new_chunk_id(),
            model_id=params.model.model_id,
            choices=[
                MessageChoice(
                    index=0,
                    message=UIMessage.text("assistant", "".join(texts)),
                    finish_reason=finish_reason,
                )
            ],
            usage=usage,
        )

    async def stream_text(
        self,
        setting: ProviderSetting,
        messages: List[UIMessage],
        params: TextGenerationParams,
        task_id: str,
    ) -> AsyncIterator[MessageChunk]:
        key = self._require_key(setting)
        request = SseRequest(
            url=f"{self._base_url(setting)}/models/{params.model.model_id}:streamGenerateContent",
            params={"alt": "sse", "key": key},
            json_body=self._build_payload(messages, params),
            headers=self._headers(params.custom_headers),
            proxy=setting.proxy_url,
        )
        async for payload in self._sse.stream(request, task_id):
            try:
                data = json.loads(payload)
            except json.JSONDecodeError:
                log_event(logging.DEBUG, "Skipped malformed stream event", task_id=task_id)
                continue
            chunk = self._parse_stream_chunk(data, params)
            if chunk is None:
                continue
            yield chunk
            if chunk.finish_reason is not None and chunk.finish_reason != "stop":
                break

    async def generate_image(
        self,
        setting: ProviderSetting,
        params: ImageGenerationParams,
    ) -> ImageGenerationResult:
        key = self._require_key(setting)
        payload: Dict[str, Any] = {
            "instances": [{"prompt": params.prompt}],
            "parameters": {
                "sampleCount": params.num_of_images,
                "aspectRatio": _IMAGEN_RATIOS[params.aspect_ratio],
                "outputOptions": {"mimeType": "image/png"},
            },
        }
        payload = merge_custom_body(payload, params.custom_body)
        resp = await self._http.execute(
            "POST",
            f"{self._base_url(setting)}/models/{params.model.model_id}:predict",
            headers=self._headers(params.custom_headers),
            json_body=payload,
            params={"key": key},
            proxy=setting.proxy_url,
        )
        data = decode_json_object(resp.body, "image generation")
        items: List[ImageGenerationItem] = []
        for pred in require_list(data, "predictions", "image generation"):
            b64 = pred.get("bytesBase64Encoded") if isinstance(pred, dict) else None
            if not b64:
                raise LlmError.request("No bytesBase64Encoded in prediction")
            items.append(ImageGenerationItem(data=b64, mime_type=pred.get("mimeType") or "image/png"))
        return ImageGenerationResult(items=items)

    # ---- 辅助方法 ----

    def _build_payload(self, messages: List[UIMessage], params: TextGenerationParams) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = []
        system_texts: List[str] = []
        for message in messages:
            wire_role = self._config.wire_role(message.role)
            if wire_role is None:
                system_texts.append(message.to_text())
                continue
            parts = self._parts_to_payload(message)
            if parts:
                contents.append({"role": wire_role, "parts": parts})

        payload: Dict[str, Any] = {"contents": contents}
        if system_texts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_texts)}]}

        generation_config: Dict[str, Any] = {}
        if params.temperature is not None:
            generation_config["temperature"] = params.temperature
        if params.max_tokens is not None:
            generation_config["maxOutputTokens"] = params.max_tokens
        if params.top_p is not None:
            generation_config["topP"] = params.top_p
        if generation_config:
            payload["generationConfig"] = generation_config
        return merge_custom_body(payload, params.custom_body)

    @staticmethod
    def _parts_to_payload(message: UIMessage) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                if part.text:
                    parts.append({"text": part.text})
            elif isinstance(part, ImagePart):
                inline = _split_data_url(part.url)
                if inline is not None:
                    parts.append({"inline_data": inline})
                else:
                    parts.append({"file_data": {"file_uri": part.url}})
        return parts

    def _parse_stream_chunk(self, data: Any, params: TextGenerationParams) -> Optional[MessageChunk]:
        if not isinstance(data, dict) or not isinstance(data.get("candidates"), list):
            return None
        choices: List[MessageChoice] = []
        for i, cand in enumerate(data["candidates"]):
            if not isinstance(cand, dict):
                continue
            content = cand.get("content") if isinstance(cand.get("content"), dict) else {}
            raw_parts = content.get("parts") if isinstance(content.get("parts"), list) else []
            text = "".join(p["text"] for p in raw_parts if isinstance(p, dict) and isinstance(p.get("text"), str))
            finish_reason = self._config.finish_reason(cand.get("finishReason"))
            if not text and finish_reason is None:
                continue
            choices.append(
                MessageChoice(
                    index=cand.get("index", i),
                    delta=UIMessage.text("assistant", text),
                    finish_reason=finish_reason,
                )
            )
        if not choices:
            return None
        usage_raw = data.get("usageMetadata")
        usage = None
        if isinstance(usage_raw, dict):
            usage = {
                "prompt_tokens": usage_raw.get("promptTokenCount", 0),
                "completion_tokens": usage_raw.get("candidatesTokenCount", 0),
                "total_tokens": usage_raw.get("totalTokenCount", 0),
            }
        return MessageChunk(
            id=data.get("responseId") or new_chunk_id(),
            model_id=data.get("modelVersion") or params.model.model_id,
            choices=choices,
            usage=usage,
        )

    def _require_key(self, setting: ProviderSetting) -> str:
        key = self._keys.next(setting.api_key)
        if not key:
            raise LlmError(LlmErrorKind.AUTHENTICATION, f"API key not set for provider {setting.name!r}")
        return key

    def _base_url(self, setting: ProviderSetting) -> str:
        return (setting.base_url or self._config.default_base_url).rstrip("/")

    @staticmethod
    def _headers(custom_headers: Dict[str, str]) -> Dict[str, str]:
        headers = dict(custom_headers)
        headers["Content-Type"] = "application/json"
        return headers
