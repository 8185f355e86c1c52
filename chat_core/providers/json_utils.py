"""适配器共用的 JSON 工具。

结构不符合预期的响应一律抛出 REQUEST_ERROR，不做静默兜底。
"""

import json
from typing import Any, Dict, Optional

from chat_core.domain.exceptions import LlmError


def decode_json_object(body: Optional[str], what: str) -> Dict[str, Any]:
    """解析必须存在的 JSON 对象响应体。"""

    if body is None or not body.strip():
        raise LlmError.request(f"Empty response body for {what}")
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise LlmError.request(f"Invalid JSON response for {what}: {body[:200]}", body=body)
    if not isinstance(data, dict):
        raise LlmError.request(f"Unexpected JSON response for {what}: {body[:200]}", body=body)
    return data


def require_list(data: Dict[str, Any], key: str, what: str) -> list:
    value = data.get(key)
    if not isinstance(value, list):
        raise LlmError.request(f"No {key} in response for {what}")
    return value


def merge_custom_body(payload: Dict[str, Any], custom_body: Dict[str, Any]) -> Dict[str, Any]:
    """合并自定义请求体字段，同名字段以自定义值为准；两边都是 dict 时递归合并。"""

    merged = dict(payload)
    for key, value in custom_body.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_custom_body(merged[key], value)
        else:
            merged[key] = value
    return merged
