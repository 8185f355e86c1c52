"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
流式节流间隔、逐字打字间隔等调优常量都集中在这里，调用方也可以在构造时覆盖。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="openai",
        description="默认使用的 Provider 类型，例如 openai、google",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 连接/写入超时时间（秒）")
    stream_read_timeout: Optional[float] = Field(
        default=None,
        description="流式读取超时（秒），None 表示不限制，长回答可能持续数分钟",
    )

    # ---- 流式消费相关配置 ----
    persist_interval_ms: int = Field(
        default=500,
        ge=0,
        description="流式过程中部分回答写入持久化层的最小间隔（毫秒）",
    )
    typing_char_delay_ms: int = Field(
        default=30,
        ge=0,
        description="逐字显示模式下每个字符之间的延迟（毫秒）",
    )
    slow_loading_hint: str = Field(
        default="加载较慢？试试流式输出~",
        description="非流式显示模式下首个增量到达时展示的提示文案",
    )
    max_context_messages: int = Field(default=10, ge=1, le=100, description="发送时携带的最大上下文消息数")

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

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("default_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("stream_read_timeout")
    @classmethod
    def validate_read_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            return None
        return v

    @property
    def persist_interval(self) -> float:
        """节流间隔（秒）。"""

        return self.persist_interval_ms / 1000.0

    @property
    def typing_char_delay(self) -> float:
        """逐字显示间隔（秒）。"""

        return self.typing_char_delay_ms / 1000.0

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
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
