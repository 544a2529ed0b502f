"""
chatstream CLI configuration

Priority:
  1. CLI flags (highest priority)
  2. Environment variables
  3. Default values (lowest priority)

Sources:
  - API_BASE: CHATSTREAM_API_BASE (env) -> http://127.0.0.1:8000 (default)
  - TIMEOUT: CHATSTREAM_CLI_TIMEOUT (env) -> 30 (default, seconds)
  - TOKEN: CHATSTREAM_CLI_TOKEN (env) -> "local-user" (default bearer token)
  - OUTPUT_FORMAT: CHATSTREAM_CLI_OUTPUT_FORMAT (env) -> text (default, text|json)
"""

import os
from dataclasses import dataclass
from typing import Literal, Optional

DEFAULT_API_BASE = "http://127.0.0.1:8000"
DEFAULT_TIMEOUT = 30
DEFAULT_TOKEN = "local-user"


@dataclass
class CLIConfig:
    api_base: str = DEFAULT_API_BASE
    timeout: int = DEFAULT_TIMEOUT  # seconds
    token: str = DEFAULT_TOKEN
    output_format: Literal["text", "json"] = "text"

    def to_dict(self) -> dict:
        """Display-safe view; the token is masked."""
        return {
            "api_base": self.api_base,
            "timeout": self.timeout,
            "token": "***" if self.token else "",
            "output_format": self.output_format,
        }


def get_api_base_from_env() -> str:
    return os.getenv("CHATSTREAM_API_BASE") or DEFAULT_API_BASE


def get_timeout_from_env() -> int:
    try:
        timeout = os.getenv("CHATSTREAM_CLI_TIMEOUT")
        if timeout:
            return int(timeout)
    except (ValueError, TypeError):
        pass

    return DEFAULT_TIMEOUT


def get_token_from_env() -> str:
    return os.getenv("CHATSTREAM_CLI_TOKEN") or DEFAULT_TOKEN


def get_output_format_from_env() -> Literal["text", "json"]:
    output_format = os.getenv("CHATSTREAM_CLI_OUTPUT_FORMAT", "text").lower()
    if output_format in ("text", "json"):
        return output_format  # type: ignore
    return "text"


def get_config(
    api_base: Optional[str] = None,
    timeout: Optional[int] = None,
    token: Optional[str] = None,
    output_format: Optional[Literal["text", "json"]] = None,
) -> CLIConfig:
    """Build CLI configuration with priority: CLI flag > env > default."""
    return CLIConfig(
        api_base=api_base or get_api_base_from_env(),
        timeout=timeout or get_timeout_from_env(),
        token=token or get_token_from_env(),
        output_format=output_format or get_output_format_from_env(),
    )


_global_config: Optional[CLIConfig] = None


def set_global_config(config: CLIConfig) -> None:
    global _global_config
    _global_config = config


def get_global_config() -> CLIConfig:
    """Config set by the root callback, or one resolved from env/defaults."""
    global _global_config
    if _global_config is None:
        _global_config = get_config()
    return _global_config
