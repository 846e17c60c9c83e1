"""Configuration helpers for the voice chat client."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"

# Fields the settings screen persists; everything else comes from the environment.
PERSISTED_FIELDS = ("api_key", "base_url", "model", "hands_free")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def normalize_base_url(raw: Optional[str]) -> str:
    """
    Trim whitespace and trailing slashes from an API base URL.

    Raises:
        ValueError: if nothing is left.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        raise ValueError("A non-empty base URL is required")
    return trimmed.rstrip("/")


@dataclass
class AppConfig:
    """
    Runtime configuration for the voice chat client.

    Attributes:
        base_url: OpenAI-compatible API root, e.g. https://api.openai.com/v1.
        api_key: Bearer token sent as `Authorization: Bearer <token>`.
        model: Model name for `/chat/completions`.
        hands_free: Start voice capture in hands-free mode.
        language: BCP-47 tag passed to the speech recognizer.
        request_timeout: HTTP timeout in seconds.
        system_prompt: Optional system message seeded into new conversations.
        state_path: JSON file holding persisted config and sessions.
        whisper_model: Whisper model size for the on-device recognizer.
        whisper_device: Device for Whisper ("cpu"/"cuda"/None).
        whisper_url: Remote Whisper service for the hosted recognizer.
        tts_mode: "console" or "piper".
        piper_model_path: Path to a Piper `.onnx` model (tts_mode=piper).
        piper_binary: Piper binary name/path.
        piper_speaker: Optional speaker id/name for Piper.

    Usage:
        >>> config = AppConfig.from_env()
        >>> config.model
        'gpt-4o-mini'
    """

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    hands_free: bool = False
    language: str = "en-US"
    request_timeout: float = 60.0
    system_prompt: Optional[str] = None
    state_path: str = os.path.join("~", ".voicechat", "state.json")
    whisper_model: str = "base"
    whisper_device: Optional[str] = None
    whisper_url: Optional[str] = None
    tts_mode: str = "console"
    piper_model_path: Optional[str] = None
    piper_binary: str = "piper"
    piper_speaker: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """
        Build an :class:`AppConfig` from environment variables.

        Supported variables:
            - VOICECHAT_BASE_URL: API root (default: https://api.openai.com/v1)
            - VOICECHAT_API_KEY: Bearer token.
            - VOICECHAT_MODEL: Model name (default: gpt-4o-mini).
            - VOICECHAT_HANDS_FREE: "true"/"1" to start in hands-free mode.
            - VOICECHAT_LANGUAGE: Recognition language (default: en-US).
            - VOICECHAT_REQUEST_TIMEOUT: Timeout in seconds (float, default: 60).
            - VOICECHAT_SYSTEM_PROMPT: Seed system message.
            - VOICECHAT_STATE_PATH: Persisted state file (default: ~/.voicechat/state.json).
            - VOICECHAT_WHISPER_MODEL: Whisper model size (default: "base").
            - VOICECHAT_WHISPER_DEVICE: Whisper device (e.g., "cuda" or "cpu").
            - VOICECHAT_WHISPER_URL: Remote Whisper service URL.
            - VOICECHAT_TTS_MODE: "console" (default) or "piper".
            - VOICECHAT_PIPER_MODEL: Path to Piper .onnx model.
            - VOICECHAT_PIPER_BINARY: Piper binary name/path (default: "piper").
            - VOICECHAT_PIPER_SPEAKER: Optional speaker id/name passed to Piper.
        """
        env = os.environ if environ is None else environ

        timeout_raw = env.get("VOICECHAT_REQUEST_TIMEOUT", "60")
        try:
            request_timeout = float(timeout_raw)
        except ValueError as exc:
            raise ValueError("VOICECHAT_REQUEST_TIMEOUT must be a number") from exc

        return cls(
            base_url=normalize_base_url(env.get("VOICECHAT_BASE_URL") or DEFAULT_BASE_URL),
            api_key=env.get("VOICECHAT_API_KEY", ""),
            model=env.get("VOICECHAT_MODEL") or DEFAULT_MODEL,
            hands_free=env.get("VOICECHAT_HANDS_FREE", "false").lower() in _TRUE_VALUES,
            language=env.get("VOICECHAT_LANGUAGE") or "en-US",
            request_timeout=request_timeout,
            system_prompt=env.get("VOICECHAT_SYSTEM_PROMPT") or None,
            state_path=env.get("VOICECHAT_STATE_PATH") or cls.state_path,
            whisper_model=env.get("VOICECHAT_WHISPER_MODEL") or "base",
            whisper_device=env.get("VOICECHAT_WHISPER_DEVICE") or None,
            whisper_url=env.get("VOICECHAT_WHISPER_URL") or None,
            tts_mode=(env.get("VOICECHAT_TTS_MODE") or "console").lower(),
            piper_model_path=env.get("VOICECHAT_PIPER_MODEL") or None,
            piper_binary=env.get("VOICECHAT_PIPER_BINARY") or "piper",
            piper_speaker=env.get("VOICECHAT_PIPER_SPEAKER") or None,
        )

    def merged(self, stored: Mapping[str, Any]) -> "AppConfig":
        """Apply persisted settings; unknown keys and wrong types are ignored."""
        overrides: Dict[str, Any] = {}
        for key in ("api_key", "base_url", "model"):
            value = stored.get(key)
            if isinstance(value, str) and value.strip():
                overrides[key] = value.strip()
        if "base_url" in overrides:
            overrides["base_url"] = normalize_base_url(overrides["base_url"])
        if isinstance(stored.get("hands_free"), bool):
            overrides["hands_free"] = stored["hands_free"]
        return replace(self, **overrides)

    def persisted(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in PERSISTED_FIELDS}
