"""Runtime configuration read once at process start.

All values come from environment variables (optionally populated from a
.env file by main.py). Nothing else in the backend reads os.environ.
"""

import os
from dataclasses import dataclass, field

API_VERSION = "1.0.0"
SUPPORTED_BACKENDS = ("cerebras", "groq")


class ConfigError(Exception):
    """Configuration value missing or malformed."""
    pass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Immutable application settings.

    Attributes:
        llm_backend: Primary model backend ("cerebras" or "groq").
        llm_fallback_backend: Optional second backend tried on unavailability.
        cerebras_api_key / groq_api_key: Provider credentials.
        cerebras_model / groq_model: Model identifiers per provider.
        temperature: Sampling temperature passed to the chat model.
        max_tokens: Completion token cap.
        llm_timeout: Per-call deadline in seconds for the model gateway.
        max_tool_iterations: Upper bound on model calls within one chat turn.
        log_level: Minimum structlog level name.
        log_json: Render logs as JSON lines instead of console output.
        cors_origins: Allowed CORS origins.
    """
    llm_backend: str = "cerebras"
    llm_fallback_backend: str | None = None
    cerebras_api_key: str = ""
    cerebras_model: str = "gpt-oss-120b"
    groq_api_key: str = ""
    groq_model: str = "openai/gpt-oss-120b"
    temperature: float = 0.0
    max_tokens: int = 2048
    llm_timeout: float = 30.0
    max_tool_iterations: int = 5
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: tuple[str, ...] = field(default_factory=lambda: ("*",))

    def __post_init__(self):
        if self.llm_backend not in SUPPORTED_BACKENDS:
            raise ConfigError(
                f"Unsupported LLM_BACKEND {self.llm_backend!r}. "
                f"Choose one of: {', '.join(SUPPORTED_BACKENDS)}"
            )
        if self.llm_fallback_backend is not None:
            if self.llm_fallback_backend not in SUPPORTED_BACKENDS:
                raise ConfigError(f"Unsupported LLM_FALLBACK_BACKEND {self.llm_fallback_backend!r}")
            if self.llm_fallback_backend == self.llm_backend:
                raise ConfigError("LLM_FALLBACK_BACKEND must differ from LLM_BACKEND")
        if self.max_tool_iterations < 1:
            raise ConfigError("MAX_TOOL_ITERATIONS must be at least 1")
        if self.llm_timeout <= 0:
            raise ConfigError("LLM_TIMEOUT must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        origins = os.environ.get("CORS_ORIGINS", "*")
        return cls(
            llm_backend=os.environ.get("LLM_BACKEND", "cerebras").strip().lower(),
            llm_fallback_backend=(os.environ.get("LLM_FALLBACK_BACKEND", "").strip().lower() or None),
            cerebras_api_key=os.environ.get("CEREBRAS_API_KEY", ""),
            cerebras_model=os.environ.get("CEREBRAS_MODEL", "gpt-oss-120b"),
            groq_api_key=os.environ.get("GROQ_API_KEY", ""),
            groq_model=os.environ.get("GROQ_MODEL", "openai/gpt-oss-120b"),
            temperature=_env_float("LLM_TEMPERATURE", 0.0),
            max_tokens=_env_int("LLM_MAX_TOKENS", 2048),
            llm_timeout=_env_float("LLM_TIMEOUT", 30.0),
            max_tool_iterations=_env_int("MAX_TOOL_ITERATIONS", 5),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", False),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )

    def api_key_for(self, backend: str) -> str:
        return self.cerebras_api_key if backend == "cerebras" else self.groq_api_key

    def model_for(self, backend: str) -> str:
        return self.cerebras_model if backend == "cerebras" else self.groq_model
