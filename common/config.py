import os
from dataclasses import dataclass
from typing import Mapping

from common.errors import ConfigError
from common.states import Provider

# Fixed queue timings
STALE_LOCK_WINDOW_MS = 5 * 60 * 1000
CLEANUP_INTERVAL_MS = 5 * 60 * 1000
CLAIM_BATCH_SIZE = 5
MAX_BACKOFF_MS = 60_000
SHUTDOWN_SAFETY_BUFFER_MS = 10_000

DEFAULT_PORT = 3210
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_OPENAI_MODEL = "gpt-4o"


def env(key: str, default: str | None = None, environ: Mapping[str, str] | None = None) -> str:
    source = os.environ if environ is None else environ
    v = source.get(key) or default
    if v is None:
        raise ConfigError(f"Missing env var: {key}")
    return v


def env_int(key: str, default: int, environ: Mapping[str, str] | None = None, minimum: int | None = None) -> int:
    raw = env(key, str(default), environ)
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"Env var {key} must be an integer, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"Env var {key} must be at least {minimum}, got {value}")
    return value


def env_float(key: str, default: float, environ: Mapping[str, str] | None = None) -> float:
    raw = env(key, str(default), environ)
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"Env var {key} must be a number, got {raw!r}") from None


def env_bool(key: str, default: bool, environ: Mapping[str, str] | None = None) -> bool:
    raw = env(key, "1" if default else "0", environ).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"Env var {key} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    database_url: str
    supabase_url: str
    supabase_service_role_key: str
    anthropic_api_key: str | None
    openai_api_key: str | None
    provider: Provider

    poll_interval_ms: int = 5000
    max_retries: int = 3
    claude_timeout_ms: int = 60_000
    claude_max_retries: int = 1
    graceful_shutdown_timeout_ms: int = 150_000
    worker_concurrency: int = 1
    verbose_logging: bool = False
    port: int = DEFAULT_PORT
    metrics_enabled: bool = True

    claude_model: str = DEFAULT_CLAUDE_MODEL
    openai_model: str = DEFAULT_OPENAI_MODEL
    max_output_tokens: int = 4096
    claude_input_cost_per_1k: float = 0.003
    claude_output_cost_per_1k: float = 0.015
    openai_cost_per_1k: float = 0.01

    storage_bucket: str = "mapping-sheet-scans"
    render_dpi: int = 150

    @property
    def minimum_shutdown_timeout_ms(self) -> int:
        return self.claude_timeout_ms * (1 + self.claude_max_retries) + SHUTDOWN_SAFETY_BUFFER_MS

    def config_echo(self) -> dict:
        return {
            "claudeTimeoutMs": self.claude_timeout_ms,
            "gracefulShutdownTimeoutMs": self.graceful_shutdown_timeout_ms,
            "pollIntervalMs": self.poll_interval_ms,
        }


def _resolve_provider(raw: str | None, anthropic_key: str | None, openai_key: str | None) -> Provider:
    if raw:
        try:
            provider = Provider(raw.strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown EXTRACTION_PROVIDER: {raw!r}") from None
    else:
        provider = Provider.CLAUDE if anthropic_key else Provider.OPENAI

    if provider is Provider.CLAUDE and not anthropic_key:
        raise ConfigError("EXTRACTION_PROVIDER=claude requires ANTHROPIC_API_KEY")
    if provider is Provider.OPENAI and not openai_key:
        raise ConfigError("EXTRACTION_PROVIDER=openai requires OPENAI_API_KEY")
    return provider


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    source = os.environ if environ is None else environ

    anthropic_key = source.get("ANTHROPIC_API_KEY") or None
    openai_key = source.get("OPENAI_API_KEY") or None
    if not anthropic_key and not openai_key:
        raise ConfigError("Missing env var: ANTHROPIC_API_KEY or OPENAI_API_KEY")

    return Settings(
        database_url=env("DATABASE_URL", environ=source),
        supabase_url=env("SUPABASE_URL", environ=source).rstrip("/"),
        supabase_service_role_key=env("SUPABASE_SERVICE_ROLE_KEY", environ=source),
        anthropic_api_key=anthropic_key,
        openai_api_key=openai_key,
        provider=_resolve_provider(source.get("EXTRACTION_PROVIDER"), anthropic_key, openai_key),
        poll_interval_ms=env_int("POLL_INTERVAL_MS", 5000, source, minimum=1),
        max_retries=max(1, env_int("MAX_RETRIES", 3, source)),
        claude_timeout_ms=env_int("CLAUDE_TIMEOUT_MS", 60_000, source, minimum=1),
        claude_max_retries=max(0, env_int("CLAUDE_MAX_RETRIES", 1, source)),
        graceful_shutdown_timeout_ms=env_int("GRACEFUL_SHUTDOWN_TIMEOUT_MS", 150_000, source, minimum=0),
        worker_concurrency=max(1, env_int("WORKER_CONCURRENCY", 1, source)),
        verbose_logging=env_bool("VERBOSE_LOGGING", False, source),
        port=env_int("PORT", DEFAULT_PORT, source),
        metrics_enabled=env_bool("METRICS_ENABLED", True, source),
        claude_model=env("CLAUDE_MODEL", DEFAULT_CLAUDE_MODEL, source),
        openai_model=env("OPENAI_MODEL", DEFAULT_OPENAI_MODEL, source),
        max_output_tokens=env_int("MAX_OUTPUT_TOKENS", 4096, source, minimum=1),
        claude_input_cost_per_1k=env_float("CLAUDE_INPUT_COST_PER_1K", 0.003, source),
        claude_output_cost_per_1k=env_float("CLAUDE_OUTPUT_COST_PER_1K", 0.015, source),
        openai_cost_per_1k=env_float("OPENAI_COST_PER_1K", 0.01, source),
        storage_bucket=env("STORAGE_BUCKET", "mapping-sheet-scans", source),
        render_dpi=env_int("RENDER_DPI", 150, source, minimum=1),
    )
