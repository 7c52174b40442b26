"""
Coordinator configuration.

Settings are read once from environment variables (optionally loaded from a
`.env` file at the repository root) and passed explicitly to the components
that need them. Storage backend selection happens here, at startup, and
nowhere else.

Environment configuration:
- ENVIRONMENT: "development" (default) or "production"
- LOG_LEVEL / LOG_JSON: structured logging options
- STORAGE_BACKEND: "supabase" or "memory" (default: supabase when credentials exist)
- SUPABASE_URL, SUPABASE_SERVICE_KEY (or SUPABASE_KEY / SUPABASE_ANON_KEY)
- GRAPH_CACHE_TTL_SECONDS: knowledge graph cache TTL (default: 30)
- PROXY_TIMEOUT_SECONDS: hard timeout for forwarded requests (default: 30)
- LLM_API_BASE, LLM_API_KEY (or OPENAI_API_KEY), LLM_ROUTING_MODEL,
  LLM_ROUTING_TIMEOUT_SECONDS: routing oracle
- COORDINATOR_NAME: value of the X-Coordinator-Service header
- OTEL_EXPORTER_OTLP_ENDPOINT / OTEL_SERVICE_NAME: tracing export
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

STORAGE_BACKENDS = {"supabase", "memory"}

_env_path = Path(__file__).parent.parent.parent.parent / ".env"


class Settings(BaseModel):
    """Runtime settings for one coordinator process."""

    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True

    storage_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    graph_cache_ttl_seconds: float = Field(30.0, gt=0)
    proxy_timeout_seconds: float = Field(30.0, gt=0)

    llm_api_base: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_routing_model: str = "gpt-3.5-turbo"
    llm_routing_timeout_seconds: float = Field(10.0, gt=0)

    coordinator_name: str = "coordinator"
    otlp_endpoint: Optional[str] = None
    otel_service_name: str = "coordinator"

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, value: str) -> str:
        v = value.lower().strip()
        if v not in STORAGE_BACKENDS:
            raise ValueError(f"storage_backend must be one of {sorted(STORAGE_BACKENDS)}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def load_settings() -> Settings:
    """Build a Settings instance from the current environment."""
    if _env_path.exists():
        load_dotenv(_env_path)

    supabase_url = os.getenv("SUPABASE_URL") or None
    supabase_key = (
        os.getenv("SUPABASE_SERVICE_KEY")
        or os.getenv("SUPABASE_KEY")
        or os.getenv("SUPABASE_ANON_KEY")
        or None
    )
    default_backend = "supabase" if supabase_url and supabase_key else "memory"

    return Settings(
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_bool("LOG_JSON", "true"),
        storage_backend=os.getenv("STORAGE_BACKEND", default_backend),
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        graph_cache_ttl_seconds=float(os.getenv("GRAPH_CACHE_TTL_SECONDS", "30") or "30"),
        proxy_timeout_seconds=float(os.getenv("PROXY_TIMEOUT_SECONDS", "30") or "30"),
        llm_api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
        llm_api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or None,
        llm_routing_model=os.getenv("LLM_ROUTING_MODEL", "gpt-3.5-turbo"),
        llm_routing_timeout_seconds=float(
            os.getenv("LLM_ROUTING_TIMEOUT_SECONDS", "10") or "10"
        ),
        coordinator_name=os.getenv("COORDINATOR_NAME", "coordinator"),
        otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        otel_service_name=os.getenv("OTEL_SERVICE_NAME", "coordinator"),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
