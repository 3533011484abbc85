"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

BACKEND_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Text generation (Anthropic)
    anthropic_api_key: str | None = None
    llm_timeout: int = 300

    # Speech-to-text (self-hosted Whisper ASR)
    whisper_url: str = "http://localhost:9000"
    whisper_timeout: float = 7200.0

    # Narration engine (ListenHub)
    listenhub_url: str = "https://api.marswave.ai/openapi/v1"
    listenhub_api_key: str | None = None
    narration_language: str = "zh"
    narration_initial_wait: float = 10.0
    narration_max_wait: float = 30 * 60.0

    # Avatar video engine (Kling AI)
    kling_url: str = "https://api-singapore.klingai.com"
    kling_access_key: str | None = None
    kling_secret_key: str | None = None
    avatar_image_url: str = "http://localhost:8801/files/static/default-avatar.png"
    avatar_default_mode: str = "std"
    avatar_poll_interval: float = 10.0
    avatar_max_attempts: int = 60

    # ExternalServiceAdapter
    adapter_max_attempts: int = 3
    adapter_initial_wait: float = 2.0
    adapter_max_wait: float = 15.0

    # Sources
    max_source_duration: int = 3 * 60 * 60  # seconds
    max_article_chars: int = 50_000
    analysis_max_chars: int = 8000
    http_timeout: float = 60.0

    # Worker
    worker_concurrency: int = 2

    # Paths
    data_root: Path = Path("/data")
    temp_dir: Path = Path("/data/temp")
    storage_root: Path = Path("/data/storage")
    store_root: Path = Path("/data/store")
    config_dir: Path = BACKEND_ROOT / "config"
    prompts_dir: Path | None = None  # External prompts directory (overrides built-in)
    public_base_url: str = "http://localhost:8801/files"

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_adapter: str | None = None
    log_level_pipeline: str | None = None
    log_level_narration: str | None = None
    log_level_avatar: str | None = None
    log_level_storage: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_prompt(
    stage: str,
    component: str,
    settings: Settings | None = None,
) -> str:
    """
    Load a prompt template with external folder priority.

    Lookup order (first found wins):
    1. prompts_dir/{stage}/{component}.md (external)
    2. config_dir/prompts/{stage}/{component}.md (built-in)

    Args:
        stage: Prompt group ("analysis", "highlights")
        component: Prompt component ("system", "user")
        settings: Optional settings instance

    Returns:
        Prompt template content

    Raises:
        FileNotFoundError: If no matching prompt file is found
    """
    if settings is None:
        settings = get_settings()

    paths_to_check: list[Path] = []

    if settings.prompts_dir and settings.prompts_dir.exists():
        paths_to_check.append(settings.prompts_dir / stage / f"{component}.md")

    paths_to_check.append(settings.config_dir / "prompts" / stage / f"{component}.md")

    for path in paths_to_check:
        if path.exists():
            return path.read_text(encoding="utf-8")

    raise FileNotFoundError(
        f"Prompt not found: stage={stage}, component={component}. "
        f"Checked paths: {[str(p) for p in paths_to_check]}"
    )


def load_services_config(settings: Settings | None = None) -> dict:
    """
    Load external service candidates from config/services.yaml.

    Args:
        settings: Optional settings instance

    Returns:
        Mapping of logical operation name to its ordered candidate list
    """
    if settings is None:
        settings = get_settings()

    services_path = settings.config_dir / "services.yaml"
    with open(services_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_candidates(operation: str, settings: Settings | None = None) -> list[dict]:
    """
    Get the ordered candidate descriptors for one logical operation.

    Args:
        operation: Operation key in services.yaml (e.g. "text_generation")
        settings: Optional settings instance

    Returns:
        List of raw candidate dicts (name, params, tag)

    Raises:
        KeyError: If the operation has no candidates configured
    """
    config = load_services_config(settings)
    candidates = config.get(operation) or []
    if not candidates:
        raise KeyError(f"No candidates configured for operation: {operation}")
    return candidates


def load_performance_config(settings: Settings | None = None) -> dict:
    """
    Load stage duration coefficients from config/performance.yaml.

    Used by ProgressManager to estimate remaining time.

    Args:
        settings: Optional settings instance

    Returns:
        Performance configuration with expected stage seconds
    """
    if settings is None:
        settings = get_settings()

    perf_path = settings.config_dir / "performance.yaml"
    if not perf_path.exists():
        return {}
    with open(perf_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
