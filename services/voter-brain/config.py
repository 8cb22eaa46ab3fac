"""Environment-based configuration for the voter brain service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Voter brain settings, loaded from environment variables."""

    # Server
    PORT: int = 8092

    # Model service (OpenAI-compatible chat completions + transcription)
    LLM_BASE_URL: str = "https://api.fireworks.ai/inference/v1"
    LLM_API_KEY: str = ""
    GENERATOR_MODEL: str = "accounts/fireworks/models/qwen3-vl-30b-a3b-thinking"
    ASR_MODEL: str = "accounts/fireworks/models/whisper-v3"
    AUDIO_TRANSCRIBE_URL: str = "https://audio-prod.api.fireworks.ai/v1/audio/transcriptions"

    # Model service timeouts, retry and circuit breaker
    LLM_TIMEOUT_SECONDS: float = 12.0
    LLM_CONNECT_TIMEOUT: float = 5.0
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_DELAY: float = 1.0
    LLM_RETRY_BACKOFF: float = 2.0
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_SECONDS: float = 60.0

    # Retrieval/generation service (empty = RAG unavailable)
    RAG_SERVICE_URL: str = ""
    RAG_TIMEOUT_SECONDS: float = 20.0

    # Answer cache
    CACHE_TTL_SECONDS: int = 86400  # 24h

    # Persistence: "memory" (in-process) or "supabase"
    STORE_BACKEND: str = "memory"
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    HASH_SALT: str = "voter-brain-kottayam"
    MEMORY_RETENTION_DAYS: int = 90

    # Admin review endpoints (empty token = disabled)
    ADMIN_API_TOKEN: str = ""
    ADMIN_SCAN_LIMIT: int = 10_000

    # Booth dataset (empty = bundled data/booths.json)
    BOOTH_DATA_PATH: str = ""

    # Upload limits
    MAX_IMAGE_BYTES: int = 20 * 1024 * 1024
    MAX_AUDIO_BYTES: int = 25 * 1024 * 1024

    # Decision thresholds
    ESCALATION_THRESHOLD: float = 0.55
    CACHE_MIN_CONFIDENCE: float = 0.6
    SUPPLEMENT_MIN_CONFIDENCE: float = 0.6
    FALLBACK_CONFIDENCE: float = 0.3

    model_config = {"env_prefix": "", "case_sensitive": True}


settings = Settings()
