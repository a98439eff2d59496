from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Supabase settings (auth + Postgres)
    SUPABASE_URL: str | None = None
    SUPABASE_JWT_SECRET: str | None = None
    SUPABASE_DB_URL: str | None = None

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # CANVAS CLIENT + DASHBOARD TUNING
    # =================================================================
    CANVAS_REQUEST_TIMEOUT: float = 30.0
    CANVAS_MAX_RETRIES: int = 3
    CANVAS_RETRY_DELAY: float = 1.0  # seconds, doubled per attempt
    CANVAS_MAX_CONCURRENT_REQUESTS: int = 12

    DASHBOARD_MAX_COURSES: int = 15
    DASHBOARD_BATCH_SIZE: int = 10
    DASHBOARD_BATCH_DELAY: float = 0.05  # 50ms between batches
    DASHBOARD_FALLBACK_COURSES: int = 5
    DASHBOARD_FILES_MAX_COURSES: int = 8
    DASHBOARD_MAX_ASSIGNMENTS: int = 50
    DASHBOARD_MAX_ANNOUNCEMENTS: int = 30
    DASHBOARD_MAX_FILES: int = 100

    # =================================================================
    # OPENAI
    # =================================================================
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_QUERY_MODEL: str = "gpt-4o-mini"
    OPENAI_TRANSCRIPTION_MODEL: str = "whisper-1"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    OPENAI_MAX_TOKENS: int = 1000
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_TIMEOUT_SECONDS: float = 60.0

    # =================================================================
    # VECTOR STORE (QDRANT)
    # =================================================================
    QDRANT_URL: str = "http://localhost:6333"
    QDRANT_API_KEY: str | None = None
    QDRANT_CONTENT_COLLECTION: str = "canvas_content"
    QDRANT_CHAT_COLLECTION: str = "chat_history"
    QDRANT_RECORDING_COLLECTION: str = "recording_summaries"

    # =================================================================
    # ASSISTANT + RECORDINGS
    # =================================================================
    CHAT_HISTORY_TURNS: int = 4
    CHAT_RECENT_CONTEXT_LIMIT: int = 6
    CHAT_HISTORY_SEARCH_LIMIT: int = 3
    RECORDING_SEARCH_LIMIT: int = 2
    CONVERSATION_TITLE_LENGTH: int = 40

    RECORDING_TEMP_DIR: str = "/tmp/coursepilot/recordings"
    RECORDING_BLOB_DIR: str = "/tmp/coursepilot/blobs"
    RECORDING_MIN_TRANSCRIPT_CHARS: int = 20
    RECORDING_MAX_UPLOAD_BYTES: int = 25 * 1024 * 1024  # whisper upload limit

    BACKGROUND_QUEUE_SIZE: int = 1000

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config

    def canvas_client_options(self) -> dict:
        """Keyword arguments for CanvasClient built from settings."""
        return {
            "max_retries": self.CANVAS_MAX_RETRIES,
            "retry_delay": self.CANVAS_RETRY_DELAY,
            "max_concurrent_requests": self.CANVAS_MAX_CONCURRENT_REQUESTS,
            "timeout": self.CANVAS_REQUEST_TIMEOUT,
        }

    def jwks_url(self) -> str | None:
        if not self.SUPABASE_URL:
            return None
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1/.well-known/jwks.json"

    def openai_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY)

    def database_configured(self) -> bool:
        return bool(self.SUPABASE_DB_URL)


settings = Settings()
