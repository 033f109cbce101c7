from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Field Survey"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Local store (on-device SQLite file)
    DATABASE_URL: str = "sqlite:///./fieldsurvey.db"

    # Remote API
    API_BASE_URL: str = "http://localhost:8000"
    API_VERSION: str = "v1"
    API_TOKEN: str = ""  # Static bearer token; the app normally injects an auth provider instead

    # Sync
    SYNC_SCHEMA_VERSION: int = 1
    SYNC_REQUEST_TIMEOUT_SECONDS: float = 30.0
    SYNC_PUSH_TIMEOUT_SECONDS: float = 45.0  # Hard cap per record push, on top of the HTTP timeout
    SYNC_INTERVAL_SECONDS: int = 300
    SYNC_ON_STARTUP: bool = False

    # Autosave
    AUTOSAVE_DEFAULT_INTERVAL_MS: int = 30000
    AUTOSAVE_MAX_FAILURES: int = 5  # Consecutive failed draft saves before reporting retries exhausted

    # Form configuration documents (*.json)
    FORM_CONFIG_DIR: str = "forms"

    model_config = {"env_file": ".env", "case_sensitive": True}


settings = Settings()
