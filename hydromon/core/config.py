from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Hydroponic Monitor"

    # "development" seeds a sample row into an empty store; "production" never persists samples
    run_mode: str = Field(default="development")

    # External device-reporting service
    external_api_url: str = "http://localhost:8080"  # origin or full latest-readings endpoint
    external_api_key: str = ""
    external_device: str = "HZ1"
    cf_access_client_id: str = ""
    cf_access_client_secret: str = ""
    allow_query_key_fallback: bool = True

    # Remote fetch limits
    ext_api_timeout_seconds: float = 10.0
    ext_api_max_attempts: int = 2
    retry_backoff_seconds: float = 0.3  # multiplied by attempt number

    # Minimum interval between remote fetches
    cache_timeout_seconds: float = 10.0

    # Background polling
    poll_seconds: int = 10

    # Storage
    storage_enabled: bool = True
    sqlite_path: str = Field(default="hydromon.db")

    # In-memory readings kept while storage is down
    fallback_buffer_size: int = 500

    log_file: str = "hydromon.log"

    @property
    def is_production(self) -> bool:
        return self.run_mode.lower() == "production"


settings = Settings()
