from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """
    Application configuration settings.

    Trace store limits and performance thresholds are code constants
    (see observability.trace_store / observability.enricher), not settings.
    """
    model_config = SettingsConfigDict(env_prefix="CALL_LOGGING_", env_file=".env", extra="ignore")

    # Service Info
    service_name: str = "mail-app"
    environment: str = "local"
    log_level: str = "INFO"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    rpc_prefix: str = "/api/rpc"

    # Log sink
    export_enabled: bool = False
    sink_api_key: str = ""
    sink_app_key: str = ""
    sink_site: str = "datadoghq.com"
    sink_timeout_ms: int = 2000

    # Background delivery
    export_workers: int = 2
    export_queue_size: int = 1000

settings = Settings()
