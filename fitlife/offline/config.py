from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Settings of the offline runtime; built by the embedding app and passed to OfflineRuntime.build."""

    api_base_url: str = "http://127.0.0.1:8000"
    offline_db_url: str = "sqlite:///./fitlife_offline.db"
    request_timeout: float = 10.0
    default_cache_ttl: float = 24 * 3600  # seconds
    # Sync queue: after this many failed replays an action goes to dead-letter
    sync_max_retries: int = 5
    sync_backoff_base: float = 2.0   # seconds before the first retry, doubled each time
    sync_backoff_max: float = 300.0
    default_priority: int = 5

    model_config = {
        "env_prefix": "FITLIFE_CLIENT_",
        "extra": "ignore",
    }
