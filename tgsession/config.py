from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    bot_token: str = ""
    telegram_api_url: str = "https://api.telegram.org"
    http_timeout_seconds: float = 30.0
    # e.g. socks5://proxy.local:1080
    telegram_proxy_url: Optional[str] = None

    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 30.0

    # Debounce window: a conversation becomes claimable this long after its last update
    update_queue_wait_seconds: float = 1.5
    processing_interval_seconds: float = 0.5
    processing_worker_enabled: bool = True
    max_state_transitions: int = 32

    webhook_url: Optional[str] = None
    webhook_cert_file: Optional[str] = None
    polling_timeout_seconds: int = 60

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
