"""Global channel settings"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Centralized configuration.
    Reads configs from env variables.
    """

    app_name: str = "WebChat Channel Gateway"

    # Chat server serving history and room creation
    base_url: str = "http://localhost:8080"
    history_path: str = "/protected/history"
    new_room_path: str = "/protected/new-room/"

    redis_url: str = "redis://localhost:6379"

    heartbeat_interval_ms: int = 5000

    # Seconds, applies to HTTP calls and pub/sub requests
    request_timeout: float = 5.0

    model_config = {"env_file": ".env"}


settings = Settings()
