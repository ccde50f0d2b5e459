from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    redis_url: str = "redis://localhost:6379"
    redis_max_connections: int = 50
    redis_socket_timeout: int = 5
    redis_health_check_interval: int = 30

    mqtt_enabled: bool = True
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_client_id: str = ""
    mqtt_keepalive: int = 60
    mqtt_topic_prefix: str = "adv"

    telemetry_measurement: str = "device_messages"
    telemetry_retention_seconds: int = 30 * 86400

    query_default_range: str = "1h"
    query_row_limit: int = 1000
    query_cache_ttl_seconds: int = 30

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
