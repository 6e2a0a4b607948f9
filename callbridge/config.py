from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    # Event bus selection: "memory" or "ami"
    BUS_ADAPTER: Literal["memory", "ami"] = "memory"
    AMI_HOST: str = "127.0.0.1"
    AMI_PORT: int = 5038
    AMI_USERNAME: str = ""
    AMI_SECRET: str = ""
    AMI_CONNECT_TIMEOUT: float = 10.0
    # Seconds to wait for the correlating event after the request is acknowledged
    CORRELATE_TIMEOUT: float | None = 30.0
    # Upper bound on a tracked call's lifetime; unset means wait for hangup
    CALL_MAX_DURATION: float | None = None
    # Result store selection: "memory" or "redis"
    RESULT_STORE: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None
    RESULT_STORE_MAXLEN: int = 10000
    # Authentication
    API_KEYS: str = ""  # Comma-separated list of API keys
    REQUIRE_AUTH: bool = False

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
