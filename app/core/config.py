from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    # Derived-view cache. "memory" keeps entries in-process, "redis" shares them across workers.
    cache_backend: str = Field("memory", alias="CACHE_BACKEND")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    cache_key_prefix: str = Field("insights:", alias="CACHE_KEY_PREFIX")

    # TTL tiers in seconds. Backstop only; writes invalidate by tag.
    cache_ttl_short: int = Field(30, alias="CACHE_TTL_SHORT")
    cache_ttl_medium: int = Field(60, alias="CACHE_TTL_MEDIUM")
    cache_ttl_long: int = Field(300, alias="CACHE_TTL_LONG")

    urgent_deadline_days: int = Field(2, alias="URGENT_DEADLINE_DAYS")
    trend_margin: int = Field(5, alias="TREND_MARGIN")
    fan_out_batch_size: int = Field(200, alias="FAN_OUT_BATCH_SIZE")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
