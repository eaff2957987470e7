import os
from functools import lru_cache

from pydantic import BaseModel, Field

FRIENDLY_NAME = "AlphaVantage.com"


class ProviderSettings(BaseModel):
    name: str = FRIENDLY_NAME
    api_key: str = "demo"
    requests_per_minute: int = Field(default=5, ge=0)
    requests_per_day: int = Field(default=500, ge=0)
    requests_per_month: int = Field(default=0, ge=0)
    base_url: str = "https://www.alphavantage.co"
    request_timeout_sec: float = Field(default=10.0, gt=0)
    throttle_path: str | None = None

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        env_map = {
            "api_key": "ALPHA_VANTAGE_API_KEY",
            "requests_per_minute": "ALPHA_VANTAGE_REQUESTS_PER_MINUTE",
            "requests_per_day": "ALPHA_VANTAGE_REQUESTS_PER_DAY",
            "requests_per_month": "ALPHA_VANTAGE_REQUESTS_PER_MONTH",
            "base_url": "ALPHA_VANTAGE_BASE_URL",
            "throttle_path": "QUOTEFETCH_THROTTLE_PATH",
        }
        values = {}
        for field_name, env_name in env_map.items():
            raw = os.getenv(env_name)
            if raw is None or not raw.strip():
                continue
            values[field_name] = raw.strip()
        return cls.model_validate(values)


def default_settings() -> ProviderSettings:
    return ProviderSettings(
        name=FRIENDLY_NAME,
        api_key="demo",
        requests_per_minute=5,
        requests_per_day=500,
        requests_per_month=0,
    )


def is_my_settings(settings: ProviderSettings) -> bool:
    return settings.name == FRIENDLY_NAME


@lru_cache
def get_settings() -> ProviderSettings:
    return ProviderSettings.from_env()
