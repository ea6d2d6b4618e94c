import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Endpoint configuration
    endpoint_config_path: str = Field(
        default="config/plugin-api.json", alias="PLUGIN_CONFIG_PATH"
    )

    # Request engine
    request_timeout: float = Field(default=60.0, alias="PLUGIN_REQUEST_TIMEOUT")
    token_expiry_margin: int = Field(default=30, alias="PLUGIN_TOKEN_EXPIRY_MARGIN")
    retry_after_fallback: int = Field(default=10, alias="PLUGIN_RETRY_AFTER_FALLBACK")
    rate_limit_wait: int = Field(default=60, alias="PLUGIN_RATE_LIMIT_WAIT")
    rate_limit_patterns: str = Field(
        default="ratelimit", alias="PLUGIN_RATE_LIMIT_PATTERNS"
    )

    # OAuth
    token_authority: str = Field(
        default="https://login.microsoftonline.com", alias="PLUGIN_TOKEN_AUTHORITY"
    )

    @property
    def rate_limit_pattern_list(self) -> list[str]:
        return [p.strip() for p in self.rate_limit_patterns.split(",") if p.strip()]


global_settings = Settings.model_validate(dict(os.environ))
