from functools import lru_cache
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ConfigDict, ValidationError


class Settings(BaseModel):
    """Application settings loaded from environment variables.

    Provider credentials are optional at startup so the service can run with
    only one provider configured; a missing credential surfaces as a
    ``ProviderAuthError`` the first time that provider is called.  Numeric
    limits are validated eagerly so a typo fails fast with a clear message.
    """

    model_config = ConfigDict(populate_by_name=True)

    AWS_REGION: str = Field("us-east-1", alias="AWS_REGION")
    AWS_ACCESS_KEY_ID: Optional[str] = Field(None, alias="AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: Optional[str] = Field(None, alias="AWS_SECRET_ACCESS_KEY")

    FACEPP_API_KEY: Optional[str] = Field(None, alias="FACEPP_API_KEY")
    FACEPP_API_SECRET: Optional[str] = Field(None, alias="FACEPP_API_SECRET")
    FACEPP_API_URL: str = Field(
        "https://api-us.faceplusplus.com/facepp/v3/detect", alias="FACEPP_API_URL"
    )
    FACEPP_TIMEOUT_SECONDS: float = Field(10.0, gt=0, alias="FACEPP_TIMEOUT_SECONDS")

    AWS_MONTHLY_LIMIT: int = Field(1000, ge=0, alias="AWS_MONTHLY_LIMIT")
    FACEPP_MONTHLY_LIMIT: int = Field(30000, ge=0, alias="FACEPP_MONTHLY_LIMIT")
    FACEPP_RATE_LIMIT_PER_MINUTE: int = Field(20, ge=0, alias="FACEPP_RATE_LIMIT_PER_MINUTE")

    USAGE_FILE: str = Field("api-usage.json", alias="USAGE_FILE")
    CAPTURE_DB_PATH: str = Field("crowd_captures.db", alias="CAPTURE_DB_PATH")

    HOST: str = Field("0.0.0.0", alias="HOST")
    PORT: int = Field(8080, alias="PORT")


_KEYS = list(Settings.model_fields)


@lru_cache()
def get_settings() -> Settings:
    """Load and validate settings from the environment."""

    load_dotenv()
    data = {k: os.getenv(k) for k in _KEYS if os.getenv(k)}
    try:
        return Settings(**data)
    except ValidationError as e:
        invalid = ", ".join(str(err["loc"][0]) for err in e.errors())
        raise RuntimeError(
            f"Invalid environment variables: {invalid}"
        ) from e
