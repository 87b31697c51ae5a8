import logging
from typing import Annotated, Optional, Tuple

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """
    Runtime settings, read once at process start.

    Values come from the environment and a local .env file. The model is
    frozen: nothing may change it after the server starts listening.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    port: int = 8080
    host: str = "0.0.0.0"
    dev_mode: str = "development"
    # MONGO_URL is the older name for the connection string
    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        validation_alias=AliasChoices("MONGODB_URI", "MONGO_URL"),
    )
    mongodb_db: str = "job_portal"
    server_url: Optional[str] = None
    cors_origins: Annotated[Tuple[str, ...], NoDecode] = ("*",)
    cors_allow_credentials: bool = False
    json_body_limit: int = 100 * 1024
    clerk_webhook_secret: Optional[str] = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            return tuple(origin.strip() for origin in value.split(",") if origin.strip())
        return value

    @model_validator(mode="before")
    @classmethod
    def default_server_url(cls, data):
        if isinstance(data, dict) and not data.get("server_url"):
            data = dict(data, server_url=f"http://localhost:{data.get('port', 8080)}")
        return data

    @property
    def debug(self) -> bool:
        return self.dev_mode.lower() == "development"

    @property
    def log_level(self) -> int:
        return logging.DEBUG if self.debug else logging.INFO


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
