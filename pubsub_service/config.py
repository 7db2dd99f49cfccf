"""
Configuration management for the Pub/Sub service.
"""

import os
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pubsub_service.errors import ConfigValidationError


class Config:
    """Environment driven defaults."""

    # Service Configuration
    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "pubsub")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Google Cloud Pub/Sub Configuration
    GCP_PROJECT_ID: str = os.getenv(
        "GCP_PROJECT_ID", os.getenv("GOOGLE_CLOUD_PROJECT", "")
    )
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = os.getenv(
        "GOOGLE_APPLICATION_CREDENTIALS"
    )
    PUBSUB_EMULATOR_HOST: Optional[str] = os.getenv("PUBSUB_EMULATOR_HOST")
    PUBSUB_ACK_DEADLINE_SECONDS: int = int(
        os.getenv("PUBSUB_ACK_DEADLINE_SECONDS", "300")
    )


class ServiceAccountCredentials(BaseModel):
    """Inline service account key material."""

    model_config = ConfigDict(frozen=True, extra="allow")

    client_email: str
    private_key: str = Field(repr=False)


class PubSubConfig(BaseModel):
    """
    Validated connection settings for a PubSubService.

    Accepts both the camelCase keys used on the wire (``projectId``,
    ``keyFilename``) and the snake_case attribute names. ``file`` is accepted
    as an alias of ``keyFilename``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    project_id: str = Field(alias="projectId", min_length=1)
    key_filename: Optional[str] = Field(default=None, alias="keyFilename")
    credentials: Optional[ServiceAccountCredentials] = None
    ack_deadline_seconds: int = Field(default=300, ge=0)

    @property
    def auth_method(self) -> str:
        """Name of the credential source used to build the clients."""
        if self.credentials is not None:
            return "PrivateKey"
        if self.key_filename:
            return "KeyFile"
        return "ApplicationDefault"

    @classmethod
    def load(cls, config: Union["PubSubConfig", Mapping[str, Any]]) -> "PubSubConfig":
        """
        Validate a raw configuration mapping.

        Raises:
            ConfigValidationError: If the mapping does not match the schema
        """
        if isinstance(config, cls):
            return config
        if not isinstance(config, Mapping):
            raise ConfigValidationError(
                f"Configuration must be a mapping, got {type(config).__name__}"
            )
        data = dict(config)
        if "file" in data:
            if "keyFilename" in data or "key_filename" in data:
                raise ConfigValidationError(
                    "Configuration cannot set both 'file' and 'keyFilename'"
                )
            data["keyFilename"] = data.pop("file")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigValidationError.from_validation_error(
                "Invalid Pub/Sub configuration", e
            ) from e

    @classmethod
    def from_env(cls) -> "PubSubConfig":
        """Build a configuration from environment variables."""
        data: dict = {
            "projectId": Config.GCP_PROJECT_ID,
            "ack_deadline_seconds": Config.PUBSUB_ACK_DEADLINE_SECONDS,
        }
        if Config.GOOGLE_APPLICATION_CREDENTIALS:
            data["keyFilename"] = Config.GOOGLE_APPLICATION_CREDENTIALS
        return cls.load(data)
