"""
Configuration management for the admission webhook using Pydantic.
"""

import json
import re
from pathlib import Path
from typing import Annotated, Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from admission_control.exceptions import UnsupportedProviderError
from admission_control.handler import DEFAULT_LIMIT_BYTES
from admission_control.policies.annotations import AnnotationPredicate, matches
from admission_control.policies.load_balancer import CloudProvider


DEFAULT_GRACE_PERIOD = 15.0


class ServerConfig(BaseSettings):
    """Listener and process configuration. Every field reads ADMISSION_<NAME> from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server configuration
    bind_address: str = "0.0.0.0"
    port: int = Field(default=8443, ge=1, le=65535)

    # TLS configuration
    tls_cert_path: Optional[Path] = None
    tls_key_path: Optional[Path] = None
    http_only: bool = False

    # Request handling
    limit_bytes: int = Field(default=DEFAULT_LIMIT_BYTES, gt=0)
    grace_period: float = Field(default=DEFAULT_GRACE_PERIOD, gt=0)

    # Logging
    debug: bool = False
    json_logs: bool = False

    @field_validator("tls_cert_path", "tls_key_path")
    @classmethod
    def validate_paths(cls, v):
        """Validate that paths exist if specified."""
        if v is not None and not Path(v).exists():
            raise ValueError(f"Path does not exist: {v}")
        return v

    @model_validator(mode="after")
    def validate_tls(self):
        if bool(self.tls_cert_path) != bool(self.tls_key_path):
            raise ValueError("tls_cert_path and tls_key_path must be provided together")
        return self

    @property
    def tls_enabled(self) -> bool:
        return not self.http_only and self.tls_cert_path is not None and self.tls_key_path is not None

    def export_json(self) -> str:
        """Export configuration as JSON."""
        return self.model_dump_json(indent=2)


class AdmissionConfig(ServerConfig):
    """Server configuration plus the settings of the built-in decision functions."""

    ignored_namespaces: Annotated[List[str], NoDecode] = Field(default_factory=list)
    cloud_provider: CloudProvider = CloudProvider.GCP
    # Annotation key -> regular expression its value must fully match
    required_annotations: Dict[str, str] = Field(default_factory=dict)

    @field_validator("ignored_namespaces", mode="before")
    @classmethod
    def parse_namespaces(cls, v):
        """Parse comma-separated namespace list from environment."""
        if isinstance(v, str):
            return [ns.strip() for ns in v.split(",") if ns.strip()]
        return v

    @field_validator("cloud_provider", mode="before")
    @classmethod
    def parse_cloud_provider(cls, v):
        try:
            return CloudProvider.parse(v)
        except UnsupportedProviderError as e:
            raise ValueError(str(e))

    @field_validator("required_annotations", mode="before")
    @classmethod
    def parse_required_annotations(cls, v):
        if isinstance(v, str):
            v = json.loads(v) if v.strip() else {}
        for key, pattern in v.items():
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid pattern for annotation {key}: {e}")
        return v

    def annotation_predicates(self) -> Dict[str, AnnotationPredicate]:
        return {key: matches(pattern) for key, pattern in self.required_annotations.items()}


def load_config(**kwargs) -> AdmissionConfig:
    """Load configuration with environment variables and optional overrides."""
    return AdmissionConfig(**kwargs)
