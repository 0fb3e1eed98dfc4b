"""
Tenant configuration schema.

A tenant is one school group's account with one provider. The config is
resolved by the caller before a sync starts and is immutable for the
duration of the run.
"""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from core.exceptions import ConfigurationError
from models.base import ProviderType


class TenantConfig(BaseModel):
    """Credentials and scope for one tenant."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=64)
    provider: ProviderType
    name: Optional[str] = None
    domain_url: str = Field(..., min_length=1)

    # Nexquare (OAuth client credentials)
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None
    token_path: str = "/oauth2/v1/token"

    # ManageBac (static API key)
    api_key: Optional[SecretStr] = None

    # Optional "current school" scope and default academic year
    school_id: Optional[str] = None
    academic_year: Optional[str] = None

    @field_validator("domain_url")
    @classmethod
    def strip_domain(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("domain_url cannot be empty")
        return v

    @model_validator(mode="after")
    def check_credentials(self):
        if self.provider == ProviderType.NEXQUARE and not (self.client_id and self.client_secret):
            raise ValueError("Nexquare tenants require client_id and client_secret")
        if self.provider == ProviderType.MANAGEBAC and not self.api_key:
            raise ValueError("ManageBac tenants require api_key")
        return self

    @property
    def base_url(self) -> str:
        url = self.domain_url
        if self.provider == ProviderType.MANAGEBAC:
            # School subdomains serve the UI; the API lives on one host
            if ".managebac.com" in url and "api.managebac.com" not in url:
                url = "https://api.managebac.com"
            if not url.startswith(("http://", "https://")):
                url = f"https://{url}"
            if "/v2" not in url:
                url = f"{url}/v2"
            return url

        if not url.startswith(("http://", "https://")):
            url = f"https://{url}"
        return url

    @property
    def token_url(self) -> str:
        return f"{self.base_url}{self.token_path}"


def load_tenants(path: str) -> List[TenantConfig]:
    """Load tenant configurations from a JSON file holding a list of objects."""
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(
            "Tenants file not found",
            context={"path": str(file_path)}
        )

    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError("expected a JSON list of tenant objects")
        return [TenantConfig.model_validate(item) for item in raw]
    except ValueError as e:
        # pydantic.ValidationError and json.JSONDecodeError are both ValueErrors
        raise ConfigurationError(
            "Invalid tenants file",
            context={"path": str(file_path)},
            original_exception=e
        )
