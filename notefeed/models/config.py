"""Configuration models.

Accounts, feed paging/reconcile behaviour, cache and logging settings.
Loaded from YAML by ConfigManager.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RetryConfig(BaseModel):
    """Configuration for retry logic with exponential backoff

    Controls how the reconcile flow retries after a disconnect:
    - Number of attempts before giving up
    - Delay calculation parameters
    - Jitter for request spreading
    """

    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum attempts (1 initial + N-1 retries)",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Base delay for exponential backoff",
    )
    max_delay_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=600.0,
        description="Maximum delay cap",
    )
    jitter_factor: float = Field(
        default=0.1,
        ge=0.0,
        le=0.5,
        description="Jitter factor for randomization",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "max_attempts": 5,
                "base_delay_seconds": 1.0,
                "max_delay_seconds": 60.0,
                "jitter_factor": 0.1,
            }
        }
    )


class AccountConfig(BaseModel):
    """A signed-in account.

    Attributes:
        owner: Local account id used to key the feed.
        host: Instance base URL.
        api_token: Access token (from environment variable).
    """

    owner: str = Field(..., min_length=1, max_length=200)
    host: str = Field(..., min_length=1)
    api_token: Optional[str] = Field(
        default=None, description="Access token from ${MISSKEY_TOKEN}"
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("host must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("api_token", mode="before")
    @classmethod
    def validate_token(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty or unsubstituted placeholders as unset."""
        if v is None or v == "" or (v.startswith("${") and v.endswith("}")):
            return None
        return v


class FeedConfig(BaseModel):
    """Paging and reconcile settings"""

    page_limit: int = Field(default=40, ge=1, le=100)
    reconcile_retry: RetryConfig = Field(
        default_factory=RetryConfig, description="Reconcile retry configuration"
    )
    stream_stable_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Uptime after which a dropped stream no longer counts toward backoff",
    )


class CacheConfig(BaseModel):
    """Latest-notification cache configuration"""

    enabled: bool = True
    cache_dir: str = "./cache"


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    json_output: bool = True


class NotefeedConfig(BaseModel):
    """Root configuration"""

    accounts: List[AccountConfig] = Field(default_factory=list)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("accounts")
    @classmethod
    def validate_unique_owners(cls, v: List[AccountConfig]) -> List[AccountConfig]:
        owners = [a.owner for a in v]
        if len(owners) != len(set(owners)):
            raise ValueError("account owners must be unique")
        return v

    def get_account(self, owner: str) -> Optional[AccountConfig]:
        for account in self.accounts:
            if account.owner == owner:
                return account
        return None
