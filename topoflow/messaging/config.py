"""
Configuration settings for the messaging workflow.
"""
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SettlePolicy(BaseModel):
    """
    Bounded polling used to wait for routed messages to become visible.

    An empty receive counts as "not yet visible" and is retried with
    exponential backoff until ``max_attempts`` receives were made.
    """
    initial_delay: float = Field(default=2.0, ge=0)
    max_attempts: int = Field(default=4, ge=1)
    backoff_initial: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    backoff_max: float = Field(default=8.0, ge=0)
    receive_wait_seconds: int = Field(default=5, ge=0, le=20)
    max_batches: int = Field(default=10, ge=1)

    def delays(self):
        """Yield the sleep before each retry after an empty receive"""
        delay = self.backoff_initial
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.backoff_max)
            delay *= self.backoff_factor


class WorkflowNames(BaseModel):
    """Resource names used by the demonstration workflow"""
    queue: str = "demo-queue"
    topic: str = "demo-topic"
    bus: str = "demo-bus"
    sns_rule: str = "sns-target-rule"
    sqs_rule: str = "sqs-target-rule"
    source: str = "com.example.app"


class BatchSettings(BaseModel):
    """Receive parameters of the workflow's queue steps"""
    inspect_max_messages: int = Field(default=5, ge=1, le=10)
    inspect_wait_seconds: int = Field(default=10, ge=0, le=20)
    delete_max_messages: int = Field(default=2, ge=1, le=10)
    delete_wait_seconds: int = Field(default=5, ge=0, le=20)
    drain_max_messages: int = Field(default=10, ge=1, le=10)


class Settings(BaseSettings):
    """
    Workflow configuration loaded from environment variables.

    Nested models are set with a double underscore, e.g.
    ``TOPOFLOW_SETTLE__INITIAL_DELAY=0.5``.
    """
    model_config = SettingsConfigDict(
        env_prefix="TOPOFLOW_",
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Backend selection
    backend: Literal["aws", "memory"] = "aws"

    # Connection parameters handed to the backend clients
    endpoint_url: Optional[str] = "http://localhost:4566"
    region: str = "us-east-1"
    access_key_id: str = "test"
    secret_access_key: str = "test"

    # Per-call bound in seconds
    call_timeout: float = Field(default=30.0, gt=0)

    log_level: str = "INFO"

    settle: SettlePolicy = Field(default_factory=SettlePolicy)
    names: WorkflowNames = Field(default_factory=WorkflowNames)
    batches: BatchSettings = Field(default_factory=BatchSettings)

    @field_validator("endpoint_url")
    @classmethod
    def empty_endpoint_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("log_level")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        return v.upper()
