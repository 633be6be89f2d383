"""Configuration management for the contract approvals service."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from contract_approvals.models import ApproverLimits


class Settings(BaseSettings):
    """Contract approvals configuration.

    Values are read from the environment (and an optional ``.env`` file);
    field names map to upper-case variables, e.g. ``ADMIN_EMAIL``.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Service identity
    service_name: str = "contract-approvals"
    service_version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8014

    # Notifications
    admin_email: str = "admin@example.com"
    app_url: str = "http://localhost:8014"

    # Approver slot limits
    legal_approver_limit: int = 2
    management_approver_limit: int = 5
    final_approver_limit: int = 1

    # Load the sample contracts into the in-memory store on startup
    seed_sample_data: bool = False

    @property
    def json_logs(self) -> bool:
        """Emit JSON logs outside of local development and tests."""
        return self.environment not in ("development", "testing")

    def approver_limits(self) -> ApproverLimits:
        """Default slot capacities for contracts without their own override."""
        return ApproverLimits(
            legal=self.legal_approver_limit,
            management=self.management_approver_limit,
            approver=self.final_approver_limit,
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
