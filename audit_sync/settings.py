from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="NODE_ENV")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    table_name: str | None = Field(default=None, validation_alias="AUDIT_SYNC_TABLE_NAME")
    # Local DynamoDB (e.g. http://localhost:8000); unset means the regional AWS endpoint.
    dynamodb_endpoint_url: str | None = Field(default=None, validation_alias="DYNAMODB_ENDPOINT_URL")

    # Opportunity upsert
    # Comma-separated statuses an opportunity may be in to be reused by a new audit run.
    active_opportunity_statuses: str = Field(
        default="NEW,IN_PROGRESS", validation_alias="ACTIVE_OPPORTUNITY_STATUSES"
    )
    opportunity_origin: str = Field(default="AUTOMATION", validation_alias="OPPORTUNITY_ORIGIN")

    # Suggestion sync
    sync_actor: str = Field(default="system", validation_alias="SYNC_ACTOR")
    sync_log_sample_size: int = Field(default=10, validation_alias="SYNC_LOG_SAMPLE_SIZE")
    sync_max_error_details: int = Field(default=5, validation_alias="SYNC_MAX_ERROR_DETAILS")
    # DynamoDB BatchWriteItem accepts at most 25 items per request.
    suggestion_batch_size: int = Field(default=25, validation_alias="SUGGESTION_BATCH_SIZE")

    # ---- helpers / derived flags ----
    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def active_opportunity_status_list(self) -> list[str]:
        raw = str(self.active_opportunity_statuses or "")
        out = [s.strip().upper() for s in raw.split(",") if s.strip()]
        return out or ["NEW"]

    @property
    def effective_batch_size(self) -> int:
        return max(1, min(25, int(self.suggestion_batch_size or 25)))

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Local runs and tests may work against an injected store without a table.
        """
        if not self.is_production:
            return

        missing: list[str] = []
        if not self.table_name:
            missing.append("AUDIT_SYNC_TABLE_NAME")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        return {
            "environment": self.normalized_environment,
            "log_level": self.log_level,
            "aws": {
                "aws_region": self.aws_region,
                "table_name": self.table_name,
                "dynamodb_endpoint_url": self.dynamodb_endpoint_url,
            },
            "sync": {
                "active_opportunity_statuses": self.active_opportunity_status_list,
                "opportunity_origin": self.opportunity_origin,
                "sync_actor": self.sync_actor,
                "sync_log_sample_size": self.sync_log_sample_size,
                "sync_max_error_details": self.sync_max_error_details,
                "suggestion_batch_size": self.effective_batch_size,
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s

