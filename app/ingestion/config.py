"""Configuration for the batch ingestion worker."""

from pydantic import BaseModel, Field

from app.core.config import Settings, get_settings


class RetryConfig(BaseModel):
    """Configuration for retry behavior with exponential backoff."""

    max_attempts: int = Field(default=3, ge=1, description="Maximum attempts")
    initial_delay: float = Field(
        default=5.0, ge=0, description="Initial delay in seconds"
    )
    max_delay: float = Field(default=60.0, gt=0, description="Maximum delay in seconds")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: bool = Field(
        default=True, description="Randomize delays so retries do not line up"
    )


class IngestionConfig(BaseModel):
    """Batch worker configuration."""

    chunk_size: int = Field(
        default=1000, ge=1, description="Rows inserted per flush"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    actor: str = Field(
        default="system", description="Name recorded as changed_by in audit entries"
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestionConfig":
        return cls(
            chunk_size=settings.RECONCILIATION_CHUNK_SIZE,
            retry=RetryConfig(
                max_attempts=settings.WORKER_RETRY_ATTEMPTS,
                initial_delay=settings.WORKER_RETRY_DELAY,
            ),
        )


def get_ingestion_config() -> IngestionConfig:
    """Build the worker configuration from application settings."""
    return IngestionConfig.from_settings(get_settings())
