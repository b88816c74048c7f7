from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from playbook_review.models.configs import ModelSelection, ReviewConfig

load_dotenv(override=False)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", "off"}


class Settings(BaseModel):
    """Runtime configuration for the review API and CLI."""

    environment: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "dev"))
    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    generator_backend: str = Field(default_factory=lambda: os.getenv("GENERATOR_BACKEND", "openai"))
    mapping_model: str = Field(default_factory=lambda: os.getenv("MAPPING_MODEL", "o3-mini"))
    amendment_model: str = Field(default_factory=lambda: os.getenv("AMENDMENT_MODEL", "o3-mini"))
    instruction_model: str = Field(default_factory=lambda: os.getenv("INSTRUCTION_MODEL", "gpt-4o"))
    batch_size: int = Field(default_factory=lambda: int(os.getenv("REVIEW_BATCH_SIZE", "10")), gt=0)
    max_concurrent: int = Field(default_factory=lambda: int(os.getenv("REVIEW_MAX_CONCURRENT", "3")), gt=0)
    enable_second_pass: bool = Field(default_factory=lambda: _env_flag("REVIEW_SECOND_PASS", "true"))
    generation_timeout_seconds: float | None = Field(
        default_factory=lambda: float(os.getenv("GENERATION_TIMEOUT_SECONDS", "180"))
    )
    reject_duplicate_reruns: bool = Field(default_factory=lambda: _env_flag("REJECT_DUPLICATE_RERUNS", "false"))
    job_ttl_seconds: int | None = Field(default_factory=lambda: int(os.getenv("JOB_TTL_SECONDS", "3600")))
    cors_origins: List[str] = Field(
        default_factory=lambda: os.getenv("CORS_ORIGINS", "http://localhost:5173")
    )
    sse_heartbeat_interval: float = Field(default_factory=lambda: float(os.getenv("SSE_HEARTBEAT_SECONDS", "15")))

    model_config = {
        "frozen": True,
        "validate_default": True,
    }

    @field_validator("generator_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        normalized = value.strip().lower().replace("_", "-")
        if normalized not in {"openai", "llama-index"}:
            raise ValueError("GENERATOR_BACKEND must be 'openai' or 'llama-index'")
        return normalized

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> List[str]:
        if value is None:
            return ["http://localhost:5173"]
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(value)

    @field_validator("generation_timeout_seconds", "job_ttl_seconds", mode="before")
    @classmethod
    def _non_positive_disables(cls, value: object) -> float | None:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if number > 0 else None

    def review_config(self) -> ReviewConfig:
        return ReviewConfig(
            batch_size=self.batch_size,
            max_concurrent=self.max_concurrent,
            enable_second_pass=self.enable_second_pass,
            timeout_seconds=self.generation_timeout_seconds,
            reject_duplicate_reruns=self.reject_duplicate_reruns,
            models=ModelSelection(
                mapping=self.mapping_model,
                amendment=self.amendment_model,
                instruction=self.instruction_model,
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance for FastAPI dependency injection."""

    return Settings()


__all__ = ["Settings", "get_settings"]
