from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DATA_DIR = Path(__file__).parent / "data"

DEFAULT_ORGANIZATION_CONTEXT = """\
ABOUT KEBOOLA:
- Data platform company helping finance teams automate their data workflows
- Key product: Financial Intelligence - AI solution for multi-entity Group CFOs
- Also: Data Engineering Agents for end-to-end workflow building
- Target customers: Mid-market "boomer" companies ($100M-$1B revenue, 200-5000 employees)
- Industries: Manufacturing, Logistics, Retail, Hospitality, Consumer Goods
- Problem we solve: Finance teams drowning in Excel, manual consolidation, legacy systems

FOUNDER/CEO:
- Pavel Doležal - CEO & Co-founder
- Expert in data platforms, enterprise data architecture
- Background: Built data solutions for enterprise companies
- Speaking style: Practical, results-focused, can speak to both technical and business audiences
- Key topics: Financial data automation, AI for CFOs, breaking free from Excel hell

KEY STORIES WE CAN TELL:
1. "From 30-day close to 5-day close" - How CFOs are using AI to transform their financial reporting
2. "The hidden cost of Excel" - Why mid-market CFOs are losing millions to manual data work
3. "AI Co-pilots for Finance" - How AI agents are changing data engineering for finance teams
4. "Multi-entity nightmare" - How group CFOs manage 50+ entities with legacy systems
5. "Data democratization for finance" - Letting finance teams self-serve without IT bottleneck

COMPETITIVE POSITIONING:
- NOT competing with: Snowflake, Databricks, dbt (we're higher level, business-user focused)
- Different from: Anaplan, Workday (we're more flexible, less rigid)
- Unique angle: Bridge between technical data engineering and business finance users
"""

DEFAULT_TARGET_AUDIENCE = """\
TARGET AUDIENCE WE WANT TO REACH:
- CFOs, Controllers, VP Finance at mid-market companies
- CTOs at established "boomer" companies (not startups)
- Companies: $100M-$1B revenue, 200-5000 employees, 20+ years old
- Industries: Manufacturing, Logistics, Retail, Hospitality
"""

@dataclass(frozen=True)
class OrganizationContext:
    """Positioning of the pitching party, shared by every prompt."""
    organization: str
    speaker: str
    text: str
    target_audience: str = DEFAULT_TARGET_AUDIENCE


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    gemini_api_key: str = Field(default="", validation_alias=AliasChoices("GEMINI_API_KEY", "gemini_api_key"))
    gemini_model: str = Field(
        default="gemini-3-pro-preview", validation_alias=AliasChoices("GEMINI_MODEL", "gemini_model"),
    )
    gemini_api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        validation_alias=AliasChoices("GEMINI_API_BASE", "gemini_api_base"),
    )
    request_timeout_seconds: float = Field(
        default=60, validation_alias=AliasChoices("PODSCOUT_REQUEST_TIMEOUT", "request_timeout_seconds"),
    )
    discovery_budget_seconds: float = Field(
        default=300, validation_alias=AliasChoices("PODSCOUT_DISCOVERY_BUDGET", "discovery_budget_seconds"),
    )
    discovery_delay_seconds: float = Field(
        default=0.5, validation_alias=AliasChoices("PODSCOUT_DISCOVERY_DELAY", "discovery_delay_seconds"),
    )
    discovery_limit: int = Field(
        default=8, validation_alias=AliasChoices("PODSCOUT_DISCOVERY_LIMIT", "discovery_limit"),
    )

    database_url: str = Field(
        default=f"sqlite:///{DATA_DIR / 'podscout.db'}",
        validation_alias=AliasChoices("DATABASE_URL", "PODSCOUT_DATABASE_URL", "database_url"),
    )

    supabase_url: str = Field(default="", validation_alias=AliasChoices("SUPABASE_URL", "supabase_url"))
    supabase_anon_key: str = Field(default="", validation_alias=AliasChoices("SUPABASE_ANON_KEY", "supabase_anon_key"))
    allowed_email_domains: Annotated[list[str], NoDecode] = Field(
        default=["keboola.com", "keboola.consulting"],
        validation_alias=AliasChoices("PODSCOUT_ALLOWED_DOMAINS", "allowed_email_domains"),
    )
    # None means "on exactly when SUPABASE_URL is set"
    auth_enabled: bool | None = Field(
        default=None, validation_alias=AliasChoices("PODSCOUT_AUTH_ENABLED", "auth_enabled"),
    )

    organization_name: str = Field(default="Keboola", validation_alias=AliasChoices("PODSCOUT_ORG_NAME", "organization_name"))
    speaker_name: str = Field(
        default="Pavel Doležal", validation_alias=AliasChoices("PODSCOUT_SPEAKER_NAME", "speaker_name"),
    )
    context_file: Path | None = Field(
        default=None, validation_alias=AliasChoices("PODSCOUT_CONTEXT_FILE", "context_file"),
    )
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("PODSCOUT_LOG_LEVEL", "log_level"))

    @field_validator("allowed_email_domains", mode="before")
    @classmethod
    def _split_domains(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        return [item.strip().lower() for item in value if item and item.strip()]

    @field_validator("supabase_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _default_auth(self) -> Settings:
        if self.auth_enabled is None:
            self.auth_enabled = bool(self.supabase_url)
        return self

    def organization_context(self) -> OrganizationContext:
        text = DEFAULT_ORGANIZATION_CONTEXT
        if self.context_file is not None:
            text = self.context_file.read_text(encoding="utf-8")
        return OrganizationContext(
            organization=self.organization_name,
            speaker=self.speaker_name,
            text=text,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
