"""Pipeline configuration.

All fixed constants used by extraction, matching and reconciliation live in
PipelineConfig so they can be tuned without touching the algorithms.

Values are read from CFDI_* environment variables; a .env file at the repo
root (or the path passed to load_config) is loaded first when present.

Usage:
    from core.config import load_config

    config = load_config()
    print(config.name_match_threshold)  # 0.8
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


REPO_ROOT = Path(__file__).resolve().parents[1]
ENV_PREFIX = "CFDI_"


class PipelineConfig(BaseModel):
    """Tunable parameters for the ingestion pipeline."""

    # Client matching
    name_match_threshold: float = Field(
        default=0.8,
        description="Jaccard similarity a name candidate must exceed",
    )
    tax_id_match_confidence: int = Field(
        default=95,
        description="Confidence reported for an exact tax-id match",
    )
    name_search_limit: int = Field(default=5, description="Max name-search candidates")

    # Fallback text extraction
    text_base_confidence: int = Field(default=70)
    strict_rfc_bonus: int = Field(default=15)
    field_presence_bonus: int = Field(default=5)
    min_marker_count: int = Field(
        default=4,
        description="CFDI marker phrases required before text extraction runs",
    )
    min_text_length: int = Field(default=100, description="Min decoded text length")

    # Record defaults
    default_currency: str = Field(default="MXN")
    default_country: str = Field(default="México")
    placeholder_email_domain: str = Field(default="cliente-temporal.mx")
    invoice_due_days: int = Field(default=30)
    system_actor_id: str = Field(
        default="system",
        description="Owner recorded on invoices created by the pipeline",
    )

    # Batch sweeps
    batch_page_size: int = Field(default=50)

    # Collaborators
    db_path: Path = Field(default=REPO_ROOT / "invoice_intake.db")
    blob_root: Path = Field(default=REPO_ROOT / "blobs")

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)


DEFAULT_CONFIG = PipelineConfig()


def load_config(env_file: Optional[Path] = None) -> PipelineConfig:
    """Build a PipelineConfig from the environment.

    Args:
        env_file: Optional .env file (default: REPO_ROOT/.env)

    Returns:
        PipelineConfig with overrides applied
    """
    env_path = env_file or REPO_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    overrides = {}
    for name in PipelineConfig.model_fields:
        value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if value is not None and value != "":
            overrides[name] = value

    return PipelineConfig.model_validate(overrides)
