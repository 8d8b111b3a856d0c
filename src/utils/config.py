"""Configuration management for the document-to-ledger pipeline.

Loads and validates YAML configuration with sensible defaults for
preprocessing, text-extraction providers, validation thresholds,
confidence scoring, duplicate detection, and the ledger store.
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PreprocessingConfig(BaseModel):
    """Configuration for the pluggable image preprocessing step."""

    enabled: bool = True
    deskew_enabled: bool = True
    denoise_enabled: bool = True
    binarize_enabled: bool = True
    denoise_strength: int = 10
    binarize_block_size: int = 31


class TesseractProviderConfig(BaseModel):
    """Settings for the local Tesseract OCR provider."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 6
    pdf_dpi: int = 300


class VisionLLMProviderConfig(BaseModel):
    """Settings for the vision-language model provider.

    The endpoint is expected to speak the OpenAI-compatible
    ``/chat/completions`` protocol with image content parts.
    """

    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    reported_confidence: float = 0.92
    prompt: str = (
        "Transcribe all text in this financial document exactly as printed. "
        "Keep one line per printed line and separate table columns with "
        "two or more spaces."
    )


class CloudOCRProviderConfig(BaseModel):
    """Settings for the cloud OCR provider (Google Vision REST API)."""

    endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    api_key: str | None = None
    default_confidence: float = 0.95


class ProvidersConfig(BaseModel):
    """Ordered text-extraction providers and their settings."""

    order: list[str] = Field(
        default_factory=lambda: ["tesseract", "vision_llm", "cloud_ocr"]
    )
    timeout_s: float = 30.0
    tesseract: TesseractProviderConfig = Field(default_factory=TesseractProviderConfig)
    vision_llm: VisionLLMProviderConfig = Field(default_factory=VisionLLMProviderConfig)
    cloud_ocr: CloudOCRProviderConfig = Field(default_factory=CloudOCRProviderConfig)


class ClassifierConfig(BaseModel):
    """Configuration for the rule-based document classifier."""

    fallback_confidence: float = 0.6
    filename_confidence: float = 0.95


class ValidationConfig(BaseModel):
    """Thresholds and tolerances for the GST validation engine."""

    b2b_threshold: float = 250000.0
    split_tolerance: float = 0.5
    arithmetic_tolerance: float = 1.0
    max_invoice_age_days: int = 365
    max_due_months: int = 6


class ScoringConfig(BaseModel):
    """Thresholds and field weights for confidence scoring."""

    auto_approve_threshold: float = 0.95
    needs_review_threshold: float = 0.85
    escalation_threshold: float = 0.5
    high_value_amount: float = 100000.0
    escalation_amount: float = 1000000.0
    field_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "vendor_gstin": 0.15,
            "customer_gstin": 0.10,
            "line_items": 0.25,
            "tax_calculations": 0.20,
            "grand_total": 0.15,
            "invoice_number": 0.05,
            "invoice_date": 0.05,
            "hsn_codes": 0.05,
        }
    )
    default_field_weight: float = 0.05
    provider_weight: float = 0.05
    classification_weight: float = 0.05


class DuplicateConfig(BaseModel):
    """Thresholds for duplicate invoice detection."""

    reject_threshold: float = 0.95
    review_threshold: float = 0.7
    fuzzy_threshold: float = 0.8


class LedgerConfig(BaseModel):
    """Persistence and chart-of-accounts settings for journal generation."""

    database_url: str = "sqlite:///:memory:"
    balance_tolerance: float = 0.01
    receivable_account: str = "Accounts Receivable"
    sales_account: str = "Sales"
    payable_account: str = "Accounts Payable"
    purchase_account: str = "Purchases"
    round_off_account: str = "Round Off"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    duplicates: DuplicateConfig = Field(default_factory=DuplicateConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    storage_root: str = "data/documents"
    log_level: str = "INFO"


_ENV_OVERRIDES: list[tuple[str, str]] = [
    ("DOCLEDGER_VISION_API_KEY", "vision_llm"),
    ("DOCLEDGER_CLOUD_OCR_API_KEY", "cloud_ocr"),
]


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    """Fill provider API keys from the environment when not set in YAML.

    Args:
        config: Configuration loaded from file or defaults.

    Returns:
        The same configuration object with API keys filled in.
    """
    for env_name, provider in _ENV_OVERRIDES:
        value = os.environ.get(env_name)
        settings = getattr(config.providers, provider)
        if value and not settings.api_key:
            settings.api_key = value
            logger.debug("API key for %s taken from %s", provider, env_name)
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return _apply_env_overrides(AppConfig(**raw))

    logger.info("No config file found at %s, using defaults", path)
    return _apply_env_overrides(AppConfig())
