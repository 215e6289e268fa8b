"""
Centralized configuration with environment variable overrides.

Studio details, booking rules, quality thresholds and model settings
all live here. Strategies and services read them from ``settings``
instead of carrying their own constants.
"""

import logging
import os
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from studio_agent.logging_context import install_customer_id_filter

load_dotenv()

logger = logging.getLogger(__name__)

CLASSIFIER_MODES = ("llm", "rules")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class BusinessConfig:
    """Studio profile shown to customers and used for slot generation."""

    name: str = os.getenv("STUDIO_NAME", "Fiesta House Attire maternity photoshoot studio")
    hours: str = os.getenv("STUDIO_HOURS", "Monday-Saturday: 9:00 AM - 6:00 PM")
    location: str = os.getenv("STUDIO_LOCATION", "4th Avenue Towers, 13th Floor, Ngong Road, Nairobi")
    phone: str = os.getenv("STUDIO_PHONE", "0720 111928")
    email: str = os.getenv("STUDIO_EMAIL", "info@fiesta-house.com")
    website: str = os.getenv("STUDIO_WEBSITE", "https://fiesta-house.com")
    timezone: str = os.getenv("STUDIO_TIMEZONE", "Africa/Nairobi")
    day_start_hour: int = _safe_int("BUSINESS_DAY_START_HOUR", "9")
    day_end_hour: int = _safe_int("BUSINESS_DAY_END_HOUR", "17")
    currency: str = os.getenv("CURRENCY_LABEL", "KES")


@dataclass(frozen=True)
class ModelConfig:
    """Language-model settings for classification, extraction and scoring."""

    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    extraction_model: str = os.getenv("EXTRACTION_MODEL", "gpt-4o-mini")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.3")
    improvement_temperature: float = _safe_float("IMPROVEMENT_TEMPERATURE", "0.7")
    request_timeout_sec: float = _safe_float("LLM_TIMEOUT", "20.0")
    api_key_env: str = os.getenv("LLM_API_KEY_ENV", "OPENAI_API_KEY")


@dataclass(frozen=True)
class BookingConfig:
    """Booking flow limits and scheduling granularity."""

    history_limit: int = _safe_int("HISTORY_LIMIT", "6")
    slot_granularity_minutes: int = _safe_int("SLOT_GRANULARITY_MINUTES", "30")
    default_duration_minutes: int = _safe_int("DEFAULT_DURATION_MINUTES", "60")
    max_suggestions: int = _safe_int("MAX_SLOT_SUGGESTIONS", "5")
    default_deposit: int = _safe_int("DEFAULT_DEPOSIT", "2000")
    package_cache_ttl_sec: float = _safe_float("PACKAGE_CACHE_TTL", "300")
    max_tokens_per_day: int = _safe_int("MAX_TOKENS_PER_DAY", "100000")


@dataclass(frozen=True)
class QualityConfig:
    """Response quality gate thresholds (scores are on a 0-10 scale)."""

    min_helpfulness: float = _safe_float("MIN_HELPFULNESS", "7")
    min_accuracy: float = _safe_float("MIN_ACCURACY", "8")
    min_empathy: float = _safe_float("MIN_EMPATHY", "6")
    min_clarity: float = _safe_float("MIN_CLARITY", "7")
    min_overall: float = _safe_float("MIN_OVERALL", "7")
    escalation_threshold: float = _safe_float("QUALITY_ESCALATION_THRESHOLD", "5")
    min_length: int = _safe_int("MIN_RESPONSE_LENGTH", "10")
    max_length: int = _safe_int("MAX_RESPONSE_LENGTH", "2000")
    generic_max_length: int = _safe_int("GENERIC_RESPONSE_MAX_LENGTH", "50")


@dataclass(frozen=True)
class GuardrailConfig:
    """Safety triggers that force a human handoff."""

    frustrated_turn_threshold: int = _safe_int("FRUSTRATED_TURN_THRESHOLD", "3")
    max_conversation_length: int = _safe_int("MAX_CONVERSATION_LENGTH", "15")
    session_gap_minutes: int = _safe_int("SESSION_GAP_MINUTES", "240")
    classifier_mode: str = os.getenv("CLASSIFIER_MODE", "llm")


@dataclass(frozen=True)
class LearningConfig:
    """Thresholds for pattern mining and relationship promotion."""

    faq_min_occurrences: int = _safe_int("FAQ_MIN_OCCURRENCES", "3")
    kb_success_rate: float = _safe_float("KB_SUCCESS_RATE", "0.8")
    vip_lifetime_value: float = _safe_float("VIP_LIFETIME_VALUE", "50000")
    summary_window: int = _safe_int("SUMMARY_WINDOW", "20")
    short_conversation_turns: int = _safe_int("SHORT_CONVERSATION_TURNS", "3")
    long_conversation_turns: int = _safe_int("LONG_CONVERSATION_TURNS", "10")
    failure_reason_share: float = _safe_float("FAILURE_REASON_SHARE", "0.3")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    agent_name: str = os.getenv("AGENT_NAME", "studio-booking-agent")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    for temp_name, temp_value in [
        ("LLM_TEMPERATURE", config.model.llm_temperature),
        ("IMPROVEMENT_TEMPERATURE", config.model.improvement_temperature),
    ]:
        if not 0.0 <= temp_value <= 2.0:
            raise ValueError(f"{temp_name} must be between 0.0 and 2.0, got {temp_value}")

    try:
        ZoneInfo(config.business.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown STUDIO_TIMEZONE: {config.business.timezone!r}") from None

    biz = config.business
    if not 0 <= biz.day_start_hour < biz.day_end_hour <= 24:
        raise ValueError(
            "Business day must satisfy 0 <= start < end <= 24, "
            f"got {biz.day_start_hour}-{biz.day_end_hour}"
        )

    for count_name, count_value in [
        ("HISTORY_LIMIT", config.booking.history_limit),
        ("SLOT_GRANULARITY_MINUTES", config.booking.slot_granularity_minutes),
        ("DEFAULT_DURATION_MINUTES", config.booking.default_duration_minutes),
        ("MAX_SLOT_SUGGESTIONS", config.booking.max_suggestions),
        ("MAX_TOKENS_PER_DAY", config.booking.max_tokens_per_day),
        ("FRUSTRATED_TURN_THRESHOLD", config.guardrails.frustrated_turn_threshold),
        ("MAX_CONVERSATION_LENGTH", config.guardrails.max_conversation_length),
        ("SESSION_GAP_MINUTES", config.guardrails.session_gap_minutes),
        ("FAQ_MIN_OCCURRENCES", config.learning.faq_min_occurrences),
        ("SUMMARY_WINDOW", config.learning.summary_window),
        ("MIN_RESPONSE_LENGTH", config.quality.min_length),
    ]:
        if count_value < 1:
            raise ValueError(f"{count_name} must be >= 1, got {count_value}")

    if config.booking.default_deposit < 0:
        raise ValueError(f"DEFAULT_DEPOSIT must be >= 0, got {config.booking.default_deposit}")
    if config.booking.package_cache_ttl_sec < 0:
        raise ValueError(
            f"PACKAGE_CACHE_TTL must be >= 0, got {config.booking.package_cache_ttl_sec}"
        )

    q = config.quality
    for score_name, score_value in [
        ("MIN_HELPFULNESS", q.min_helpfulness),
        ("MIN_ACCURACY", q.min_accuracy),
        ("MIN_EMPATHY", q.min_empathy),
        ("MIN_CLARITY", q.min_clarity),
        ("MIN_OVERALL", q.min_overall),
        ("QUALITY_ESCALATION_THRESHOLD", q.escalation_threshold),
    ]:
        if not 0.0 <= score_value <= 10.0:
            raise ValueError(f"{score_name} must be between 0 and 10, got {score_value}")
    if q.max_length <= q.min_length:
        raise ValueError(
            f"MAX_RESPONSE_LENGTH must exceed MIN_RESPONSE_LENGTH, got {q.max_length}"
        )

    for rate_name, rate_value in [
        ("KB_SUCCESS_RATE", config.learning.kb_success_rate),
        ("FAILURE_REASON_SHARE", config.learning.failure_reason_share),
    ]:
        if not 0.0 <= rate_value <= 1.0:
            raise ValueError(f"{rate_name} must be between 0.0 and 1.0, got {rate_value}")

    if config.guardrails.classifier_mode not in CLASSIFIER_MODES:
        raise ValueError(
            f"CLASSIFIER_MODE must be one of {CLASSIFIER_MODES}, "
            f"got {config.guardrails.classifier_mode!r}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] [%(customer_id)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_customer_id_filter()
    logger.info("Configuration loaded for '%s'", config.business.name)
    return config


# Singleton instance
settings = load_config()
