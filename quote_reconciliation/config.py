"""
Configuration for the quote reconciliation engine.
"""

# Load environment variables FIRST
from dotenv import load_dotenv
load_dotenv()

import os
from typing import Optional


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Base configuration."""

    # Extraction provider (external document-understanding service)
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "gemini")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gemini-1.5-flash")
    LLM_FALLBACK_MODEL: str = os.getenv("LLM_FALLBACK_MODEL", "gemini-1.5-pro")
    LLM_MOCK_MODE: bool = _env_flag("LLM_MOCK_MODE")
    LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", os.getenv("LLM_API_KEY", ""))
    LLM_API_BASE: Optional[str] = os.getenv("LLM_API_BASE", None)
    LLM_TEMPERATURE: float = 0.1
    LLM_MAX_TOKENS: int = 4000  # quotes can carry dozens of lines

    # Matcher scoring (points per channel)
    SKU_EXACT_SCORE: int = 70
    SKU_PARTIAL_SCORE: int = 50
    BRAND_BONUS: int = 15
    NAME_MULTI_WORD_SCORE: int = 50
    NAME_SHORT_SINGLE_WORD_SCORE: int = 40
    NAME_SINGLE_WORD_SCORE: int = 25
    SHORT_NAME_MAX_TOKENS: int = 3
    MIN_TOKEN_LENGTH: int = 3

    # Matcher classification thresholds
    MATCHED_THRESHOLD: int = 50
    IDENTIFIER_ACCEPT_THRESHOLD: int = 25
    NAME_ACCEPT_THRESHOLD: int = 35

    # Suggestions for unmatched extracted items
    SUGGESTION_WORD_SCORE: int = 20
    SUGGESTION_MAX_CONFIDENCE: int = 60
    SUGGESTION_LIMIT: int = 5

    # Discrepancy analysis
    TOTAL_MISMATCH_TOLERANCE: float = float(os.getenv("TOTAL_MISMATCH_TOLERANCE", "1.00"))
    SUPPLIER_NAME_MATCH_THRESHOLD: float = 0.85
    QUANTITY_VARIANCE_HIGH: float = 0.20
    QUANTITY_VARIANCE_MEDIUM: float = 0.10
    TOTAL_VARIANCE_HIGH: float = 0.10

    # Acceptance and ordering
    DEFAULT_MARKUP_PERCENT: float = float(os.getenv("DEFAULT_MARKUP_PERCENT", "25"))
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "CAD")
    ORDER_NUMBER_PREFIX: str = "PO"
    ORDER_NUMBER_WIDTH: int = 4

    # Storage
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///quote_reconciliation.db")
    DATABASE_ECHO: bool = _env_flag("DATABASE_ECHO")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: str = os.getenv("LOG_FILE", "quote_reconciliation.log")

    # API Configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_DEBUG: bool = _env_flag("API_DEBUG")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration."""
        if cls.LLM_PROVIDER not in ["openai", "gemini", "mock"]:
            raise ValueError(f"Invalid LLM_PROVIDER: {cls.LLM_PROVIDER}")

        if cls.IDENTIFIER_ACCEPT_THRESHOLD > cls.MATCHED_THRESHOLD:
            raise ValueError("IDENTIFIER_ACCEPT_THRESHOLD must not exceed MATCHED_THRESHOLD")

        if cls.NAME_ACCEPT_THRESHOLD > cls.MATCHED_THRESHOLD:
            raise ValueError("NAME_ACCEPT_THRESHOLD must not exceed MATCHED_THRESHOLD")

    @classmethod
    def validate_provider_credentials(cls) -> None:
        """Check credentials for the extraction provider. Called when a client is built."""
        if cls.LLM_MOCK_MODE or cls.LLM_PROVIDER == "mock":
            return

        if cls.LLM_PROVIDER == "openai" and not cls.LLM_API_KEY:
            raise ValueError("LLM_API_KEY must be set for OpenAI provider")

        if cls.LLM_PROVIDER == "gemini" and not cls.GOOGLE_API_KEY:
            raise ValueError("GOOGLE_API_KEY must be set for Gemini provider")


class DevelopmentConfig(Config):
    """Development configuration."""
    LOG_LEVEL = "DEBUG"
    API_DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    LOG_LEVEL = "INFO"
    API_DEBUG = False


class TestConfig(Config):
    """Test configuration."""
    LLM_TEMPERATURE = 0.0
    LLM_MOCK_MODE = True
    LOG_LEVEL = "DEBUG"
    LOG_FILE = ""
    DATABASE_URL = "sqlite:///:memory:"


def get_config(env: str = None) -> Config:
    """Get configuration based on environment."""
    if env is None:
        env = os.getenv("ENV", "development").lower()

    if env == "production":
        config = ProductionConfig()
    elif env == "test":
        config = TestConfig()
    else:
        config = DevelopmentConfig()

    # Validate configuration on creation
    config.validate()
    return config
