"""
Configuration management for the autonomous prediction market trader.

This module handles all configuration loading from environment variables
and provides type-safe access to configuration values throughout the application.
"""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Centralized configuration class for the trader.

    All configuration values are loaded from environment variables with
    sensible defaults where appropriate. API keys and the execution gateway
    credentials must be provided via environment variables for security.
    """

    # API Keys (optional - missing keys degrade the matching source)
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    BRAVE_API_KEY: Optional[str] = os.getenv("BRAVE_API_KEY")
    TWITTER_BEARER_TOKEN: Optional[str] = os.getenv("TWITTER_BEARER_TOKEN")

    # Polymarket Configuration
    POLYMARKET_GAMMA_URL: str = os.getenv(
        "POLYMARKET_GAMMA_URL",
        "https://gamma-api.polymarket.com"
    )

    # Intelligence source endpoints
    BRAVE_SEARCH_URL: str = os.getenv(
        "BRAVE_SEARCH_URL",
        "https://api.search.brave.com/res/v1/web/search"
    )
    TWITTER_SEARCH_URL: str = os.getenv(
        "TWITTER_SEARCH_URL",
        "https://api.twitter.com/2/tweets/search/recent"
    )
    REDDIT_SEARCH_URL: str = os.getenv(
        "REDDIT_SEARCH_URL",
        "https://www.reddit.com/search.json"
    )
    REDDIT_USER_AGENT: str = os.getenv("REDDIT_USER_AGENT", "PredictionMarketTrader/1.0")

    # AI Model Configuration
    CLAUDE_MODEL: str = os.getenv("CLAUDE_MODEL", "claude-3-5-sonnet-20241022")
    CLAUDE_TEMPERATURE: float = float(os.getenv("CLAUDE_TEMPERATURE", "0.2"))
    CLAUDE_MAX_TOKENS: int = int(os.getenv("CLAUDE_MAX_TOKENS", "1024"))
    LLM_DECISIONS_ENABLED: bool = _env_bool("LLM_DECISIONS_ENABLED", "true")

    # Execution backend (JSON-RPC gateway to the on-chain wallet)
    EXECUTION_BACKEND_URL: Optional[str] = os.getenv("EXECUTION_BACKEND_URL")
    EXECUTION_BACKEND_API_KEY: Optional[str] = os.getenv("EXECUTION_BACKEND_API_KEY")
    EXCHANGE_CONTRACT_ADDRESS: str = os.getenv(
        "EXCHANGE_CONTRACT_ADDRESS",
        "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
    )
    COLLATERAL_TOKEN: str = os.getenv("COLLATERAL_TOKEN", "USDC")
    DRY_RUN: bool = _env_bool("DRY_RUN", "true")

    # Security limits (currency units)
    MAX_SINGLE_TRADE: float = float(os.getenv("MAX_SINGLE_TRADE", "100.0"))
    MAX_DAILY_SPEND: float = float(os.getenv("MAX_DAILY_SPEND", "300.0"))
    MAX_CONCURRENT_TRADES: int = int(os.getenv("MAX_CONCURRENT_TRADES", "3"))

    # Decision engine
    CONFIDENCE_THRESHOLD: int = int(os.getenv("CONFIDENCE_THRESHOLD", "70"))
    KELLY_FRACTION: float = float(os.getenv("KELLY_FRACTION", "0.25"))
    MIN_LIQUIDITY_USD: float = float(os.getenv("MIN_LIQUIDITY_USD", "1000.0"))
    MIN_VOLUME_24H_USD: float = float(os.getenv("MIN_VOLUME_24H_USD", "500.0"))
    MAX_TIME_TO_CLOSE_HOURS: float = float(os.getenv("MAX_TIME_TO_CLOSE_HOURS", "72"))
    MAX_SPREAD: float = float(os.getenv("MAX_SPREAD", "0.05"))

    # Signal cache and circuit breakers
    SIGNAL_CACHE_TTL_SECONDS: float = float(os.getenv("SIGNAL_CACHE_TTL_SECONDS", "300"))
    SIGNAL_CACHE_MAX_ENTRIES: int = int(os.getenv("SIGNAL_CACHE_MAX_ENTRIES", "100"))
    BREAKER_FAILURE_THRESHOLD: int = int(os.getenv("BREAKER_FAILURE_THRESHOLD", "5"))
    BREAKER_RECOVERY_SECONDS: float = float(os.getenv("BREAKER_RECOVERY_SECONDS", "300"))
    SOURCE_MAX_RETRIES: int = int(os.getenv("SOURCE_MAX_RETRIES", "2"))
    SOURCE_RETRY_DELAY: float = float(os.getenv("SOURCE_RETRY_DELAY", "1.0"))

    # Execution retries and confirmation polling (seconds)
    EXECUTION_MAX_RETRIES: int = int(os.getenv("EXECUTION_MAX_RETRIES", "3"))
    EXECUTION_RETRY_DELAY: float = float(os.getenv("EXECUTION_RETRY_DELAY", "5"))
    CONFIRMATION_TIMEOUT: float = float(os.getenv("CONFIRMATION_TIMEOUT", "300"))
    CONFIRMATION_POLL_INTERVAL: float = float(os.getenv("CONFIRMATION_POLL_INTERVAL", "10"))
    CONFIRMATION_ERROR_INTERVAL: float = float(os.getenv("CONFIRMATION_ERROR_INTERVAL", "5"))

    # Autonomous loop
    LOOP_INTERVAL_MINUTES: int = int(os.getenv("LOOP_INTERVAL_MINUTES", "30"))
    MARKETS_TO_DISCOVER: int = int(os.getenv("MARKETS_TO_DISCOVER", "50"))
    MARKETS_PER_ITERATION: int = int(os.getenv("MARKETS_PER_ITERATION", "5"))
    INTER_MARKET_DELAY: float = float(os.getenv("INTER_MARKET_DELAY", "2"))
    SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")

    # Request Timeouts (seconds)
    API_TIMEOUT: int = int(os.getenv("API_TIMEOUT", "30"))
    SOURCE_TIMEOUT: int = int(os.getenv("SOURCE_TIMEOUT", "15"))

    # Database Configuration
    DB_PATH: Path = Path(os.getenv("DB_PATH", "data/trader.db"))

    # Telegram Configuration (optional)
    TELEGRAM_BOT_TOKEN: Optional[str] = os.getenv("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID: Optional[str] = os.getenv("TELEGRAM_CHAT_ID")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[Path] = Path(os.getenv("LOG_FILE", "logs/trader.log")) if os.getenv("LOG_FILE") else None

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration values.

        Intelligence and LLM keys are optional. Live trading requires the
        execution gateway URL.

        Returns:
            tuple: (is_valid, list_of_errors)
        """
        errors: list[str] = []

        if not cls.DRY_RUN and not cls.EXECUTION_BACKEND_URL:
            errors.append("EXECUTION_BACKEND_URL is required when DRY_RUN is disabled")

        if cls.MAX_SINGLE_TRADE <= 0:
            errors.append("MAX_SINGLE_TRADE must be positive")

        if cls.MAX_DAILY_SPEND < cls.MAX_SINGLE_TRADE:
            errors.append("MAX_DAILY_SPEND must be >= MAX_SINGLE_TRADE")

        if cls.MAX_CONCURRENT_TRADES < 1:
            errors.append("MAX_CONCURRENT_TRADES must be at least 1")

        if not (0 <= cls.CONFIDENCE_THRESHOLD <= 100):
            errors.append("CONFIDENCE_THRESHOLD must be between 0 and 100")

        if not (0.0 < cls.KELLY_FRACTION <= 1.0):
            errors.append("KELLY_FRACTION must be in (0.0, 1.0]")

        if cls.SIGNAL_CACHE_TTL_SECONDS <= 0:
            errors.append("SIGNAL_CACHE_TTL_SECONDS must be positive")

        if cls.BREAKER_FAILURE_THRESHOLD < 1:
            errors.append("BREAKER_FAILURE_THRESHOLD must be at least 1")

        if cls.EXECUTION_MAX_RETRIES < 0:
            errors.append("EXECUTION_MAX_RETRIES cannot be negative")

        if cls.LOOP_INTERVAL_MINUTES < 1:
            errors.append("LOOP_INTERVAL_MINUTES must be at least 1")

        if not (0.0 <= cls.CLAUDE_TEMPERATURE <= 1.0):
            errors.append("CLAUDE_TEMPERATURE must be between 0.0 and 1.0")

        return (len(errors) == 0, errors)

    @classmethod
    def ensure_directories(cls) -> None:
        """
        Ensure all required directories exist.

        Creates directories for the database and logs if they don't exist.
        """
        cls.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        if cls.LOG_FILE:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
