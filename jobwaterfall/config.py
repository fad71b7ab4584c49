"""
Configuration management for the job acquisition pipeline.

Environment-based configuration using python-dotenv for secure credential handling.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class CacheConfig:
    """Cache tier configuration."""

    # In-process cache time-to-live in seconds (1 hour default)
    FAST_TTL_SECONDS: int = int(os.getenv("FAST_CACHE_TTL_SECONDS", "3600"))

    # Shared cache time-to-live in seconds (1 hour default)
    SHARED_TTL_SECONDS: int = int(os.getenv("SHARED_CACHE_TTL_SECONDS", "3600"))

    # Background sweep interval for the in-process cache
    SWEEP_INTERVAL_SECONDS: int = int(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "3600"))

    # Persistent search store retention (3 weeks default)
    STORE_TTL_DAYS: int = int(os.getenv("SEARCH_STORE_TTL_DAYS", "21"))

    # Base directory for data storage
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", "data"))

    # SQLite database paths
    SHARED_CACHE_DB_PATH: Path = DATA_DIR / "shared_cache.db"
    SEARCH_STORE_DB_PATH: Path = DATA_DIR / "search_store.db"

    @classmethod
    def ensure_directories(cls) -> None:
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)


class ResilienceConfig:
    """Retry and timeout policy for upstream calls."""

    MAX_ATTEMPTS: int = int(os.getenv("MAX_ATTEMPTS", "3"))

    # Per-attempt timeout in seconds
    ATTEMPT_TIMEOUT_SECONDS: float = float(os.getenv("ATTEMPT_TIMEOUT_SECONDS", "30"))

    # Backoff parameters in seconds
    BASE_DELAY_SECONDS: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1.0"))
    MAX_DELAY_SECONDS: float = float(os.getenv("RETRY_MAX_DELAY_SECONDS", "10.0"))
    JITTER_SECONDS: float = float(os.getenv("RETRY_JITTER_SECONDS", "1.0"))


class CircuitBreakerConfig:
    """Circuit breaker thresholds."""

    FAILURE_THRESHOLD: int = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5"))
    RECOVERY_TIMEOUT_SECONDS: float = float(os.getenv("CIRCUIT_RECOVERY_TIMEOUT_SECONDS", "30"))


class DecoderConfig:
    """Free-text response decoding configuration."""

    # Characters of raw text retained on decode failures
    RAW_PREVIEW_CHARS: int = int(os.getenv("DECODER_RAW_PREVIEW_CHARS", "500"))

    # Salvaged results below this completeness trigger one re-request
    MIN_COMPLETENESS: float = float(os.getenv("DECODER_MIN_COMPLETENESS", "0.8"))


class ScraperConfig:
    """Job-board scraping configuration."""

    ENABLED: bool = os.getenv("SCRAPERS_ENABLED", "true").lower() == "true"

    # Minimum interval between requests to the same board (seconds)
    MIN_INTERVAL_SECONDS: float = float(os.getenv("SCRAPER_MIN_INTERVAL_SECONDS", "2.0"))

    MAX_RETRIES: int = int(os.getenv("SCRAPER_MAX_RETRIES", "3"))
    RETRY_DELAY_SECONDS: float = float(os.getenv("SCRAPER_RETRY_DELAY_SECONDS", "1.0"))

    # Concurrent pages checked out of the shared browser
    MAX_PAGES: int = int(os.getenv("SCRAPER_MAX_PAGES", "3"))

    PAGE_TIMEOUT_MS: int = int(os.getenv("SCRAPER_PAGE_TIMEOUT_MS", "30000"))

    USER_AGENT: str = os.getenv(
        "SCRAPER_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    )


class JSearchConfig:
    """Primary structured job source (JSearch via RapidAPI)."""

    API_KEY: str = os.getenv("RAPIDAPI_KEY", "")
    HOST: str = os.getenv("JSEARCH_HOST", "jsearch.p.rapidapi.com")
    BASE_URL: str = os.getenv("JSEARCH_BASE_URL", "https://jsearch.p.rapidapi.com")
    COUNTRY: str = os.getenv("JSEARCH_COUNTRY", "ca")
    DATE_POSTED: str = os.getenv("JSEARCH_DATE_POSTED", "month")

    @classmethod
    def is_configured(cls) -> bool:
        """Check if JSearch credentials are configured."""
        return bool(cls.API_KEY)


class PerplexityConfig:
    """Generative text service configuration."""

    API_KEY: str = os.getenv("PERPLEXITY_API_KEY", "")
    ENDPOINT: str = os.getenv("PERPLEXITY_ENDPOINT", "https://api.perplexity.ai/chat/completions")
    MODEL: str = os.getenv("PERPLEXITY_MODEL", "sonar")
    TEMPERATURE: float = float(os.getenv("PERPLEXITY_TEMPERATURE", "0.2"))
    MAX_TOKENS: int = int(os.getenv("PERPLEXITY_MAX_TOKENS", "20000"))

    @classmethod
    def is_configured(cls) -> bool:
        """Check if the generative service is configured."""
        return bool(cls.API_KEY)


class CostConfig:
    """Budget management for paid tiers."""

    # Total budget in USD
    TOTAL_BUDGET: float = float(os.getenv("TOTAL_BUDGET", "25.00"))

    # Cost per request by paid tier (in USD)
    PRIMARY_COST_PER_REQUEST: float = float(os.getenv("PRIMARY_COST_PER_REQUEST", "0.002"))
    GENERATIVE_COST_PER_REQUEST: float = float(os.getenv("GENERATIVE_COST_PER_REQUEST", "0.005"))


class AcquisitionConfig:
    """Waterfall behaviour."""

    # Records needed before later tiers are skipped
    MIN_RESULTS: int = int(os.getenv("MIN_RESULTS", "10"))

    # Keywords fanned out to live tiers
    MAX_LIVE_KEYWORDS: int = int(os.getenv("MAX_LIVE_KEYWORDS", "3"))

    # Listings requested from the generative tier
    GENERATIVE_LIMIT: int = int(os.getenv("GENERATIVE_LIMIT", "25"))

    # Overall acquisition deadline in seconds
    DEADLINE_SECONDS: float = float(os.getenv("ACQUISITION_DEADLINE_SECONDS", "90"))

    DEFAULT_RADIUS_KM: int = int(os.getenv("DEFAULT_RADIUS_KM", "70"))
    DEFAULT_MAX_RESULTS: int = int(os.getenv("DEFAULT_MAX_RESULTS", "100"))


class SchedulerConfig:
    """Maintenance scheduling configuration."""

    # Prefetch popular searches daily
    PREFETCH_ENABLED: bool = os.getenv("PREFETCH_ENABLED", "false").lower() == "true"

    # Hour of day (0-23) for daily jobs
    DAILY_HOUR: int = int(os.getenv("MAINTENANCE_DAILY_HOUR", "3"))

    # Number of popular searches to prefetch
    PREFETCH_LIMIT: int = int(os.getenv("PREFETCH_LIMIT", "20"))


class LoggingConfig:
    """Logging configuration."""

    # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Log directory
    LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))

    # Log file name
    LOG_FILE: str = os.getenv("LOG_FILE", "jobwaterfall.log")

    # Log format
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Date format
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    # Maximum log file size in bytes (10MB default)
    MAX_LOG_SIZE: int = int(os.getenv("MAX_LOG_SIZE", str(10 * 1024 * 1024)))

    # Number of backup log files to keep
    BACKUP_COUNT: int = int(os.getenv("BACKUP_COUNT", "5"))

    @classmethod
    def ensure_log_directory(cls) -> None:
        """Create log directory if it doesn't exist."""
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_log_file_path(cls) -> Path:
        """Get full path to log file."""
        return cls.LOG_DIR / cls.LOG_FILE


class AppConfig:
    """Main application configuration aggregating all config classes."""

    cache = CacheConfig
    resilience = ResilienceConfig
    circuit_breaker = CircuitBreakerConfig
    decoder = DecoderConfig
    scraper = ScraperConfig
    jsearch = JSearchConfig
    perplexity = PerplexityConfig
    cost = CostConfig
    acquisition = AcquisitionConfig
    scheduler = SchedulerConfig
    logging = LoggingConfig

    # Application metadata
    APP_NAME: str = "Job Waterfall"
    VERSION: str = "0.1.0"

    @classmethod
    def initialize(cls) -> None:
        """Initialize all configuration settings and create necessary directories."""
        CacheConfig.ensure_directories()
        LoggingConfig.ensure_log_directory()

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration settings.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if not JSearchConfig.is_configured():
            errors.append("RAPIDAPI_KEY is not configured")

        if not PerplexityConfig.is_configured():
            errors.append("PERPLEXITY_API_KEY is not configured")

        if CostConfig.TOTAL_BUDGET <= 0:
            errors.append("TOTAL_BUDGET must be greater than 0")

        if ResilienceConfig.MAX_ATTEMPTS < 1:
            errors.append("MAX_ATTEMPTS must be at least 1")

        if ResilienceConfig.MAX_DELAY_SECONDS < ResilienceConfig.BASE_DELAY_SECONDS:
            errors.append("RETRY_MAX_DELAY_SECONDS must not be below RETRY_BASE_DELAY_SECONDS")

        if CircuitBreakerConfig.FAILURE_THRESHOLD < 1:
            errors.append("CIRCUIT_FAILURE_THRESHOLD must be at least 1")

        if not 0 < DecoderConfig.MIN_COMPLETENESS <= 1:
            errors.append("DECODER_MIN_COMPLETENESS must be within (0, 1]")

        if AcquisitionConfig.MIN_RESULTS < 1:
            errors.append("MIN_RESULTS must be at least 1")

        if CacheConfig.SWEEP_INTERVAL_SECONDS < 60:
            errors.append("CACHE_SWEEP_INTERVAL_SECONDS should be at least 60 seconds")

        return (len(errors) == 0, errors)


# Initialize configuration on module import
AppConfig.initialize()
