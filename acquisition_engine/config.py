"""Configuration settings for the acquisition analysis engine."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_str(name: str, default: str) -> str:
    # Strip inline comments that Docker env_file doesn't handle
    return os.getenv(name, default).split("#")[0].strip()


class Config:
    """Application configuration."""

    # Provider credentials (one secret per provider)
    REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
    GROK_API_KEY = os.getenv("GROK_API_KEY", "")

    # Provider routing: one provider/model pair per analysis target
    FINANCIAL_PROVIDER = _env_str("FINANCIAL_PROVIDER", "replicate")
    FINANCIAL_MODEL = _env_str("FINANCIAL_MODEL", "meta/meta-llama-3-70b-instruct")
    STRATEGIC_PROVIDER = _env_str("STRATEGIC_PROVIDER", "replicate")
    STRATEGIC_MODEL = _env_str("STRATEGIC_MODEL", "mistralai/mixtral-8x7b-instruct-v0.1")
    MARKET_PROVIDER = _env_str("MARKET_PROVIDER", "openai")
    MARKET_MODEL = _env_str("MARKET_MODEL", "gpt-4o-mini")
    RISK_PROVIDER = _env_str("RISK_PROVIDER", "anthropic")
    RISK_MODEL = _env_str("RISK_MODEL", "claude-3-5-sonnet-20241022")
    NARRATIVE_PROVIDER = _env_str("NARRATIVE_PROVIDER", "anthropic")
    NARRATIVE_MODEL = _env_str("NARRATIVE_MODEL", "claude-3-5-sonnet-20241022")

    LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.2"))
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "2000"))

    # Provider call policy
    PROVIDER_TIMEOUT = int(os.getenv("PROVIDER_TIMEOUT", "60"))  # seconds, per call
    AGENT_TIMEOUT = int(os.getenv("AGENT_TIMEOUT", "180"))  # seconds, per domain task
    PROVIDER_MAX_ATTEMPTS = int(os.getenv("PROVIDER_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "2.0"))  # seconds
    PROVIDER_RATE_LIMIT_PER_MINUTE = int(os.getenv("PROVIDER_RATE_LIMIT_PER_MINUTE", "60"))

    # Batch scanning
    SCAN_BATCH_SIZE = int(os.getenv("SCAN_BATCH_SIZE", "5"))
    SCAN_BATCH_DELAY = float(os.getenv("SCAN_BATCH_DELAY", "2.0"))  # seconds between batches
    PROGRESS_QUEUE_SIZE = int(os.getenv("PROGRESS_QUEUE_SIZE", "100"))  # pending updates per SSE subscriber
    SCAN_SCHEDULER_ENABLED = os.getenv("SCAN_SCHEDULER_ENABLED", "false").lower() == "true"
    SCAN_INTERVAL_MINUTES = int(os.getenv("SCAN_INTERVAL_MINUTES", "1440"))

    # Database Configuration
    DATABASE_PATH = os.getenv("DATABASE_PATH", "acquisition_analysis.db")

    # Provider endpoints
    REPLICATE_BASE_URL = "https://api.replicate.com/v1"
    XAI_BASE_URL = "https://api.x.ai/v1"

    # FastAPI Configuration
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))
    API_RELOAD = os.getenv("API_RELOAD", "true").lower() == "true"
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    ANALYSIS_TARGETS = ("financial", "strategic", "market", "risk", "narrative")
    VALID_PROVIDERS = ("replicate", "anthropic", "openai", "xai")

    @classmethod
    def _credential_for(cls, provider: str) -> str:
        return {
            "replicate": cls.REPLICATE_API_TOKEN,
            "anthropic": cls.ANTHROPIC_API_KEY,
            "openai": cls.OPENAI_API_KEY,
            "xai": cls.GROK_API_KEY,
        }.get(provider, "")

    @classmethod
    def validate_config(cls) -> bool:
        """
        Validate that required configuration is present.

        Returns:
            True if configuration is valid, False otherwise
        """
        missing = []
        for target in cls.ANALYSIS_TARGETS:
            provider = getattr(cls, f"{target.upper()}_PROVIDER")
            if provider not in cls.VALID_PROVIDERS:
                print(
                    f"ERROR: Invalid {target.upper()}_PROVIDER '{provider}'. "
                    f"Must be one of: {', '.join(cls.VALID_PROVIDERS)}"
                )
                print("Hint: Docker env_file does not strip inline comments. Remove comments from .env values.")
                return False
            if not cls._credential_for(provider):
                missing.append(f"{target} -> {provider}")

        if missing:
            # Missing keys degrade to fallback analysis instead of failing runs
            print(f"WARNING: Missing provider credentials for: {', '.join(missing)}")
            print("Affected domains will use formula-based fallback analysis.")

        return True

    @classmethod
    def get_provider_config(cls, target: str) -> dict:
        """
        Get provider configuration for one analysis target.

        Args:
            target: One of financial, strategic, market, risk, narrative

        Returns:
            Dict with provider settings
        """
        if target not in cls.ANALYSIS_TARGETS:
            raise ValueError(f"Unknown analysis target: {target}")

        provider = getattr(cls, f"{target.upper()}_PROVIDER")
        config = {
            "provider": provider,
            "model": getattr(cls, f"{target.upper()}_MODEL"),
            "api_key": cls._credential_for(provider),
            "temperature": cls.LLM_TEMPERATURE,
            "max_tokens": cls.LLM_MAX_TOKENS,
            "timeout": cls.PROVIDER_TIMEOUT,
        }
        if provider == "replicate":
            config["base_url"] = cls.REPLICATE_BASE_URL
        elif provider == "xai":
            config["base_url"] = cls.XAI_BASE_URL
        return config

    @classmethod
    def to_dict(cls) -> dict:
        """Snapshot configuration into the plain dict consumed by the engine."""
        config_dict = {}
        for attr in dir(cls):
            if attr.isupper() and not attr.startswith("_"):
                config_dict[attr] = getattr(cls, attr)
        config_dict["providers"] = {
            target: cls.get_provider_config(target) for target in cls.ANALYSIS_TARGETS
        }
        return config_dict
