"""Application configuration."""
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Process-level settings. Per-call knobs live in RegenerationConfig."""

    # OpenAI Settings
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    RECOVERY_MODEL: str = os.getenv("RECOVERY_MODEL", "gpt-4o-mini")
    ESCALATION_MODEL: str = os.getenv("ESCALATION_MODEL", "gpt-4o")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    OPENAI_TEMPERATURE: float = float(os.getenv("OPENAI_TEMPERATURE", "0"))

    # Timeouts (seconds)
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))
    EMBEDDING_TIMEOUT_SECONDS: float = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))

    # Recovery defaults
    MAX_ATTEMPTS_PER_LAYER: int = int(os.getenv("MAX_ATTEMPTS_PER_LAYER", "2"))
    MAX_TOTAL_TOKEN_COST: int = int(os.getenv("MAX_TOTAL_TOKEN_COST", "50000"))
    MAX_OUTPUT_TOKENS: int = int(os.getenv("MAX_OUTPUT_TOKENS", "4096"))
    SEMANTIC_MATCH_THRESHOLD: float = float(os.getenv("SEMANTIC_MATCH_THRESHOLD", "0.85"))

    # Worker pool
    MAX_CONCURRENT_UNITS: int = int(os.getenv("MAX_CONCURRENT_UNITS", "4"))

    # App Settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


config = Config()


def setup_logging(level: str = None) -> None:
    """Configure root logging for processes embedding the pipeline."""
    logging.basicConfig(
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%H:%M:%S',
        handlers=[logging.StreamHandler(sys.stdout)],
    )
