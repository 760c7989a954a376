"""
Application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./tab_fusion.db"
    AUTO_CREATE_DB_SCHEMA: bool = True

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Trust weights (initial accuracy per source)
    TRUST_INITIAL_WEIGHT_RULES: float = 0.4
    TRUST_INITIAL_WEIGHT_MODEL: float = 0.2
    TRUST_INITIAL_WEIGHT_LLM: float = 0.4

    # Trust adjustment
    TRUST_CORRECT_PREDICTION_BOOST: float = 0.02
    TRUST_INCORRECT_PREDICTION_PENALTY: float = 0.03
    TRUST_MIN_WEIGHT: float = 0.1
    TRUST_MAX_WEIGHT: float = 0.7
    TRUST_ACCURACY_WINDOW: int = 100
    TRUST_MIN_PREDICTIONS_FOR_ADJUSTMENT: int = 20

    # Confidence thresholds
    CONFIDENCE_HIGH: float = 0.8
    CONFIDENCE_MEDIUM: float = 0.6
    CONFIDENCE_LOW: float = 0.4

    # Low-confidence resolution knobs (independent of each other)
    CONSENSUS_CONFIDENCE: float = 0.8
    DISAGREEMENT_CONFIDENCE_PENALTY: float = 0.8

    # Training / learning loop
    TRAINING_MIN_TRAINING_EXAMPLES: int = 100
    TRAINING_MIN_EXAMPLES_PER_CLASS: int = 10
    TRAINING_INCREMENTAL_EPOCHS: int = 5
    TRAINER_URL: str = ""
    TRAINER_TIMEOUT_SECONDS: float = 30.0

    # Reporting
    VOTING_HISTORY_LIMIT: int = 100

    # Feature Flags
    FEEDBACK_LEARNING_ENABLED: bool = True

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @property
    def initial_weights(self) -> dict:
        return {
            "rules": self.TRUST_INITIAL_WEIGHT_RULES,
            "model": self.TRUST_INITIAL_WEIGHT_MODEL,
            "llm": self.TRUST_INITIAL_WEIGHT_LLM,
        }


settings = Settings()


def validate_trust_settings(config: Settings = settings) -> None:
    """Fail fast when trust/learning knobs cannot produce valid weights."""
    if config.TRUST_MIN_WEIGHT <= 0:
        raise ValueError("TRUST_MIN_WEIGHT must be positive.")
    if config.TRUST_MIN_WEIGHT > config.TRUST_MAX_WEIGHT:
        raise ValueError("TRUST_MIN_WEIGHT must not exceed TRUST_MAX_WEIGHT.")
    if config.TRUST_ACCURACY_WINDOW <= 0:
        raise ValueError("TRUST_ACCURACY_WINDOW must be positive.")
    if config.TRAINING_MIN_EXAMPLES_PER_CLASS <= 0:
        raise ValueError("TRAINING_MIN_EXAMPLES_PER_CLASS must be positive.")
    for name, value in config.initial_weights.items():
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"Initial trust weight for {name} must be within [0, 1].")
    for name in ("CONFIDENCE_HIGH", "CONFIDENCE_MEDIUM", "CONFIDENCE_LOW"):
        value = getattr(config, name)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be within [0, 1].")
