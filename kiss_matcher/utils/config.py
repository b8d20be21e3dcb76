"""
KISS-Matcher Configuration
Environment-based configuration management
"""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """KISS-Matcher configuration settings"""

    model_config = SettingsConfigDict(
        env_prefix="KISS_MATCHER_",
        env_file=".env",
        extra="ignore",
        case_sensitive=True
    )

    # Environment
    ENVIRONMENT: str = Field(default="development", description="Environment (development/staging/production)")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FILE: Optional[str] = Field(default=None, description="Rotating log file path (console only when unset)")

    # Execution
    NUM_THREADS: int = Field(default=-1, description="Worker threads for queries and descriptors (-1 uses every core)")

    # Registration pipeline
    USE_QUATRO: bool = Field(default=False, description="Use the yaw-only Quatro solver instead of full SO(3)")
    USE_RATIO_TEST: bool = Field(default=True, description="Apply the descriptor ratio test")
    USE_MUTUAL_FILTER: bool = Field(default=True, description="Keep only mutual nearest-neighbor matches")
    MATCHER_TYPE: str = Field(default="KDTREE", description="Descriptor matcher (KDTREE/BF)")
    RATIO_THRESHOLD: float = Field(default=0.9, description="Ratio test threshold on d1 / d2")
    NUM_MAX_CORRESPONDENCES: int = Field(default=5000, description="Maximum correspondences passed on to pruning")

    # Robust solver
    GNC_MAX_ITERATIONS: int = Field(default=100, description="GNC iteration bound")
    GNC_EPSILON: float = Field(default=1e-6, description="GNC weight-change convergence threshold")
    GNC_FACTOR: float = Field(default=1.4, description="GNC control parameter growth factor")
    NUM_MIN_INLIERS: int = Field(default=5, description="Inliers below which a solution is low confidence")

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("MATCHER_TYPE")
    @classmethod
    def normalize_matcher_type(cls, value: str) -> str:
        value = value.upper()
        if value not in ("KDTREE", "BF"):
            raise ValueError(f"Unknown matcher type: {value}")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENVIRONMENT.lower() == "production"

    def get_matcher_config(self) -> Dict[str, Any]:
        """Get keyword options for KISSMatcherConfig"""
        return {
            "use_quatro": self.USE_QUATRO,
            "use_ratio_test": self.USE_RATIO_TEST,
            "use_mutual_filter": self.USE_MUTUAL_FILTER,
            "matcher_type": self.MATCHER_TYPE,
            "ratio_threshold": self.RATIO_THRESHOLD,
            "num_max_correspondences": self.NUM_MAX_CORRESPONDENCES,
            "max_iterations": self.GNC_MAX_ITERATIONS,
            "epsilon": self.GNC_EPSILON,
            "gnc_factor": self.GNC_FACTOR,
            "num_min_inliers": self.NUM_MIN_INLIERS,
            "num_threads": self.NUM_THREADS
        }


# Global settings instance
settings = Settings()

__all__ = ["settings", "Settings"]
