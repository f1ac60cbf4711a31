from pydantic_settings import BaseSettings
from typing import Optional
from decimal import Decimal


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Broking Commission Core"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql://broking_user:broking_pass@db:5432/broking_db"

    # Insurer settlement statement uploads
    MAX_UPLOAD_SIZE: int = 20 * 1024 * 1024  # 20MB

    # Frontend URL allowed by CORS
    FRONTEND_URL: Optional[str] = None

    # Compliance severity: "high" when the excess over the cap is larger than
    # this many percentage points
    COMPLIANCE_HIGH_EXCESS_POINTS: Decimal = Decimal("5")
    # Optional: also "high" when the pre-cap rate exceeds cap * ratio
    COMPLIANCE_HIGH_EXCESS_RATIO: Optional[Decimal] = None
    # Cap applied when no compliance rule exists for a product category
    DEFAULT_COMPLIANCE_CAP: Decimal = Decimal("100")

    # Settlement variance tolerance as a fraction of expected (0.005 = 0.5%)
    SETTLEMENT_VARIANCE_TOLERANCE: Decimal = Decimal("0.005")

    # Revenue view cache
    REVENUE_CACHE_TTL_SECONDS: int = 300

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
