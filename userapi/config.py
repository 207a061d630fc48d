from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="userapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "User Service API"
    PROJECT_NAME: str = "User Service"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    # 원장 감사 로그 (적립/차감/캡 도달) 레벨 - LOG_LEVEL과 별도로 조정
    LEDGER_LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: List[str] = ["*"]

    # Database
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = ""
    POSTGRES_SCHEMA: str = "users"

    # 지정되면 POSTGRES_* 조합보다 우선 (테스트에서는 sqlite URL 사용)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Identity provider (토큰 발급은 외부 IdP, 여기서는 검증만)
    JWT_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None
    JWT_ISSUER: Optional[str] = None
    JWT_ROLES_CLAIM: str = "roles"

    # Sibling services
    REVIEW_SERVICE_BASE_URL: str = "http://review-service"
    GEOLOCATION_SERVICE_BASE_URL: str = "http://geolocation-service"
    INTERNAL_HTTP_TIMEOUT_SECONDS: float = 5.0
    INTERNAL_AUTH_TOKEN: str = ""

    # Point Management
    POINTS_HISTORY_MAX_LIMIT: int = 100
    LEADERBOARD_MAX_LIMIT: int = 100
    POINTS_EXPIRY_DAYS: Optional[int] = None  # None이면 적립 포인트 만료 없음
    DAILY_POINTS_RETENTION_DAYS: int = 7
    LEDGER_MAX_RETRIES: int = 3
    EXPIRE_SWEEP_BATCH_SIZE: int = 100

    # Tier thresholds (total_points 기준)
    TIER_SILVER_MIN: int = 1000
    TIER_GOLD_MIN: int = 5000
    TIER_PLATINUM_MIN: int = 10000


settings = Settings()
