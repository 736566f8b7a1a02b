from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, List, Union


class Settings(BaseSettings):
    # Database
    database_url: str

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None

    # Firebase (identity provider + analytics store)
    firebase_project_id: str
    firebase_credentials_path: str

    # Stripe (billing provider)
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_pro_price_id: Optional[str] = None
    stripe_pro_payment_link: Optional[str] = None
    stripe_enterprise_price_id: Optional[str] = None
    stripe_enterprise_payment_link: Optional[str] = None

    # API
    api_v1_str: str = "/api/v1"
    app_base_url: str = "http://localhost:3000"
    api_base_url: Optional[str] = "http://localhost:8000"

    # Caching
    billing_metadata_cache_ttl_seconds: int = 300
    pending_subscription_ttl_seconds: int = 3600

    # Rate limiting
    rate_limit_enabled: bool = True

    # Environment
    environment: str = "development"
    debug: bool = True

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from environment variable (comma-separated) or use default list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
