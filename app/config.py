from pydantic_settings import BaseSettings
from typing import Optional
from urllib.parse import quote_plus

class Settings(BaseSettings):
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "classroom"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # full connection string, wins over the postgres_* parts when set
    DATABASE_URL: Optional[str] = None

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    DEFAULT_CURRENCY: str = "INR"
    # an unpaid order younger than this is handed back instead of a new one
    PENDING_ORDER_REUSE_MINUTES: int = 15

    # development | local | staging | production
    ENV: str = "production"

    @property
    def database_url(self):
        if self.DATABASE_URL:
            return self.DATABASE_URL
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_development(self) -> bool:
        return self.ENV == "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
