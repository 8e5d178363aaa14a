from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    # Database
    database_url: Optional[str] = Field(default=None, alias='DATABASE_URL')
    db_user: str = Field(default='postgres', alias='DB_USER')
    db_host: str = Field(default='localhost', alias='DB_HOST')
    db_password: str = Field(default='', alias='DB_PASSWORD')
    db_port: int = Field(default=5432, alias='DB_PORT')
    db_name: str = Field(default='tiket', alias='DB_NAME')
    db_pool_min_size: int = Field(default=2, alias='DB_POOL_MIN_SIZE')
    db_pool_max_size: int = Field(default=20, alias='DB_POOL_MAX_SIZE')

    # JWT Security
    jwt_secret: str = Field(alias='JWT_SECRET')
    jwt_algorithm: str = Field(default='HS256', alias='JWT_ALGORITHM')
    jwt_ttl_minutes: int = Field(default=60, alias='JWT_TTL_MINUTES')

    # Firebase Admin SDK
    firebase_credentials: Optional[str] = Field(default=None, alias='FIREBASE_CREDENTIALS')
    firebase_project_id: Optional[str] = Field(default=None, alias='FIREBASE_PROJECT_ID')

    # Midtrans - Payment gateway
    midtrans_server_key: Optional[str] = Field(default=None, alias='MIDTRANS_SERVER_KEY')
    midtrans_client_key: Optional[str] = Field(default=None, alias='MIDTRANS_CLIENT_KEY')
    midtrans_is_production: bool = Field(default=False, alias='MIDTRANS_IS_PRODUCTION')
    midtrans_finish_url: str = Field(default='http://localhost:5173/profile', alias='MIDTRANS_FINISH_URL')

    # App settings
    app_env: str = Field(default="development", alias='APP_ENV')
    base_url: str = Field(default="http://localhost:8000", alias='BASE_URL')

    # FastAPI specific
    port: int = Field(default=8000, alias='FASTAPI_PORT')
    host: str = Field(default="0.0.0.0", alias='FASTAPI_HOST')
    debug: bool = Field(default=True, alias='DEBUG')
    log_level: str = Field(default='INFO', alias='LOG_LEVEL')
    permission_cache_size: int = Field(default=10000, alias='PERMISSION_CACHE_SIZE')

    # CORS configuration
    cors_origins: str = Field(default="http://localhost:5173", alias='CORS_ORIGINS')

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def db_connection_params(self) -> dict:
        if self.database_url:
            return {"dsn": self.database_url}
        return {
            "host": self.db_host,
            "port": self.db_port,
            "user": self.db_user,
            "password": self.db_password,
            "database": self.db_name,
        }

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def midtrans_environment(self) -> str:
        return "production" if self.midtrans_is_production else "sandbox"

settings = Settings()
