import os

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    mongodb_uri: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    jwt_secret: str = "dev-secret-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    reset_token_expire_minutes: int = 60
    client_url: str = "http://localhost:3000"
    port: int = 8000
    environment: str = "development"
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        defaults = cls()
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI") or os.getenv("DATABASE_URL") or defaults.mongodb_uri,
            database_name=os.getenv("DATABASE_NAME", defaults.database_name),
            jwt_secret=os.getenv("JWT_SECRET", defaults.jwt_secret),
            client_url=os.getenv("CLIENT_URL", defaults.client_url),
            port=int(os.getenv("PORT", defaults.port)),
            environment=os.getenv("APP_ENV", defaults.environment),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        )
