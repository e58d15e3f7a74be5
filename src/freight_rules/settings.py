from __future__ import annotations
import logging
from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic import Field
from urllib.parse import quote_plus, urlparse

logger = logging.getLogger("freight-rules-api")

class Settings(BaseSettings):
    # Prefer a full DATABASE_URL; or supply PG* parts and we'll build it.
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    pg_host: str | None = Field(default=None, alias="PGHOST")
    pg_port: int = Field(default=5432, alias="PGPORT")
    pg_user: str | None = Field(default=None, alias="PGUSER")
    pg_password: str | None = Field(default=None, alias="PGPASSWORD")
    pg_db: str | None = Field(default=None, alias="PGDATABASE")

    # JSON rule set; when present the API reads rules from it instead of the DB.
    rules_path: str | None = Field(default=None, alias="CARRIER_RULES_PATH")

    default_overwidth_trigger_cm: Decimal = Field(default=Decimal("250"), alias="OVERWIDTH_TRIGGER_CM")
    default_lm_divisor_cm: Decimal = Field(default=Decimal("250"), alias="LM_DIVISOR_CM")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            parsed = urlparse(self.database_url)

            # Log parsed components (without password)
            logger.info(f"DB target → user={parsed.username} host={parsed.hostname} port={parsed.port} db={parsed.path.lstrip('/')}")
            logger.info("DB config source → DATABASE_URL")

            # Re-encode the password to handle special characters
            if parsed.password:
                encoded_password = quote_plus(parsed.password)
                host = parsed.hostname or ""
                if parsed.port is not None:
                    host = f"{host}:{parsed.port}"
                fixed_url = f"{parsed.scheme}://{parsed.username}:{encoded_password}@{host}{parsed.path}"
                if parsed.query:
                    fixed_url = f"{fixed_url}?{parsed.query}"
                return fixed_url

            return self.database_url

        if self.pg_host and self.pg_user and self.pg_password and self.pg_db:
            logger.info(f"DB target → user={self.pg_user} host={self.pg_host} port={self.pg_port} db={self.pg_db}")
            logger.info("DB config source → PG* environment variables")

            encoded_password = quote_plus(self.pg_password)
            encoded_user = quote_plus(self.pg_user)

            return (
                f"postgresql+psycopg://{encoded_user}:{encoded_password}"
                f"@{self.pg_host}:{self.pg_port}/{self.pg_db}?sslmode=require"
            )

        raise RuntimeError("DATABASE_URL or PG* vars must be set")

settings = Settings()
