from typing import Dict, Optional, Tuple
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Basic configuration ---
    APP_NAME: str = "Tenant Gateway"
    APP_DESCRIPTION: str = "Multi-tenant backend with tenant isolation, role-based access control and quotas"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"  # development, production, testing
    DEBUG: bool = True

    # --- Token signing ---
    SECRET_KEY: str = "your-super-secret-key-change-it-in-production"
    JWT_ALGORITHM: str = "HS256"
    PASSWORD_HASH_ROUNDS: int = 12

    # --- Database (MySQL/SQLModel) ---
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = "root"
    DB_NAME: str = "app_db"
    DB_URL: Optional[str] = None  # Full URL override, e.g. sqlite+aiosqlite:///./dev.db

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        safe_password = quote_plus(self.DB_PASSWORD)
        return f"mysql+aiomysql://{self.DB_USER}:{safe_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # --- Subscription tier limits (users, projects) ---
    FREE_MAX_USERS: int = 5
    FREE_MAX_PROJECTS: int = 3
    PROFESSIONAL_MAX_USERS: int = 25
    PROFESSIONAL_MAX_PROJECTS: int = 20
    ENTERPRISE_MAX_USERS: int = 250
    ENTERPRISE_MAX_PROJECTS: int = 100

    @property
    def TIER_LIMITS(self) -> Dict[str, Tuple[int, int]]:
        """Tier name -> (max_users, max_projects)."""
        return {
            "free": (self.FREE_MAX_USERS, self.FREE_MAX_PROJECTS),
            "professional": (self.PROFESSIONAL_MAX_USERS, self.PROFESSIONAL_MAX_PROJECTS),
            "enterprise": (self.ENTERPRISE_MAX_USERS, self.ENTERPRISE_MAX_PROJECTS),
        }

    # --- Bootstrap Super Admin (optional) ---
    SUPER_ADMIN_EMAIL: Optional[str] = None
    SUPER_ADMIN_PASSWORD: Optional[str] = None

    # --- Cookie ---
    ACCESS_TOKEN_COOKIE_NAME: str = "access_token"
    COOKIE_SECURE: bool = False  # Set True in production (HTTPS only)
    COOKIE_SAMESITE: str = "lax"  # lax, strict, none

    # --- Logging ---
    LOG_DIR: str = "logs"

    # --- API route prefixes ---
    API_V1_AUTH_PREFIX: str = "/api/v1/auth"
    API_V1_TENANTS_PREFIX: str = "/api/v1/tenants"

    # --- Gunicorn process name (optional) ---
    GUNICORN_PROC_NAME: Optional[str] = None  # Fallback to APP_NAME when empty

    # --- Pydantic ---
    # Load env from project root .env; priority: env vars > .env > defaults
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )


# Loaded once at process start
settings = Settings()
