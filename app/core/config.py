from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "library-records"

    ADMIN_JWT_SECRET: str = "change_me_admin"
    # Roles allowed to create, edit and delete records.
    WRITER_ROLES: str = "ADMIN,LIBRARIAN"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    DATABASE_URL: str = "sqlite+pysqlite:///./library.db"
    DATABASE_ECHO: bool = False

    LIST_DEFAULT_PAGE_SIZE: int = 10
    LIST_MIN_PAGE_SIZE: int = 5
    LIST_MAX_PAGE_SIZE: int = 50
    STATE_FIELD_PREFIX: str = "state_"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def writer_roles_set(self) -> set[str]:
        return {r.strip().upper() for r in self.WRITER_ROLES.split(",") if r.strip()}

settings = Settings()
