from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Pagination strategy used when the request does not name one: single | group | infinite
    DATAGRID_METHOD: str = "single"
    # Number of results before pagination begins ("group" method).
    DATAGRID_THRESHOLD: int = 100
    # Maximum results per page.
    DATAGRID_THROTTLE: int = 100
    DATAGRID_MAX_RESULTS: Optional[int] = None

settings = Settings()
