"""Application configuration."""

import os
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App info
    VERSION: str = "1.0.0"
    APP_NAME: str = "Recipe Engine"
    DEBUG: bool = False

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 7870
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Paths
    DATA_PATH: Path = Path.home() / "RECIPE_ENGINE"
    DATABASE_PATH: Path = Path.home() / "RECIPE_ENGINE" / "recipes.db"
    DATABASE_URL: Optional[str] = None

    # Control surface auth (None disables the check)
    ADMIN_TOKEN: Optional[str] = None

    # Job workers
    MAX_CONCURRENT_JOBS: int = 2
    RECOVER_JOBS_ON_STARTUP: bool = False

    # Collaborators
    GENERATION_API_URL: str = "http://127.0.0.1:8100"
    TRANSLATION_API_URL: str = "http://127.0.0.1:8100"
    COLLABORATOR_API_KEY: Optional[str] = None
    COLLABORATOR_TIMEOUT: float = 300.0  # per call, seconds
    CANCEL_POLL_INTERVAL: float = 2.0

    # Generation
    GENERATION_MAX_BATCH: int = 50
    GENERATE_IMAGES: bool = True

    # Translation
    SOURCE_LOCALE: str = "zh"
    TRANSLATION_LOCALES: List[str] = ["zh", "en", "ja", "ko"]
    AUTO_TRANSLATE_LOCALES: List[str] = ["en"]
    TRANSLATION_DEFAULT_PRIORITY: int = 5
    TRANSLATION_MAX_RETRIES: int = 3
    TRANSLATION_BACKOFF_SECONDS: float = 30.0
    TRANSLATION_QUEUE_DELAY: float = 1.0  # between jobs in a sweep
    TRANSLATION_SWEEP_MAX: int = 50

    # Collections
    COLLECTION_MIN_REQUIRED: int = 10
    COLLECTION_TARGET_COUNT: int = 20

    class Config:
        env_prefix = "RECIPE_"
        env_file = ".env"
        case_sensitive = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if "DATA_PATH" in kwargs and "DATABASE_PATH" not in kwargs:
            self.DATABASE_PATH = self.DATA_PATH / "recipes.db"

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL, falling back to a SQLite file under DATA_PATH."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        self.DATA_PATH.mkdir(parents=True, exist_ok=True)
        return f"sqlite+aiosqlite:///{self.DATABASE_PATH}"


# Override paths from environment
if os.environ.get("RECIPE_DATA_PATH"):
    _data_path = Path(os.environ["RECIPE_DATA_PATH"])
    settings = Settings(
        DATA_PATH=_data_path,
        DATABASE_PATH=_data_path / "recipes.db",
    )
else:
    settings = Settings()
