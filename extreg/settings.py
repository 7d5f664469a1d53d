"""
Service configuration

Loaded from environment variables or a `.env` file.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

REPO_DIR = Path(__file__).resolve().parent.parent

env_file = Path(".env")
if env_file.exists():
    load_dotenv(env_file)


class Config:
    def __init__(self) -> None:
        # server
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "8000"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        # database
        self.db_username = os.getenv("DB_USERNAME", "root")
        self.db_password = os.getenv("DB_PASSWORD", "")
        self.db_host = os.getenv("DB_HOST", "localhost")
        self.db_port = int(os.getenv("DB_PORT", "5432"))
        self.db_database = os.getenv("DB_DATABASE", "public")
        self.db_schema = os.getenv("DB_SCHEMA", "public")
        self._db_url = os.getenv("DB_URL")

        # extensions
        self.extensions_dir = Path(os.getenv("EXTENSIONS_DIR", str(REPO_DIR / "extensions")))
        self.extensions_package = os.getenv("EXTENSIONS_PACKAGE", "extensions")
        self.profiles_dir = Path(os.getenv("PROFILES_DIR", str(REPO_DIR / "profiles")))
        self.install_profile = os.getenv("INSTALL_PROFILE", "standard")

    @property
    def db_url(self) -> str:
        if self._db_url:
            return self._db_url
        return (
            f"postgresql+psycopg2://{self.db_username}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_database}"
        )

    @property
    def is_postgres(self) -> bool:
        return self.db_url.startswith("postgresql")


config = Config()
