import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # Storage
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "WARNING").upper()

    # CLI output: plain | json | rich
    default_output: str = os.getenv("LIB_CLI_OUTPUT", "plain")

    # Application
    app_name: str = os.getenv("APP_NAME", "Library Catalog")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")


settings = Settings()
