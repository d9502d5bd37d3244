"""
Application configuration

Values are read from the environment (a local .env file is honoured) once at
startup and handed to the application factory.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "leather_platform"
    app_env: str = "production"
    log_level: str = "INFO"
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    wise_api_token: Optional[str] = None
    wise_profile_id: Optional[str] = None
    wise_api_base_url: str = "https://api.wise.com"
    resend_api_key: Optional[str] = None
    mail_from: str = "PureGrain <admin@example.com>"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        app_env = os.getenv("APP_ENV", "production")
        default_level = "DEBUG" if app_env == "development" else "INFO"
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            app_env=app_env,
            log_level=os.getenv("LOG_LEVEL", default_level),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            wise_api_token=os.getenv("WISE_API_TOKEN"),
            wise_profile_id=os.getenv("WISE_PROFILE_ID"),
            wise_api_base_url=os.getenv("WISE_API_BASE_URL", cls.wise_api_base_url),
            resend_api_key=os.getenv("RESEND_API_KEY"),
            mail_from=os.getenv("MAIL_FROM", cls.mail_from),
            port=int(os.getenv("PORT", 8000)),
        )


_log_handler = None


def configure_logging(level: str = "INFO"):
    global _log_handler
    root = logging.getLogger()
    if _log_handler is None:
        _log_handler = logging.StreamHandler()
        _log_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
        )
        root.addHandler(_log_handler)
    root.setLevel(level.upper())
