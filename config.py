import logging
from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # License Server Configuration
    LICENSE_API_URL: str = "http://localhost:3000"
    LICENSE_API_BASE: str = "api/v1"
    LICENSE_API_TIMEOUT: int = 30
    TLS_MINIMUM_VERSION: str = "TLSv1_3"

    # Application Info
    APPLICATION_ID: str = ""
    SERVICE_NAME: str = "licensed-app-client"
    APP_VERSION: str = "1.0.0"

    # Connect Configuration
    CONNECT_MAX_RETRIES: int = 3

    # Heartbeat Configuration
    HEARTBEAT_INTERVAL_SECONDS: float = 60
    HEARTBEAT_MAX_FAILURES: int = 3
    HEARTBEAT_JOIN_TIMEOUT_SECONDS: float = 5

    # Diagnostics
    ENABLE_DEBUG_LOGGING: bool = False

    class Config:
        env_file = ".env"

settings = Settings()


def configure_logging(debug: Optional[bool] = None) -> None:
    """
    Configure root logging for the client.

    Debug output covers every request, response and heartbeat tick.
    """
    if debug is None:
        debug = settings.ENABLE_DEBUG_LOGGING

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
