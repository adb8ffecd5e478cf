"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
Every endpoint, credential and timeout the relay touches is declared here once.
Values come from the environment (or a local `.env` file), so the same build can
point at a staging platform or a production one without code changes.
The reconnect and ping timings are NOT here: they are fixed constants of the
Listener itself.
"""
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    # Telephony platform REST APIs
    NOTIFICATIONS_BASE_URL: str = "http://127.0.0.1:8000/notifications"
    CALL_EVENTS_BASE_URL: str = "http://127.0.0.1:8000/call-events-report"
    ACCESS_TOKEN: str | None = None

    # Downstream webhook
    WEBHOOK_URL: str = "http://127.0.0.1:5678/webhook/call-events"

    # Timeouts
    HTTP_TIMEOUT_S: float = 10.0
    WS_OPEN_TIMEOUT_S: float = 10.0

    class Config:
        env_file = ".env"
        # Tolerate missing env vars to allow easy out-of-the-box execution
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()
