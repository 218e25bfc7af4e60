"""
Configuration settings for the Automation Hub scheduler
"""
from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Automation Hub"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 3002

    # Paths
    BASE_DIR: Path = Path(__file__).parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    REPORTS_DIR: Path = BASE_DIR / "reports"

    # Storage backend: "json" or "memory"
    STORE_BACKEND: str = "json"

    # Scheduling
    MAX_CONCURRENCY: int = 5
    STEP_TIMEOUT_SECONDS: float = 120.0
    LOG_MAX_ENTRIES: int = 200
    NOTIFY_TIMEOUT_SECONDS: float = 2.0

    # Local engine: "browser" drives Playwright, "placeholder" writes a stub report
    AUTOMATION_ENGINE: str = "browser"
    PLACEHOLDER_DELAY_MS: int = 1000

    # Browser settings
    BROWSER_HEADLESS: bool = False
    BROWSER_TIMEOUT: int = 30000  # ms

    # Remote worker settings
    SERVER_URL: str = "ws://localhost:3002/ws"
    AGENT_PLATFORM: str = "ios"
    AGENT_NAME: Optional[str] = None
    AGENT_DEVICE_NAME: Optional[str] = None
    AGENT_ID: Optional[str] = None
    AGENT_RECONNECT_SECONDS: float = 3.0

    class Config:
        env_file = ".env"
        extra = "allow"

    @property
    def max_concurrency(self) -> int:
        return max(1, self.MAX_CONCURRENCY)


settings = Settings()

# Ensure directories exist
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
settings.REPORTS_DIR.mkdir(parents=True, exist_ok=True)
