from pathlib import Path

from pydantic_settings import BaseSettings

# Application version - single source of truth
APP_VERSION = "0.3.0"

# Base directory for path calculations
_base_dir = Path(__file__).resolve().parent.parent.parent.parent


class Settings(BaseSettings):
    app_name: str = "PrintPulse"
    debug: bool = False  # Default to production mode

    # Paths
    base_dir: Path = _base_dir
    log_dir: Path = base_dir / "logs"
    printers_file: Path = base_dir / "printers.json"

    # Logging
    log_level: str = "INFO"  # Override with LOG_LEVEL env var or DEBUG=true
    log_to_file: bool = False

    # Printer selection - a key into printers.json, or explicit fields below
    printer: str = ""
    printer_ip: str = ""
    printer_name: str = ""
    camera_url: str = ""
    camera_flip_x: bool = False
    camera_flip_y: bool = False
    show_chamber: bool = False
    update_interval_ms: int = 2000

    # Printer API
    request_timeout: float = 5.0
    lookup_timeout: float = 2.0  # Catalog/config style calls
    telemetry_retries: int = 0
    telemetry_retry_delay: float = 0.5

    # Camera feed retry
    camera_retry_base_delay: float = 2.0
    camera_retry_max_delay: float = 60.0
    camera_max_attempts: int = 10

    # API
    host: str = "0.0.0.0"
    port: int = 8000
    api_prefix: str = "/api/v1"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

if settings.log_to_file:
    settings.log_dir.mkdir(exist_ok=True)
