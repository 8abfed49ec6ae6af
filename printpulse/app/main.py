import asyncio
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI

# Import settings first for logging configuration
from printpulse.app.core.config import APP_VERSION, settings as app_settings

# Configure logging based on settings
# DEBUG=true -> DEBUG level, else use LOG_LEVEL setting
log_level_str = "DEBUG" if app_settings.debug else app_settings.log_level.upper()
log_level = getattr(logging, log_level_str, logging.INFO)
log_format = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Create root logger
root_logger = logging.getLogger()
root_logger.setLevel(log_level)

# Console handler - always enabled
console_handler = logging.StreamHandler()
console_handler.setLevel(log_level)
console_handler.setFormatter(logging.Formatter(log_format))
root_logger.addHandler(console_handler)

# File handler - only if explicitly enabled
if app_settings.log_to_file:
    log_file = app_settings.log_dir / "printpulse.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(file_handler)
    logging.info(f"Logging to file: {log_file}")

# Every poll makes several requests; keep them out of the log unless debugging
if not app_settings.debug:
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

logging.info(f"PrintPulse starting - debug={app_settings.debug}, log_level={log_level_str}")

from printpulse.app.api.routes import status  # noqa: E402
from printpulse.app.api.routes.status import OverlayRuntime  # noqa: E402
from printpulse.app.core.printers import PrinterConfigError, load_printer_config  # noqa: E402
from printpulse.app.schemas.status import ErrorStatus  # noqa: E402
from printpulse.app.services.camera import CameraFeed  # noqa: E402
from printpulse.app.services.moonraker import MoonrakerClient  # noqa: E402
from printpulse.app.services.overlay import OverlayBoard  # noqa: E402
from printpulse.app.services.status_poller import StatusPoller  # noqa: E402


def create_runtime(settings=app_settings) -> OverlayRuntime:
    """Wire the poller, display board and camera feed for the configured printer."""
    config = load_printer_config(settings)

    client = MoonrakerClient(
        config.ip,
        timeout=settings.request_timeout,
        lookup_timeout=settings.lookup_timeout,
    )
    poller = StatusPoller(
        config,
        client,
        retries=settings.telemetry_retries,
        retry_delay=settings.telemetry_retry_delay,
    )
    board = OverlayBoard(config.name, show_chamber=config.show_chamber)

    def update_board(result):
        if isinstance(result, ErrorStatus):
            board.apply_error(result)
        else:
            board.apply(result)

    poller.add_listener(update_board)

    camera = CameraFeed(
        config.camera,
        base_delay=settings.camera_retry_base_delay,
        max_delay=settings.camera_retry_max_delay,
        max_attempts=settings.camera_max_attempts,
        timeout=settings.request_timeout,
    )
    return OverlayRuntime(config=config, poller=poller, board=board, camera=camera)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        runtime = create_runtime()
    except PrinterConfigError as e:
        logging.error(f"Config Error: {e}")
        raise

    app.state.overlay = runtime
    runtime.poller.start()
    camera_task = asyncio.create_task(runtime.camera.watch())

    yield

    # Shutdown
    camera_task.cancel()
    try:
        await camera_task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logging.error(f"Camera watcher failed: {e}")
    await runtime.poller.stop()
    await runtime.poller.client.close()
    app.state.overlay = None


app = FastAPI(
    title=app_settings.app_name,
    description="Print status overlay for Klipper printers",
    version=APP_VERSION,
    lifespan=lifespan,
)

# API routes
app.include_router(status.router, prefix=app_settings.api_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    import uvicorn

    uvicorn.run(app, host=app_settings.host, port=app_settings.port)


if __name__ == "__main__":
    run()
