"""Shared test fixtures for PrintPulse tests."""

import base64
import logging
import os
from collections.abc import AsyncGenerator
from urllib.parse import unquote

import httpx
import pytest

# IMPORTANT: Set environment variables BEFORE any app imports
# This must happen before settings/config are loaded
os.environ["LOG_TO_FILE"] = "false"
os.environ["DEBUG"] = "false"

from httpx import ASGITransport, AsyncClient  # noqa: E402

from printpulse.app.core.config import settings  # noqa: E402

settings.log_to_file = False

PRINTER_IP = "192.168.1.40"

# A fake PNG long enough to pass the thumbnail sanity check
THUMBNAIL_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256))
THUMBNAIL_B64 = base64.b64encode(THUMBNAIL_BYTES).decode()


def gcode_with_thumbnail(header: str = "") -> str:
    """G-code text with a slicer header and one embedded thumbnail block."""
    lines = [THUMBNAIL_B64[i : i + 76] for i in range(0, len(THUMBNAIL_B64), 76)]
    block = "\n".join(f"; {line}" for line in lines)
    return (
        f"{header}"
        "; thumbnail begin 16x16 %d\n"
        "%s\n"
        "; thumbnail end\n"
        "G28\n"
        "G1 Z0.3 F3000\n"
    ) % (len(THUMBNAIL_B64), block)


class FakeMoonraker:
    """In-memory Moonraker serving the endpoints the client uses.

    Every request is recorded so tests can count network calls.
    """

    def __init__(self):
        self.status: dict = {}
        self.objects: list[str] | None = []
        self.object_status: dict[str, dict] = {}
        self.metadata: dict[str, dict] = {}
        self.files: dict[str, bytes] = {}
        self.status_code = 200
        self.status_exception: Exception | None = None
        self.requests: list[httpx.Request] = []

    def set_status(self, **objects):
        self.status = objects

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def object_queries(self) -> list[str]:
        """Names of single-object queries, in request order."""
        return [
            unquote(r.url.query.decode()).rstrip("=")
            for r in self.calls("/printer/objects/query")
            if "&" not in r.url.query.decode()
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/printer/objects/query":
            query = unquote(request.url.query.decode()).rstrip("=")
            if "&" in query:
                if self.status_exception is not None:
                    raise self.status_exception
                if self.status_code != 200:
                    return httpx.Response(self.status_code, json={"error": "nope"})
                return httpx.Response(200, json={"result": {"status": self.status}})
            if query in self.object_status:
                return httpx.Response(200, json={"result": {"status": {query: self.object_status[query]}}})
            return httpx.Response(404, json={"error": {"message": f"Unknown object {query}"}})

        if path == "/printer/objects/list":
            if self.objects is None:
                return httpx.Response(500)
            return httpx.Response(200, json={"result": {"objects": self.objects}})

        if path == "/server/files/metadata":
            record = self.metadata.get(request.url.params.get("filename", ""))
            if record is None:
                return httpx.Response(404, json={"error": {"message": "Metadata not available"}})
            return httpx.Response(200, json={"result": record})

        if path.startswith("/server/files/"):
            content = self.files.get(path[len("/server/files/") :])
            if content is None:
                return httpx.Response(404)
            range_header = request.headers.get("range", "")
            if range_header.startswith("bytes=0-"):
                end = int(range_header[len("bytes=0-") :]) + 1
                return httpx.Response(206, content=content[:end])
            return httpx.Response(200, content=content)

        return httpx.Response(404)


@pytest.fixture
def fake_printer():
    """A fake Moonraker with no printer objects loaded."""
    return FakeMoonraker()


@pytest.fixture
async def moonraker_client(fake_printer) -> AsyncGenerator:
    """MoonrakerClient talking to fake_printer."""
    from printpulse.app.services.moonraker import MoonrakerClient

    client = MoonrakerClient(PRINTER_IP, transport=httpx.MockTransport(fake_printer.handler))
    yield client
    await client.close()


@pytest.fixture
def status_factory():
    """Build a consolidated status object the way Moonraker reports it."""

    def _build(
        state: str = "standby",
        filename: str = "",
        print_duration: float = 0.0,
        total_duration: float | None = None,
        progress: float | None = None,
        display_progress: float | None = None,
        z: float | None = None,
        info: dict | None = None,
        extruder: tuple[float, float] = (24.8, 0.0),
        bed: tuple[float, float] = (23.1, 0.0),
    ) -> dict:
        print_stats = {
            "state": state,
            "filename": filename,
            "print_duration": print_duration,
            "total_duration": total_duration if total_duration is not None else print_duration,
            "info": info or {"total_layer": None, "current_layer": None},
        }
        status = {
            "print_stats": print_stats,
            "display_status": {"progress": display_progress if display_progress is not None else 0.0},
            "virtual_sdcard": {"progress": progress} if progress is not None else {},
            "extruder": {"temperature": extruder[0], "target": extruder[1]},
            "heater_bed": {"temperature": bed[0], "target": bed[1]},
            "toolhead": {"position": [120.0, 110.0, z, 0.0]} if z is not None else {},
        }
        return status

    return _build


@pytest.fixture
def printer_config():
    from printpulse.app.schemas.printer import PrinterConfig

    return PrinterConfig(name="Voron", ip=PRINTER_IP, camera="", update_interval=2000)


@pytest.fixture
def thumbnail_b64():
    return THUMBNAIL_B64


@pytest.fixture
def gcode_factory():
    return gcode_with_thumbnail


@pytest.fixture
async def overlay_runtime(fake_printer, moonraker_client, printer_config):
    """Runtime wired like the app's startup, against the fake printer."""
    from printpulse.app.api.routes.status import OverlayRuntime
    from printpulse.app.schemas.status import ErrorStatus
    from printpulse.app.services.camera import CameraFeed
    from printpulse.app.services.overlay import OverlayBoard
    from printpulse.app.services.status_poller import StatusPoller

    poller = StatusPoller(printer_config, moonraker_client)
    board = OverlayBoard(printer_config.name, show_chamber=printer_config.show_chamber)
    poller.add_listener(lambda r: board.apply_error(r) if isinstance(r, ErrorStatus) else board.apply(r))
    return OverlayRuntime(
        config=printer_config,
        poller=poller,
        board=board,
        camera=CameraFeed(printer_config.camera),
    )


@pytest.fixture
async def async_client(overlay_runtime) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client.

    ASGITransport does not run the lifespan, so the runtime is installed
    directly and no background tasks are started.
    """
    from printpulse.app.main import app

    app.state.overlay = overlay_runtime
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.state.overlay = None


# ============================================================================
# Log Capture Fixtures for Error Detection
# ============================================================================


class LogCapture(logging.Handler):
    """Handler that captures log records for testing."""

    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord):
        self.records.append(record)

    def get_errors(self) -> list[logging.LogRecord]:
        """Get all ERROR and CRITICAL level records."""
        return [r for r in self.records if r.levelno >= logging.ERROR]

    def get_warnings(self) -> list[logging.LogRecord]:
        return [r for r in self.records if r.levelno == logging.WARNING]


@pytest.fixture
def capture_logs():
    """Capture log output during a test."""
    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    previous_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)

    yield handler

    root_logger.removeHandler(handler)
    root_logger.setLevel(previous_level)
