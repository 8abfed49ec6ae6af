"""Status poll cycle for one printer.

Every tick fetches the consolidated telemetry in one request and derives
a ResolvedStatus from that single snapshot (or an ErrorStatus when the
fetch fails). Listeners such as the overlay board are notified after each
cycle.
"""

import asyncio
import logging
from collections.abc import Callable

from printpulse.app.schemas.printer import PrinterConfig
from printpulse.app.schemas.status import ErrorStatus, ResolvedStatus
from printpulse.app.services.chamber import ChamberSensorDiscoverer
from printpulse.app.services.layers import (
    LayerPair,
    estimate_layers,
    layers_from_geometry,
    layers_from_progress,
)
from printpulse.app.services.metadata import MetadataResolver
from printpulse.app.services.moonraker import (
    MoonrakerClient,
    MoonrakerError,
    PrinterApiNotFoundError,
    PrinterAuthenticationError,
    PrinterUnreachableError,
)
from printpulse.app.services.telemetry import PrinterTelemetry
from printpulse.app.services.thumbnail import ThumbnailLoader
from printpulse.app.services.timing import (
    TimeEstimates,
    elapsed_seconds,
    estimate_times,
    slicer_total_seconds,
)
from printpulse.app.utils.formatting import round_half_up

logger = logging.getLogger(__name__)

StatusListener = Callable[[ResolvedStatus | ErrorStatus], None]


def error_status_for(exc: Exception, address: str) -> ErrorStatus:
    """Map a telemetry failure onto the user-facing error taxonomy."""
    if isinstance(exc, PrinterUnreachableError):
        return ErrorStatus(kind="unreachable", message=f"Unreachable: {address}")
    if isinstance(exc, PrinterAuthenticationError):
        return ErrorStatus(kind="authentication", message=f"Authentication failed ({exc.status_code})")
    if isinstance(exc, PrinterApiNotFoundError):
        return ErrorStatus(kind="not_found", message=f"API not found: {address}")
    return ErrorStatus(kind="connection", message=f"Connection Error: {exc}")


def _pair(pair: LayerPair) -> dict:
    return {"current": pair.current, "total": pair.total}


class StatusPoller:
    """Polls one printer and keeps its derived status."""

    def __init__(
        self,
        config: PrinterConfig,
        client: MoonrakerClient,
        retries: int = 0,
        retry_delay: float = 0.5,
    ):
        self.config = config
        self.client = client
        self.retries = retries
        self.retry_delay = retry_delay

        self.metadata = MetadataResolver(client)
        self.chamber = ChamberSensorDiscoverer(client)
        self.thumbnail = ThumbnailLoader(client)

        self.last_status: ResolvedStatus | None = None
        self.last_error: ErrorStatus | None = None
        self.last_result: ResolvedStatus | ErrorStatus | None = None
        self.debug_info: dict | None = None

        self._listeners: list[StatusListener] = []
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        return self.config.update_interval / 1000

    def add_listener(self, listener: StatusListener):
        self._listeners.append(listener)

    async def poll_once(self) -> ResolvedStatus | ErrorStatus:
        """Run one cycle and notify listeners with its result."""
        try:
            raw = await self.client.query_status_with_retry(self.retries, self.retry_delay)
            result = await self._resolve(PrinterTelemetry.from_status(raw))
            self.last_status = result
            self.last_error = None
        except MoonrakerError as e:
            logger.warning(f"Status fetch from {self.config.ip} failed ({e.kind}): {e}")
            result = self._fail(e)
        except Exception as e:
            logger.error(f"Status cycle for {self.config.ip} failed: {e}", exc_info=True)
            result = self._fail(e)

        self.last_result = result
        for listener in self._listeners:
            try:
                listener(result)
            except Exception as e:
                logger.error("Status listener failed: %s", e)
        return result

    def _fail(self, exc: Exception) -> ErrorStatus:
        error = error_status_for(exc, self.config.ip)
        self.last_error = error
        self.thumbnail.hide()
        if self.config.debug:
            self.debug_info = {"error": str(exc) or type(exc).__name__}
        return error

    async def _resolve(self, telemetry: PrinterTelemetry) -> ResolvedStatus:
        state = telemetry.state
        metadata = await self.metadata.resolve(telemetry.filename, state)
        chamber = await self.chamber.get_temperature()

        status = ResolvedStatus(
            state=state,
            hotend=telemetry.extruder,
            bed=telemetry.heater_bed,
            chamber=chamber,
            filename=telemetry.filename,
            metadata_source=self.metadata.cache.source,
        )

        if state == "printing":
            progress = telemetry.progress
            layers = estimate_layers(telemetry, metadata)
            times = estimate_times(telemetry, metadata, progress)

            status.progress_ratio = progress
            status.percentage = round_half_up(progress * 100)
            status.current_layer = layers.current
            status.total_layer = layers.total
            self._apply_times(status, times)
            status.thumbnail_base64 = await self.thumbnail.ensure(telemetry.filename)

            if self.config.debug:
                self._record_debug(telemetry, metadata, progress, layers, times)
        elif state == "paused":
            # Paused shows the slicer total rather than what is left of it
            status.time_slicer_remaining = slicer_total_seconds(metadata, telemetry.info)
            status.elapsed = elapsed_seconds(telemetry)
            self.thumbnail.hide()
        else:
            self.thumbnail.hide()

        return status

    @staticmethod
    def _apply_times(status: ResolvedStatus, times: TimeEstimates):
        status.time_estimate_remaining = times.estimate_remaining
        status.time_slicer_remaining = times.slicer_remaining
        status.elapsed = times.elapsed

    def _record_debug(self, telemetry, metadata, progress, layers, times):
        cache = self.metadata.cache
        self.debug_info = {
            "state": telemetry.state,
            "progress": progress,
            "filename": telemetry.filename,
            "toolhead_z": telemetry.toolhead_z,
            "slicer_info": telemetry.info,
            "metadata": {
                "source": cache.source,
                "filename": cache.filename,
                "keys": metadata.known_fields() if metadata is not None else [],
            },
            "metadata_layer": _pair(layers_from_geometry(telemetry.toolhead_z, metadata)),
            "progress_layer": _pair(layers_from_progress(telemetry.display_progress, metadata)),
            "current_layer": layers.current,
            "total_layer": layers.total,
            "estimate_remaining": times.estimate_remaining,
            "slicer_remaining": times.slicer_remaining,
            "slicer_total": slicer_total_seconds(metadata, telemetry.info),
            "elapsed": times.elapsed,
        }
        logger.debug("Poll diagnostics: %s", self.debug_info)

    async def run(self):
        """Poll until stopped; a tick never starts before the previous one ends."""
        self._running = True
        logger.info(f"Status poller started for {self.config.name} ({self.config.ip}), every {self.interval:g}s")

        while self._running:
            await self.poll_once()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        """Stop the loop and wait for the task to finish."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Status poller stopped")
