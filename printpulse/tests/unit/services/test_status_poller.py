"""Unit tests for the status poll cycle.

These drive StatusPoller against the fake Moonraker and check what the
overlay board ends up showing.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from printpulse.app.schemas.status import ErrorStatus, ResolvedStatus
from printpulse.app.services.moonraker import (
    PrinterApiNotFoundError,
    PrinterAuthenticationError,
    PrinterConnectionError,
    PrinterUnreachableError,
)
from printpulse.app.services.overlay import OverlayBoard
from printpulse.app.services.status_poller import StatusPoller, error_status_for


@pytest.fixture
def poller(printer_config, moonraker_client):
    return StatusPoller(printer_config, moonraker_client)


@pytest.fixture
def board(poller):
    board = OverlayBoard("Voron")
    poller.add_listener(lambda r: board.apply_error(r) if isinstance(r, ErrorStatus) else board.apply(r))
    return board


class TestErrorStatusFor:
    def test_unreachable(self):
        error = error_status_for(PrinterUnreachableError("refused"), "192.168.1.40")
        assert error == ErrorStatus(kind="unreachable", message="Unreachable: 192.168.1.40")

    def test_authentication(self):
        error = error_status_for(PrinterAuthenticationError(403), "192.168.1.40")
        assert error == ErrorStatus(kind="authentication", message="Authentication failed (403)")

    def test_not_found(self):
        error = error_status_for(PrinterApiNotFoundError("404"), "192.168.1.40")
        assert error == ErrorStatus(kind="not_found", message="API not found: 192.168.1.40")

    def test_anything_else(self):
        error = error_status_for(ValueError("bad data"), "192.168.1.40")
        assert error == ErrorStatus(kind="connection", message="Connection Error: bad data")


class TestPollScenarios:
    @pytest.mark.asyncio
    async def test_printing_without_metadata(self, fake_printer, poller, board, status_factory):
        """50% after 30 minutes with nothing else known."""
        fake_printer.status = status_factory(
            state="printing", filename="mystery.gcode", progress=0.5, print_duration=1800
        )

        result = await poller.poll_once()

        assert isinstance(result, ResolvedStatus)
        assert result.percentage == 50
        assert result.time_estimate_remaining == 1800
        assert result.time_slicer_remaining is None
        assert result.current_layer is None and result.total_layer is None

        d = board.display
        assert d.percentage == "50%"
        assert d.progress_width == "50%"
        assert d.time_estimate == "30m 0s"
        assert d.time_slicer == "--"
        assert d.layer_info == "--"
        assert d.filename == "mystery"

    @pytest.mark.asyncio
    async def test_idle_resets_display(self, fake_printer, poller, board, status_factory):
        fake_printer.status = status_factory(state="printing", filename="cube.gcode", progress=0.5, print_duration=60)
        await poller.poll_once()

        fake_printer.status = status_factory(state="standby")
        await poller.poll_once()

        d = board.display
        assert d.status_class == "idle"
        assert d.progress_width == "0%"
        assert d.percentage == "0%"
        assert d.layer_info == "--"
        assert d.time_estimate == d.time_slicer == d.time_total == "--"
        assert d.filename == "--"
        assert d.thumbnail_visible is False

    @pytest.mark.asyncio
    async def test_fetch_failure(self, fake_printer, poller, board, status_factory):
        """A failed fetch shows the error but keeps the last temperatures."""
        fake_printer.status = status_factory(
            state="printing", filename="cube.gcode", progress=0.5, print_duration=60, extruder=(215.2, 215)
        )
        await poller.poll_once()

        fake_printer.status_exception = httpx.ConnectError("Failed to fetch")
        result = await poller.poll_once()

        assert result == ErrorStatus(kind="unreachable", message="Unreachable: 192.168.1.40")
        assert poller.last_error == result
        assert poller.last_result == result

        d = board.display
        assert d.status_text == "Unreachable: 192.168.1.40"
        assert d.status_class == "error"
        assert d.percentage == "0%"
        assert d.layer_info == "--"
        assert d.time_estimate == d.time_slicer == d.time_total == "--"
        assert d.thumbnail_visible is False
        assert d.hotend_temp == "215°C / 215°C"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,message",
        [(401, "Authentication failed (401)"), (404, "API not found: 192.168.1.40"), (500, "Connection Error: HTTP 500")],
    )
    async def test_protocol_failures(self, fake_printer, poller, code, message):
        fake_printer.status_code = code

        result = await poller.poll_once()

        assert isinstance(result, ErrorStatus)
        assert result.message.startswith(message)

    @pytest.mark.asyncio
    async def test_full_print(self, fake_printer, poller, board, status_factory, gcode_factory, thumbnail_b64):
        fake_printer.metadata["benchy.gcode"] = {
            "layer_height": 0.2,
            "first_layer_height": 0.3,
            "object_height": 50.0,
            "estimated_time": 7200,
        }
        fake_printer.files["gcodes/benchy.gcode"] = gcode_factory().encode()
        fake_printer.objects = ["extruder", "heater_bed", "temperature_sensor chamber"]
        fake_printer.object_status["temperature_sensor chamber"] = {"temperature": 41.4}
        fake_printer.status = status_factory(
            state="printing",
            filename="benchy.gcode",
            progress=0.25,
            display_progress=0.24,
            print_duration=1800,
            total_duration=1900,
            z=10.4,
            extruder=(215.2, 215),
            bed=(60.1, 60),
        )

        result = await poller.poll_once()

        assert result.metadata_source == "api"
        assert result.current_layer == 51
        assert result.total_layer == 250
        assert result.time_estimate_remaining == 5400
        assert result.time_slicer_remaining == 5400
        assert result.elapsed == 1900
        assert result.thumbnail_base64 == thumbnail_b64

        d = board.display
        assert d.status_text == "Printing"
        assert d.status_class == "ok"
        assert d.percentage == "25%"
        assert d.layer_info == "51 / 250"
        assert d.time_estimate == "1h 30m"
        assert d.time_slicer == "1h 30m"
        assert d.time_total == "31m 40s"
        assert d.chamber_visible is True
        assert d.chamber_temp == "41°C / 41°C"
        assert d.thumbnail_visible is True

    @pytest.mark.asyncio
    async def test_repeat_polls_reuse_caches(self, fake_printer, poller, status_factory, gcode_factory):
        fake_printer.metadata["benchy.gcode"] = {"layer_count": 100}
        fake_printer.files["gcodes/benchy.gcode"] = gcode_factory().encode()
        fake_printer.status = status_factory(state="printing", filename="benchy.gcode", progress=0.3, print_duration=60)

        await poller.poll_once()
        await poller.poll_once()
        await poller.poll_once()

        assert len(fake_printer.calls("/server/files/metadata")) == 1
        assert len(fake_printer.calls("/server/files/gcodes/benchy.gcode")) == 1
        assert len(fake_printer.calls("/printer/objects/list")) == 1

    @pytest.mark.asyncio
    async def test_paused(self, fake_printer, poller, board, status_factory):
        fake_printer.metadata["benchy.gcode"] = {"estimated_time": 7200, "layer_count": 100}
        fake_printer.status = status_factory(state="printing", filename="benchy.gcode", progress=0.25, print_duration=1800)
        await poller.poll_once()

        fake_printer.status = status_factory(
            state="paused", filename="benchy.gcode", progress=0.25, print_duration=1800, total_duration=2400
        )
        result = await poller.poll_once()

        assert result.time_estimate_remaining is None
        assert result.time_slicer_remaining == 7200
        assert result.elapsed == 2400

        d = board.display
        assert d.status_text == "Paused"
        assert d.layer_info == "--"
        assert d.time_estimate == "--"
        assert d.time_slicer == "2h 0m"
        assert d.time_total == "40m 0s"
        assert d.thumbnail_visible is False

    @pytest.mark.asyncio
    async def test_missing_enrichment_never_fails_the_cycle(self, fake_printer, poller, status_factory):
        fake_printer.objects = None
        fake_printer.status = status_factory(state="printing", filename="cube.gcode", progress=0.1, print_duration=10)

        result = await poller.poll_once()

        assert isinstance(result, ResolvedStatus)
        assert result.chamber is None
        assert result.thumbnail_base64 is None
        assert poller.last_error is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_a_connection_error(self, poller, capture_logs):
        with patch.object(poller.client, "query_status_with_retry", AsyncMock(side_effect=KeyError("status"))):
            result = await poller.poll_once()

        assert result.kind == "connection"
        assert result.message.startswith("Connection Error:")
        assert capture_logs.get_errors()

    @pytest.mark.asyncio
    async def test_percentage_rounds_half_up(self, fake_printer, poller, board, status_factory):
        fake_printer.status = status_factory(state="printing", filename="cube.gcode", progress=0.125, print_duration=60)

        result = await poller.poll_once()

        assert result.percentage == 13
        assert board.display.percentage == "13%"

    @pytest.mark.asyncio
    async def test_listener_failure_is_contained(self, fake_printer, poller, status_factory):
        fake_printer.status = status_factory()
        seen = []

        def broken(result):
            raise RuntimeError("listener bug")

        poller.add_listener(broken)
        poller.add_listener(seen.append)

        await poller.poll_once()
        assert len(seen) == 1


class TestDebugDiagnostics:
    @pytest.mark.asyncio
    async def test_recorded_in_debug_mode(self, fake_printer, printer_config, moonraker_client, status_factory):
        fake_printer.metadata["cube.gcode"] = {"layer_count": 100, "estimated_time": 600}
        fake_printer.status = status_factory(
            state="printing", filename="cube.gcode", progress=0.5, display_progress=0.5, print_duration=300
        )
        poller = StatusPoller(printer_config.model_copy(update={"debug": True}), moonraker_client)

        await poller.poll_once()
        info = poller.debug_info

        assert info["state"] == "printing"
        assert info["progress"] == 0.5
        assert info["metadata"]["source"] == "api"
        assert "layer_count" in info["metadata"]["keys"]
        assert info["progress_layer"] == {"current": 50, "total": 100}
        assert info["slicer_total"] == 600
        assert info["slicer_remaining"] == 300

    @pytest.mark.asyncio
    async def test_error_recorded_in_debug_mode(self, fake_printer, printer_config, moonraker_client):
        fake_printer.status_code = 500
        poller = StatusPoller(printer_config.model_copy(update={"debug": True}), moonraker_client)

        await poller.poll_once()

        assert "HTTP 500" in poller.debug_info["error"]

    @pytest.mark.asyncio
    async def test_not_recorded_otherwise(self, fake_printer, poller, status_factory):
        fake_printer.status = status_factory(state="printing", filename="cube.gcode", progress=0.5)
        await poller.poll_once()
        assert poller.debug_info is None


class TestPollLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, fake_printer, printer_config, moonraker_client, status_factory):
        fake_printer.status = status_factory()
        poller = StatusPoller(printer_config.model_copy(update={"update_interval": 10}), moonraker_client)

        task = poller.start()
        assert poller.start() is task  # Only one loop per poller

        for _ in range(50):
            if len(fake_printer.calls("/printer/objects/query")) >= 2:
                break
            await asyncio.sleep(0.01)

        await poller.stop()
        assert task.done()
        assert isinstance(poller.last_result, ResolvedStatus)

    @pytest.mark.asyncio
    async def test_ticks_do_not_overlap(self, printer_config, moonraker_client):
        active = 0
        overlaps = 0

        async def slow_cycle():
            nonlocal active, overlaps
            active += 1
            overlaps += active > 1
            await asyncio.sleep(0.02)
            active -= 1
            raise PrinterConnectionError("slow")

        poller = StatusPoller(printer_config.model_copy(update={"update_interval": 1}), moonraker_client)
        with patch.object(poller.client, "query_status_with_retry", AsyncMock(side_effect=slow_cycle)):
            poller.start()
            await asyncio.sleep(0.1)
            await poller.stop()

        assert overlaps == 0
