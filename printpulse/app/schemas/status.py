from typing import Literal

from pydantic import BaseModel, Field

from printpulse.app.services.telemetry import TemperatureReading

ErrorKind = Literal["unreachable", "authentication", "not_found", "connection"]


class ResolvedStatus(BaseModel):
    """Everything one poll cycle derived from a single telemetry snapshot."""

    state: str
    progress_ratio: float = Field(0.0, ge=0.0, le=1.0)
    percentage: int = Field(0, ge=0, le=100)
    current_layer: int | None = None
    total_layer: int | None = None
    time_estimate_remaining: float | None = None  # seconds, from progress
    time_slicer_remaining: float | None = None  # seconds, from the slicer estimate (its total while paused)
    elapsed: float | None = None  # seconds, including pauses
    hotend: TemperatureReading | None = None
    bed: TemperatureReading | None = None
    chamber: TemperatureReading | None = None
    filename: str | None = None
    thumbnail_base64: str | None = None
    metadata_source: str | None = None


class ErrorStatus(BaseModel):
    kind: ErrorKind
    message: str


class OverlayDisplay(BaseModel):
    """Text as the overlay template shows it."""

    printer_name: str
    status_text: str = "--"
    status_class: Literal["ok", "idle", "error"] = "idle"
    progress_width: str = "0%"
    percentage: str = "0%"
    layer_info: str = "--"
    time_estimate: str = "--"
    time_slicer: str = "--"
    time_total: str = "--"
    filename: str = "--"
    hotend_temp: str = "--"
    bed_temp: str = "--"
    chamber_temp: str = "--"
    chamber_visible: bool = False
    thumbnail_visible: bool = False
    thumbnail_filename: str = "--"
