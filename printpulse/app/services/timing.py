"""Print time estimates.

Three independent values, each None when its inputs are insufficient:
- remaining time extrapolated from progress
- remaining time according to the slicer's own estimate
- elapsed wall-clock time (including pauses)
"""

from dataclasses import dataclass

from printpulse.app.services.metadata import first_positive
from printpulse.app.services.telemetry import PrinterTelemetry
from printpulse.app.utils.gcode_header import SlicerMetadata

SLICER_INFO_TIME_ALIASES = (
    "estimated_time",
    "slicer_time",
    "slicer_estimated_time",
    "estimated_print_time",
    "slicer_estimated_duration",
)


@dataclass
class TimeEstimates:
    estimate_remaining: float | None = None
    slicer_remaining: float | None = None
    elapsed: float | None = None


def compute_remaining_from_progress(progress: float, print_duration: float) -> float | None:
    """Extrapolate remaining time; None at 0% (no data) and 100% (nothing left)."""
    if 0 < progress < 1:
        return print_duration / progress - print_duration
    return None


def slicer_total_seconds(metadata: SlicerMetadata | None, info: dict | None) -> float | None:
    """First positive slicer estimate from metadata, then from print_stats.info."""
    # metadata.estimated_time already holds the first positive API alias
    if metadata is not None and metadata.estimated_time and metadata.estimated_time > 0:
        return float(metadata.estimated_time)
    return first_positive(info, SLICER_INFO_TIME_ALIASES)


def slicer_remaining_seconds(slicer_total: float | None, print_duration: float) -> float | None:
    if slicer_total is None:
        return None
    return max(0.0, slicer_total - print_duration)


def elapsed_seconds(telemetry: PrinterTelemetry) -> float | None:
    """total_duration (counts paused time) if known, else print_duration."""
    if telemetry.total_duration is not None:
        return telemetry.total_duration
    return telemetry.print_duration


def estimate_times(
    telemetry: PrinterTelemetry,
    metadata: SlicerMetadata | None,
    progress: float,
) -> TimeEstimates:
    print_duration = telemetry.print_duration or 0.0
    return TimeEstimates(
        estimate_remaining=compute_remaining_from_progress(progress, print_duration),
        slicer_remaining=slicer_remaining_seconds(slicer_total_seconds(metadata, telemetry.info), print_duration),
        elapsed=elapsed_seconds(telemetry),
    )
