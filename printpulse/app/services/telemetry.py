"""Typed view of one consolidated Moonraker status snapshot."""

import math
from dataclasses import dataclass, field

from printpulse.app.utils.formatting import as_number, clamp


@dataclass
class TemperatureReading:
    current: float
    target: float

    @classmethod
    def from_heater(cls, heater: dict | None) -> "TemperatureReading | None":
        """Build a reading from an extruder/heater_bed object."""
        if not heater:
            return None
        current = as_number(heater.get("temperature"))
        if current is None:
            return None
        target = as_number(heater.get("target"))
        return cls(current=current, target=target if target is not None else 0.0)


@dataclass
class PrinterTelemetry:
    """One poll's worth of printer state. Never persisted."""

    state: str = "unknown"
    filename: str | None = None
    print_duration: float | None = None
    total_duration: float | None = None
    info: dict = field(default_factory=dict)  # print_stats.info (slicer layer fields)
    display_progress: float | None = None
    sdcard_progress: float | None = None
    extruder: TemperatureReading | None = None
    heater_bed: TemperatureReading | None = None
    toolhead_z: float | None = None

    @classmethod
    def from_status(cls, status: dict) -> "PrinterTelemetry":
        print_stats = status.get("print_stats") or {}
        display_status = status.get("display_status") or {}
        virtual_sdcard = status.get("virtual_sdcard") or {}
        toolhead = status.get("toolhead") or {}

        position = toolhead.get("position")
        toolhead_z = None
        if isinstance(position, (list, tuple)) and len(position) > 2:
            toolhead_z = as_number(position[2])

        info = print_stats.get("info")
        return cls(
            state=str(print_stats.get("state") or "unknown"),
            filename=print_stats.get("filename") or None,
            print_duration=as_number(print_stats.get("print_duration")),
            total_duration=as_number(print_stats.get("total_duration")),
            info=info if isinstance(info, dict) else {},
            display_progress=_progress(display_status.get("progress")),
            sdcard_progress=_progress(virtual_sdcard.get("progress")),
            extruder=TemperatureReading.from_heater(status.get("extruder")),
            heater_bed=TemperatureReading.from_heater(status.get("heater_bed")),
            toolhead_z=toolhead_z,
        )

    @property
    def progress(self) -> float:
        """Print progress in [0, 1]; virtual_sdcard is preferred, as Mainsail does."""
        raw = self.sdcard_progress if self.sdcard_progress is not None else self.display_progress
        return clamp(raw) if raw is not None else 0.0


def _progress(value) -> float | None:
    # Only real numbers count; a progress of "0.5" is not trusted
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None
