"""Display state of the overlay template.

The board is the one place status values are turned into text. Each
update writes from a single ResolvedStatus (or ErrorStatus), so no field
ever mixes two snapshots.
"""

from printpulse.app.schemas.status import ErrorStatus, OverlayDisplay, ResolvedStatus
from printpulse.app.utils.formatting import (
    PLACEHOLDER,
    format_filename,
    format_layer_info,
    format_temperature,
    format_time,
)


class OverlayBoard:
    def __init__(self, printer_name: str, show_chamber: bool = False):
        self.show_chamber = show_chamber
        self.display = OverlayDisplay(printer_name=printer_name)
        self.thumbnail: str | None = None

    def apply(self, status: ResolvedStatus):
        d = self.display

        if status.hotend is not None:
            d.hotend_temp = format_temperature(status.hotend.current, status.hotend.target)
        if status.bed is not None:
            d.bed_temp = format_temperature(status.bed.current, status.bed.target)
        self._apply_chamber(status)

        d.status_text = status.state[:1].upper() + status.state[1:]

        if status.state == "printing":
            d.status_class = "ok"
            d.progress_width = f"{status.percentage}%"
            d.percentage = f"{status.percentage}%"
            d.layer_info = format_layer_info(status.current_layer, status.total_layer)
            self._apply_times(status)
            d.filename = format_filename(status.filename) or "Unknown"
            if status.thumbnail_base64:
                self.thumbnail = status.thumbnail_base64
                d.thumbnail_visible = True
                d.thumbnail_filename = status.filename or PLACEHOLDER
            else:
                self._hide_thumbnail()
        elif status.state == "paused":
            # Progress and filename keep showing where the print stopped
            d.status_class = "idle"
            d.layer_info = PLACEHOLDER
            self._apply_times(status)
            self._hide_thumbnail()
        else:
            d.status_class = "idle"
            self._reset_progress()
            d.filename = PLACEHOLDER
            self._hide_thumbnail()

    def apply_error(self, error: ErrorStatus):
        """Show the error; temperatures keep their last known values."""
        self.display.status_text = error.message
        self.display.status_class = "error"
        self._reset_progress()
        self._hide_thumbnail()

    def _apply_chamber(self, status: ResolvedStatus):
        d = self.display
        if status.chamber is not None:
            d.chamber_visible = True
            d.chamber_temp = format_temperature(status.chamber.current, status.chamber.target)
        elif self.show_chamber:
            d.chamber_visible = True
            d.chamber_temp = PLACEHOLDER
        else:
            d.chamber_visible = False

    def _apply_times(self, status: ResolvedStatus):
        self.display.time_estimate = format_time(status.time_estimate_remaining)
        self.display.time_slicer = format_time(status.time_slicer_remaining)
        self.display.time_total = format_time(status.elapsed)

    def _reset_progress(self):
        d = self.display
        d.progress_width = "0%"
        d.percentage = "0%"
        d.layer_info = PLACEHOLDER
        d.time_estimate = PLACEHOLDER
        d.time_slicer = PLACEHOLDER
        d.time_total = PLACEHOLDER

    def _hide_thumbnail(self):
        self.thumbnail = None
        self.display.thumbnail_visible = False
        self.display.thumbnail_filename = PLACEHOLDER
