"""Current/total layer estimation.

Sources in priority order, chosen independently for current and total:
1. Layer fields the slicer embedded and Klipper reports in print_stats.info
2. Geometry: toolhead Z against the metadata layer heights
3. Progress ratio times the metadata layer count
4. Z / 0.2 mm, for the current layer only, when nothing else is known

Estimates may be 0; callers decide what counts as displayable.
"""

import math
from dataclasses import dataclass

from printpulse.app.services.telemetry import PrinterTelemetry
from printpulse.app.utils.filenames import compute_layer_count
from printpulse.app.utils.formatting import first_non_null, first_number, round_half_up
from printpulse.app.utils.gcode_header import SlicerMetadata

# Layer height assumed by the last-resort Z estimate
FALLBACK_LAYER_HEIGHT = 0.2

SLICER_CURRENT_ALIASES = ("current_layer", "currentLayer", "layer_current", "layer")
SLICER_TOTAL_ALIASES = ("total_layer", "totalLayer", "layer_count", "layerTotal", "totalLayers")


@dataclass
class LayerPair:
    current: int | None = None
    total: int | None = None


def _as_int(value: float | None) -> int | None:
    return int(value) if value is not None else None


def layers_from_slicer(info: dict | None) -> LayerPair:
    """Layer fields from print_stats.info (SET_PRINT_STATS_INFO)."""
    if not info:
        return LayerPair()
    current = first_number(*(info.get(key) for key in SLICER_CURRENT_ALIASES))
    total = first_number(*(info.get(key) for key in SLICER_TOTAL_ALIASES))
    return LayerPair(_as_int(current), _as_int(total))


def metadata_layer_total(metadata: SlicerMetadata | None) -> int | None:
    """Layer count from metadata, or computed from object and layer heights."""
    if metadata is None:
        return None
    if metadata.layer_count:
        return int(metadata.layer_count)
    if metadata.layer_height and metadata.object_height:
        return compute_layer_count(metadata.object_height, metadata.layer_height, metadata.first_layer_height)
    return None


def layers_from_geometry(toolhead_z: float | None, metadata: SlicerMetadata | None) -> LayerPair:
    """Current layer from toolhead Z and the metadata layer heights."""
    if metadata is None:
        return LayerPair()

    total = metadata_layer_total(metadata)
    current = None
    layer_height = metadata.layer_height
    if layer_height and toolhead_z is not None:
        first_layer = metadata.first_layer_height or layer_height
        current = max(1, math.floor((toolhead_z - first_layer) / layer_height) + 1)
        if total:
            current = min(total, current)
    return LayerPair(current, total)


def layers_from_progress(progress: float | None, metadata: SlicerMetadata | None) -> LayerPair:
    """Current layer assuming every layer takes the same share of the print."""
    if metadata is None:
        return LayerPair()
    total = metadata_layer_total(metadata)
    if not total or progress is None or progress <= 0:
        return LayerPair(None, total)
    current = max(1, min(total, round_half_up(progress * total)))
    return LayerPair(current, total)


def layer_from_z(toolhead_z: float | None) -> int | None:
    """Last-resort guess assuming 0.2 mm layers."""
    if toolhead_z is None or toolhead_z <= 0:
        return None
    return max(1, math.floor(toolhead_z / FALLBACK_LAYER_HEIGHT))


def estimate_layers(telemetry: PrinterTelemetry, metadata: SlicerMetadata | None) -> LayerPair:
    """Reconcile all layer sources into one (current, total) pair."""
    slicer = layers_from_slicer(telemetry.info)
    geometry = layers_from_geometry(telemetry.toolhead_z, metadata)
    by_progress = layers_from_progress(telemetry.display_progress, metadata)

    fallback_current = None
    if not geometry.current:
        fallback_current = layer_from_z(telemetry.toolhead_z)

    return LayerPair(
        current=first_non_null(slicer.current, geometry.current, by_progress.current, fallback_current),
        total=first_non_null(slicer.total, geometry.total, by_progress.total),
    )

