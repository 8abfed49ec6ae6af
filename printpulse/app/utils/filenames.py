"""Filename handling for files reported by the printer.

Klipper reports the printing file relative to the gcodes root, but older
setups and some front-ends report it with extra prefixes (``~/``,
``printer_data/gcodes/``, ``gcode_files/``). Everything here turns those
into paths the file API understands, and mines the filename for the
layer height and print time that slicers like to embed in it.
"""

import re

from printpulse.app.utils.formatting import round_half_up

GCODES_ROOT = "gcodes/"

# Layer heights outside this window are not layer heights (nozzle sizes, versions, ...)
MIN_LAYER_HEIGHT = 0.05
MAX_LAYER_HEIGHT = 0.5

# "_0.2_", "_0.2.", " 0.2 ", "_0.2mm", "_0.2" at the end
_LAYER_HEIGHT_RE = re.compile(r"[_\s.]0\.(\d+)(?=[_\s.]|mm|$)", re.IGNORECASE)

# "1h46m", "2h", "45m" - but not the "m" of "mm"
_DURATION_RE = re.compile(r"(\d+)h(\d+)m|(\d+)h|(\d+)m(?!m)", re.IGNORECASE)


def normalize_filename(filename: str | None) -> str | None:
    """Canonicalize a reported file path to ``gcodes/<path>``.

    Returns None for an empty filename.
    """
    if not filename:
        return None

    name = filename
    if name.startswith("~/"):
        name = name[2:]
    name = name.lstrip("/")
    if name.startswith("printer_data/gcodes/"):
        name = GCODES_ROOT + name[len("printer_data/gcodes/") :]
    elif name.startswith("gcode_files/"):
        name = GCODES_ROOT + name[len("gcode_files/") :]
    elif name.startswith("files/"):
        name = name[len("files/") :]

    if not name.startswith(GCODES_ROOT):
        name = GCODES_ROOT + name
    return name


def strip_root(path: str) -> str:
    """Path relative to the gcodes root, as the metadata API expects it."""
    return path[len(GCODES_ROOT) :] if path.startswith(GCODES_ROOT) else path


def gcode_path_candidates(path: str) -> list[str]:
    """File API paths to try, in order, when fetching the raw G-code."""
    relative = strip_root(path)
    candidates = [
        path,
        relative,
        f"{GCODES_ROOT}{path}",
        f"printer_data/{path}",
        f"gcode_files/{relative}",
    ]
    # Keep order, drop duplicates
    return list(dict.fromkeys(candidates))


def infer_layer_height(filename: str | None) -> float | None:
    """Find a plausible layer height (0.05-0.5 mm) embedded in a filename.

    >>> infer_layer_height("benchy_0.2mm_PLA.gcode")
    0.2
    """
    if not filename:
        return None
    for match in _LAYER_HEIGHT_RE.finditer(filename):
        height = float(f"0.{match.group(1)}")
        if MIN_LAYER_HEIGHT <= height <= MAX_LAYER_HEIGHT:
            return height
    return None


def infer_estimated_time(filename: str | None) -> int | None:
    """Find a print duration like ``1h46m``, ``2h`` or ``45m`` in a filename.

    Returns seconds, or None if nothing usable is found.
    """
    if not filename:
        return None
    match = _DURATION_RE.search(filename)
    if not match:
        return None

    hours_minutes_h, hours_minutes_m, hours, minutes = match.groups()
    if hours_minutes_h and hours_minutes_m:
        seconds = int(hours_minutes_h) * 3600 + int(hours_minutes_m) * 60
    elif hours:
        seconds = int(hours) * 3600
    else:
        seconds = int(minutes) * 60
    return seconds if seconds > 0 else None


def compute_layer_count(
    object_height: float,
    layer_height: float,
    first_layer_height: float | None = None,
) -> int:
    """Layer count from object geometry: (height - first) / step + 1 rounded half up, at least 1.

    The first layer defaults to the regular layer height.
    """
    first = first_layer_height or layer_height
    return max(1, round_half_up((object_height - first) / layer_height + 1))
