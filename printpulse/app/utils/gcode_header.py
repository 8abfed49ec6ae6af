"""Slicer metadata and thumbnail extraction from G-code headers.

Slicers write their settings as comment lines at the top of the file, each
with its own spelling::

    ;Layer height: 0.2              (Cura)
    ;LAYER_COUNT:245                (Cura)
    ;MAXZ:49.2                      (Cura)
    ; layer_height = 0.2            (PrusaSlicer / SuperSlicer / Orca)
    ; first_layer_height = 0.3
    ; estimated printing time (normal mode) = 1h 46m 12s

Each field has an ordered list of patterns. The first pattern that matches
on any line sets the field, and a field is never overwritten once set
during a parse.
"""

import re
from dataclasses import dataclass, field, fields

from printpulse.app.utils.filenames import compute_layer_count
from printpulse.app.utils.formatting import as_number

# Only this many lines are considered; slicer settings live at the top
MAX_HEADER_LINES = 500

_NUM = r"(\d*\.?\d+)"
_INT = r"(\d+)"
_SEP = r"(?:\s*[:=]\s*|\s+)"

_FIELD_PATTERNS: list[tuple[str, list[re.Pattern], type]] = [
    (
        "layer_height",
        [
            re.compile(rf"(?<!first[_ ])(?<!initial[_ ])(?<!max[_ ])(?<!min[_ ])layer[_ ]?height{_SEP}{_NUM}", re.I),
        ],
        float,
    ),
    (
        "first_layer_height",
        [
            re.compile(rf"first[_ ]?layer[_ ]?height{_SEP}{_NUM}", re.I),
            re.compile(rf"initial[_ ]?layer[_ ]?(?:print[_ ]?)?height{_SEP}{_NUM}", re.I),
        ],
        float,
    ),
    (
        "layer_count",
        [
            re.compile(rf"layer[_ ]?(?:count|totals?){_SEP}{_INT}", re.I),
            re.compile(rf"total[_ ]?layers?(?:[_ ]?(?:count|number))?{_SEP}{_INT}", re.I),
        ],
        int,
    ),
    (
        "estimated_time",
        [
            re.compile(rf"(?:estimated[_ ]?time|estimated[_ ]?print[_ ]?time|print[_ ]?time){_SEP}{_NUM}", re.I),
            re.compile(rf"^;\s*time{_SEP}{_NUM}", re.I),
            re.compile(rf"estimated_printing_time\(normal\){_SEP}{_NUM}", re.I),
        ],
        float,
    ),
    (
        "object_height",
        [
            re.compile(rf"(?:maxz|max_z|object[_ ]?height|(?<![a-z_])(?<![a-z] )height){_SEP}{_NUM}", re.I),
        ],
        float,
    ),
]

# "; estimated printing time (normal mode) = 1d 2h 3m 4s"
_DURATION_LINE_RE = re.compile(r"estimated printing time \(normal mode\)\s*=\s*(.+)", re.I)
_DURATION_PARTS = [(re.compile(r"(\d+)d"), 86400), (re.compile(r"(\d+)h"), 3600),
                   (re.compile(r"(\d+)m"), 60), (re.compile(r"(\d+)s"), 1)]

# Free-text layer height when only the object height was found
_LOOSE_LAYER_HEIGHT_RE = re.compile(r"layer[_ ]?height.*?(0\.\d+)", re.I)

_THUMBNAIL_RE = re.compile(r"; thumbnail(?:_png)? begin \d+x\d+ \d+(.*?); thumbnail(?:_png)? end", re.I | re.S)


@dataclass
class SlicerMetadata:
    """Best-effort slicer metadata for one file. Any subset may be known."""

    layer_height: float | None = None
    first_layer_height: float | None = None
    layer_count: int | None = None
    object_height: float | None = None
    estimated_time: float | None = None
    raw: dict = field(default_factory=dict)  # Untouched API record, if any

    def known_fields(self) -> list[str]:
        return [f.name for f in fields(self) if f.name != "raw" and getattr(self, f.name) is not None]

    def is_empty(self) -> bool:
        return not self.known_fields()

    def fill_derived(self):
        """Derive object height or layer count from the other two when missing.

        Explicitly provided values are never replaced.
        """
        if self.object_height is None and self.layer_height and self.layer_count:
            self.object_height = self.layer_height * self.layer_count
        if self.object_height and self.layer_height and self.layer_count is None:
            self.layer_count = compute_layer_count(self.object_height, self.layer_height, self.first_layer_height)


def _parse_duration(text: str) -> int | None:
    total = 0
    for pattern, multiplier in _DURATION_PARTS:
        match = pattern.search(text)
        if match:
            total += int(match.group(1)) * multiplier
    return total or None


def parse_gcode_header(text: str | None) -> SlicerMetadata | None:
    """Extract slicer metadata from the comment lines at the top of a G-code file.

    Args:
        text: The start of the file (it may be cut mid-line)

    Returns:
        SlicerMetadata, or None if no field could be found.
    """
    if not text:
        return None

    meta = SlicerMetadata()
    for raw_line in text.splitlines()[:MAX_HEADER_LINES]:
        line = raw_line.strip()
        if not line.startswith(";"):
            continue

        for name, patterns, cast in _FIELD_PATTERNS:
            if getattr(meta, name) is not None:
                continue
            for pattern in patterns:
                match = pattern.search(line)
                if not match:
                    continue
                value = as_number(match.group(1))
                if value is not None:
                    setattr(meta, name, cast(value))
                    break

        if meta.estimated_time is None:
            duration = _DURATION_LINE_RE.search(line)
            if duration:
                meta.estimated_time = _parse_duration(duration.group(1))

    if meta.object_height is None and meta.layer_height and meta.layer_count:
        meta.object_height = meta.layer_height * meta.layer_count

    if meta.object_height and meta.layer_height is None and meta.layer_count is None:
        loose = _LOOSE_LAYER_HEIGHT_RE.search(text)
        if loose:
            meta.layer_height = float(loose.group(1))

    if meta.object_height and meta.layer_height and meta.layer_count is None:
        meta.layer_count = compute_layer_count(meta.object_height, meta.layer_height, meta.first_layer_height)

    return None if meta.is_empty() else meta


def extract_thumbnail(text: str | None) -> str | None:
    """Return the base64 payload of the last embedded thumbnail block.

    Slicers write thumbnails smallest first, so the last block is the
    largest. Returns None when no complete block is present (for example
    when the fetched range ends inside the first block).
    """
    if not text:
        return None

    last_block = None
    for match in _THUMBNAIL_RE.finditer(text):
        lines = (line.strip().lstrip(";").strip() for line in match.group(1).splitlines())
        last_block = "".join(line for line in lines if line)
    return last_block or None
