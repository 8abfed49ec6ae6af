"""Slicer metadata resolution for the file being printed.

Sources, first usable one wins:
1. Moonraker's metadata API (what its own file scanner extracted)
2. The G-code header itself, fetched as a byte range and parsed here
3. Conventions in the filename (``_0.2mm_``, ``_1h46m_``) to fill gaps

The result is kept in a single-slot cache keyed by filename, so a print in
progress costs one lookup rather than one per poll.
"""

import asyncio
import logging
from dataclasses import dataclass

from printpulse.app.services.moonraker import MoonrakerClient
from printpulse.app.utils.filenames import (
    gcode_path_candidates,
    infer_estimated_time,
    infer_layer_height,
    normalize_filename,
    strip_root,
)
from printpulse.app.utils.formatting import as_number, first_number
from printpulse.app.utils.gcode_header import SlicerMetadata, parse_gcode_header

logger = logging.getLogger(__name__)

SOURCE_API = "api"
SOURCE_GCODE_HEADER = "gcode-header"

# Header range fetched when the API has nothing; slicer settings sit well inside it
HEADER_FETCH_BYTES = 64 * 1024

LAYER_COUNT_ALIASES = ("layer_count", "total_layer", "total_layers")
ESTIMATED_TIME_ALIASES = (
    "estimated_time",
    "slicer_estimated_time",
    "slicer_time",
    "estimated_print_time",
    "slicer_estimated_duration",
    "print_time",
)


def first_positive(record: dict | None, aliases: tuple[str, ...]) -> float | None:
    """First alias in record holding a number above zero."""
    if not record:
        return None
    for key in aliases:
        value = as_number(record.get(key))
        if value is not None and value > 0:
            return value
    return None


def metadata_from_api(result: dict | None) -> SlicerMetadata | None:
    """Map a metadata API record onto SlicerMetadata.

    Returns None when the record carries none of the fields we use (the
    API always reports size/modified, even for files it could not parse).
    """
    if not result:
        return None
    layer_count = first_number(*(result.get(key) for key in LAYER_COUNT_ALIASES))
    meta = SlicerMetadata(
        layer_height=as_number(result.get("layer_height")),
        first_layer_height=as_number(result.get("first_layer_height")),
        layer_count=int(layer_count) if layer_count is not None else None,
        object_height=as_number(result.get("object_height")),
        estimated_time=first_positive(result, ESTIMATED_TIME_ALIASES),
        raw=result,
    )
    return None if meta.is_empty() else meta


def backfill_from_filename(meta: SlicerMetadata, filename: str):
    """Fill layer height and estimated time from filename conventions.

    Only missing fields are set; derived fields are recomputed from
    whichever two of height/layer height/layer count are known.
    """
    if not meta.layer_height:
        inferred = infer_layer_height(filename)
        if inferred is not None:
            logger.debug("Inferred layer height %s from filename %s", inferred, filename)
            meta.layer_height = inferred
    meta.fill_derived()

    if not meta.estimated_time:
        seconds = infer_estimated_time(filename)
        if seconds:
            logger.debug("Inferred estimated time %ss from filename %s", seconds, filename)
            meta.estimated_time = seconds


@dataclass
class MetadataCache:
    """Single-slot cache; only valid for the file named in ``filename``."""

    filename: str | None = None
    data: SlicerMetadata | None = None
    source: str | None = None

    def holds(self, filename: str) -> bool:
        return self.filename == filename and self.data is not None

    def clear(self):
        self.filename = None
        self.data = None
        self.source = None


class MetadataResolver:
    """Resolves and caches slicer metadata for the printing file."""

    def __init__(self, client: MoonrakerClient, cache: MetadataCache | None = None):
        self.client = client
        self.cache = cache or MetadataCache()
        self._lock = asyncio.Lock()

    async def resolve(self, filename: str | None, print_state: str) -> SlicerMetadata | None:
        """Return metadata for filename, loading it if the cache holds another file.

        Nothing is fetched unless the printer is printing; the cached entry
        is returned as-is in that case.
        """
        if print_state != "printing" or not filename:
            return self.cache.data

        async with self._lock:
            if self.cache.holds(filename):
                return self.cache.data

            self.cache.filename = filename
            self.cache.data = None
            self.cache.source = None

            data, source = await self._fetch(filename)
            if data is not None:
                backfill_from_filename(data, filename)

            # A newer file may have claimed the slot while we were waiting
            if self.cache.filename != filename:
                logger.debug("Discarding metadata for %s, cache now tracks %s", filename, self.cache.filename)
                return self.cache.data

            self.cache.data = data
            self.cache.source = source
            if data is None:
                logger.info("No slicer metadata found for %s", filename)
            else:
                logger.info("Loaded metadata for %s from %s: %s", filename, source, ", ".join(data.known_fields()))
            return data

    async def _fetch(self, filename: str) -> tuple[SlicerMetadata | None, str | None]:
        path = normalize_filename(filename)
        if not path:
            return None, None
        try:
            meta = await self._fetch_from_api(path)
            if meta is not None:
                return meta, SOURCE_API

            meta = await self._fetch_from_gcode(path)
            if meta is not None:
                return meta, SOURCE_GCODE_HEADER
        except Exception as e:
            logger.warning(f"Metadata lookup for {filename} failed: {e}")
        return None, None

    async def _fetch_from_api(self, path: str) -> SlicerMetadata | None:
        result = await self.client.get_file_metadata(strip_root(path))
        return metadata_from_api(result)

    async def _fetch_from_gcode(self, path: str) -> SlicerMetadata | None:
        for candidate in gcode_path_candidates(path):
            text = await self.client.fetch_file_head(candidate, HEADER_FETCH_BYTES)
            if text is None:
                continue
            meta = parse_gcode_header(text)
            if meta is not None:
                logger.debug("Parsed G-code header from %s", candidate)
                return meta
        return None
