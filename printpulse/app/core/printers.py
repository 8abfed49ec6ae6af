"""Printer configuration loading.

Resolves the printer to watch from, in order:
- the printers file (``printers.json``), then its ``.example`` template
- query-string style overrides merged over the selected entry
- the plain settings fields (``PRINTER_IP``, ``PRINTER_NAME``, ...)

A printers file holds either a JSON array of entries or an object with a
``printers`` array. Entries use the overlay's camelCase keys::

    [{"id": "voron", "name": "Voron 2.4", "ip": "192.168.1.40",
      "camera": "", "flipHorizontal": false, "showChamber": true}]
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path

from printpulse.app.core.config import Settings
from printpulse.app.schemas.printer import PrinterConfig

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL = 2000

# Query parameter -> config key. Later aliases win over earlier ones.
_QUERY_ALIASES = [
    ("ip", "ip"),
    ("host", "ip"),
    ("name", "name"),
    ("label", "name"),
    ("camera", "camera"),
    ("flipX", "flipHorizontal"),
    ("flipHorizontal", "flipHorizontal"),
    ("flipY", "flipVertical"),
    ("flipVertical", "flipVertical"),
    ("chamber", "showChamber"),
    ("showChamber", "showChamber"),
    ("interval", "updateInterval"),
    ("updateInterval", "updateInterval"),
    ("debug", "debug"),
]
_BOOL_KEYS = {"flipHorizontal", "flipVertical", "showChamber", "debug"}


class PrinterConfigError(Exception):
    """Raised when no usable printer configuration can be found."""


def parse_bool(value) -> bool:
    """Parse a loose boolean: True, "true", "1" and "yes" are truthy."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def parse_query_config(params: Mapping[str, str] | None) -> dict:
    """Turn query-string style parameters into config overrides."""
    if not params:
        return {}
    cfg: dict = {}
    for param, key in _QUERY_ALIASES:
        value = params.get(param)
        if not value:
            continue
        if key in _BOOL_KEYS:
            cfg[key] = parse_bool(value)
        elif key == "updateInterval":
            try:
                cfg[key] = int(float(value))
            except ValueError:
                logger.warning(f"Ignoring non-numeric update interval: {value!r}")
        else:
            cfg[key] = value
    return cfg


def _unwrap_printer_list(data) -> list[dict] | None:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("printers"), list):
        return data["printers"]
    return None


def read_printer_list(path: Path) -> list[dict] | None:
    """Read a printers file. Returns None if missing, unreadable or malformed."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read printer list from {path}: {e}")
        return None
    printers = _unwrap_printer_list(data)
    if printers is None:
        logger.warning(f"Printer list in {path} is neither an array nor has a 'printers' array")
    return printers


def find_printer_list(printers_file: Path) -> list[dict] | None:
    """Load the printers file, falling back to its example template."""
    printers = read_printer_list(printers_file)
    if printers:
        return printers
    example = printers_file.with_name(printers_file.name + ".example")
    printers = read_printer_list(example)
    if printers:
        logger.info(f"Using example printer list: {example}")
    return printers or None


def select_config(printers: list[dict], key: str) -> dict | None:
    """Find the entry whose id, name or label matches key (case-insensitive)."""
    if not key:
        return None
    wanted = key.lower()
    for cfg in printers:
        ident = str(cfg.get("id") or cfg.get("name") or cfg.get("label") or "").lower()
        if ident == wanted:
            return cfg
    return None


def build_printer_config(raw: dict, settings: Settings) -> PrinterConfig:
    """Apply defaults and aliases to a raw config entry."""
    ip = raw.get("ip") or raw.get("host") or settings.printer_ip or "localhost"
    name = raw.get("name") or raw.get("label") or settings.printer_name or "Printer"

    camera = raw.get("camera") or settings.camera_url
    if not camera and ip != "localhost":
        camera = f"{ip.rstrip('/')}/webcam/?action=stream"
        if not camera.startswith(("http://", "https://")):
            camera = f"http://{camera}"

    interval_raw = raw.get("updateInterval") or raw.get("intervalMs") or settings.update_interval_ms
    try:
        interval = int(float(interval_raw))
    except (TypeError, ValueError):
        interval = DEFAULT_UPDATE_INTERVAL
    if interval <= 0:
        interval = DEFAULT_UPDATE_INTERVAL

    return PrinterConfig(
        name=name,
        ip=ip,
        camera=camera,
        flip_horizontal=parse_bool(raw.get("flipHorizontal", settings.camera_flip_x)),
        flip_vertical=parse_bool(raw.get("flipVertical", settings.camera_flip_y)),
        show_chamber=parse_bool(raw.get("showChamber", settings.show_chamber)),
        update_interval=interval,
        debug=parse_bool(raw.get("debug", settings.debug)),
    )


def load_printer_config(
    settings: Settings,
    key: str | None = None,
    overrides: Mapping[str, str] | None = None,
) -> PrinterConfig:
    """Resolve the printer configuration the status poller runs against.

    Args:
        settings: Application settings (printers file location and fallbacks)
        key: Printer id/name/label to pick from the list; defaults to settings.printer
        overrides: Query-string style parameters merged over the selected entry

    Raises:
        PrinterConfigError: If no source yields a printer address.
    """
    key = (key if key is not None else settings.printer).lower()
    query = parse_query_config(overrides)

    printers = find_printer_list(settings.printers_file)
    if printers:
        base = select_config(printers, key)
        if base is None:
            if key:
                logger.warning(f"No printer matches '{key}', using the first entry")
            base = printers[0]
        raw = {**base, **query}
    elif query.get("ip") or settings.printer_ip:
        raw = query
    else:
        raise PrinterConfigError(
            "No printer config found. Create printers.json or set PRINTER_IP (or pass ip=...)."
        )

    config = build_printer_config(raw, settings)
    logger.info(f"Printer config resolved: name={config.name}, ip={config.ip}, camera={config.camera or 'none'}")
    return config
