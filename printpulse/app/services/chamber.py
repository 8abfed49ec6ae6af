"""Chamber temperature discovery.

Klipper has no standard name for a chamber sensor, so the sensor is found
by matching the printer's object catalog against common naming
conventions, then by probing those names directly. The first name that
works is remembered for the life of the process; the catalog itself is
cached for 30 seconds.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from printpulse.app.services.moonraker import MoonrakerClient
from printpulse.app.services.telemetry import TemperatureReading
from printpulse.app.utils.formatting import first_number

logger = logging.getLogger(__name__)

OBJECT_LIST_TTL = 30.0  # seconds

CHAMBER_CANDIDATES = (
    "temperature_sensor chamber",
    "temperature_sensor chamber_temp",
    "temperature_sensor chamber-temp",
    "temperature_sensor enclosure_temp",
    "temperature_sensor enclosure",
    "temperature_host enclosure_temp",
    "temperature_host enclosure",
    "temperature_sensor chamber2",
    "temperature_sensor enclosure_upper",
    "temperature_sensor chamber_average",
)

CURRENT_ALIASES = ("temperature", "temp", "current", "temper")
TARGET_ALIASES = ("target", "target_temp", "target_temperature")


@dataclass
class ChamberSensorCache:
    object_name: str | None = None  # Sticky once found
    object_list: list[str] | None = None
    fetched_at: float = 0.0


def parse_temperature_entry(entry: dict | None) -> TemperatureReading | None:
    """Read current/target from a sensor object; target defaults to current."""
    if not entry:
        return None
    current = first_number(*(entry.get(key) for key in CURRENT_ALIASES))
    if current is None:
        return None
    target = first_number(*(entry.get(key) for key in TARGET_ALIASES))
    return TemperatureReading(current=current, target=target if target is not None else current)


class ChamberSensorDiscoverer:
    def __init__(
        self,
        client: MoonrakerClient,
        cache: ChamberSensorCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.cache = cache or ChamberSensorCache()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get_temperature(self) -> TemperatureReading | None:
        """Current chamber reading, or None if the printer has no usable sensor."""
        async with self._lock:
            name = await self._find_object_name()
            if name:
                reading = parse_temperature_entry(await self.client.query_object(name))
                if reading is not None:
                    return reading

            for candidate in CHAMBER_CANDIDATES:
                reading = parse_temperature_entry(await self.client.query_object(candidate))
                if reading is not None:
                    if self.cache.object_name != candidate:
                        logger.info(f"Chamber sensor found by probing: {candidate}")
                    self.cache.object_name = candidate
                    return reading
            return None

    async def _find_object_name(self) -> str | None:
        if self.cache.object_name:
            return self.cache.object_name

        objects = await self._get_object_list()
        if not objects:
            return None

        lowered = [str(name).lower() for name in objects]
        for candidate in CHAMBER_CANDIDATES:
            if candidate in lowered:
                # Keep the printer's own spelling
                self.cache.object_name = objects[lowered.index(candidate)]
                logger.info(f"Chamber sensor found in object list: {self.cache.object_name}")
                return self.cache.object_name
        return None

    async def _get_object_list(self) -> list[str] | None:
        now = self._clock()
        if self.cache.object_list is not None and now - self.cache.fetched_at < OBJECT_LIST_TTL:
            return self.cache.object_list

        objects = await self.client.list_objects()
        if objects is not None:
            self.cache.object_list = objects
            self.cache.fetched_at = now
        return objects
