"""Jurisdiction resolution for ambulance requests.

A request's jurisdiction (state and district) decides which state-level
admins hear about it. It is derived once, at creation time, from the pickup
address: coordinate pairs are reverse-geocoded first, free text is matched
directly against the known state/district list.
"""

import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from medidispatch.config import STATES_DISTRICTS_PATH
from medidispatch.services.geocoding import reverse_geocode

logger = logging.getLogger(__name__)

COORDINATE_PAIR = re.compile(r"^\s*-?\d+(?:\.\d+)?\s*,\s*-?\d+(?:\.\d+)?\s*$")

Geocoder = Callable[[str, str], Awaitable[str | None]]


@dataclass(frozen=True)
class Jurisdiction:
    state: str | None = None
    district: str | None = None


def is_coordinate_pair(text: str | None) -> bool:
    return bool(text) and COORDINATE_PAIR.match(text) is not None


class StateDistrictDirectory:
    """Case-insensitive lookup of known state and district names."""

    def __init__(self, states: list[dict]) -> None:
        self._states: dict[str, str] = {}
        self._districts: dict[str, str] = {}
        for state in states:
            name = state.get("name")
            if name:
                self._states[name.lower()] = name
            for district in state.get("districts") or []:
                if district:
                    self._districts[district.lower()] = district

    @classmethod
    def from_file(cls, path: str | Path) -> "StateDistrictDirectory":
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        return cls(data.get("states", []))

    def _match(self, lookup: dict[str, str], part: str) -> str | None:
        exact = lookup.get(part.lower())
        if exact:
            return exact
        for word in part.split():
            found = lookup.get(word.lower())
            if found:
                return found
        return None

    def parse_address(self, address: str | None) -> Jurisdiction:
        """Extract state and district from a comma-separated address.

        Each comma-separated part is checked as a whole, then word by word.
        When several parts match, the last one wins.
        """
        state = None
        district = None
        for part in (address or "").split(","):
            part = part.strip()
            if not part:
                continue
            state = self._match(self._states, part) or state
            district = self._match(self._districts, part) or district
        return Jurisdiction(state=state, district=district)


@lru_cache(maxsize=1)
def get_directory() -> StateDistrictDirectory:
    return StateDistrictDirectory.from_file(STATES_DISTRICTS_PATH)


class LocationResolver:
    """Resolves a pickup address into a jurisdiction."""

    def __init__(self, directory: StateDistrictDirectory, geocoder: Geocoder = reverse_geocode) -> None:
        self.directory = directory
        self.geocoder = geocoder

    async def resolve(self, pickup_address: str) -> Jurisdiction:
        if not is_coordinate_pair(pickup_address):
            return self.directory.parse_address(pickup_address)

        lat, lng = (v.strip() for v in pickup_address.split(","))
        try:
            display = await self.geocoder(lat, lng)
        except Exception:
            logger.exception("Reverse geocoder raised for %s,%s", lat, lng)
            display = None
        if not display:
            return Jurisdiction()
        return self.directory.parse_address(display)


def get_location_resolver() -> LocationResolver:
    """FastAPI dependency; override in tests to swap the matching strategy."""
    return LocationResolver(get_directory())
