"""Reverse geocoding using OpenStreetMap Nominatim.

Resolves a latitude/longitude pair to a human-readable address. The lookup is
best-effort: any failure is logged and reported as ``None`` so that request
creation never depends on the external service being up.
"""

import logging

import httpx

from medidispatch.config import (
    GEOCODING_ENABLED,
    GEOCODING_TIMEOUT,
    GEOCODING_USER_AGENT,
    NOMINATIM_URL,
)

logger = logging.getLogger(__name__)


def _make_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=GEOCODING_TIMEOUT,
        headers={"User-Agent": GEOCODING_USER_AGENT},
    )


async def reverse_geocode(lat: str | float, lng: str | float) -> str | None:
    """Return the Nominatim ``display_name`` for a coordinate, or None."""
    if not GEOCODING_ENABLED:
        logger.debug("Reverse geocoding disabled, skipping lookup for %s,%s", lat, lng)
        return None

    try:
        async with _make_client() as client:
            resp = await client.get(
                NOMINATIM_URL,
                params={
                    "format": "jsonv2",
                    "lat": str(lat),
                    "lon": str(lng),
                    "addressdetails": 1,
                },
            )
            resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPStatusError as e:
        logger.warning("Reverse geocode failed with status %s", e.response.status_code)
        return None
    except httpx.HTTPError as e:
        logger.warning("Reverse geocode request error: %s", e)
        return None
    except ValueError as e:
        logger.warning("Reverse geocode returned invalid JSON: %s", e)
        return None

    display = data.get("display_name") if isinstance(data, dict) else None
    if not display:
        logger.info("Reverse geocode found no address for %s,%s", lat, lng)
        return None
    return display
