"""Async NHTSA vPIC client used for deal-sheet vehicle-spec enrichment.

The vPIC API is free and requires no authentication.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import aiohttp

from tradeup_mcp.constants import VIN_RE
from tradeup_mcp.errors import InvalidInputError

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=8)
_CACHE_TTL_SECONDS = 900  # 15 minutes

# vPIC field name -> vehicle spec key
_SPEC_FIELDS: dict[str, str] = {
    "ModelYear": "year",
    "Make": "make",
    "Model": "model",
    "Trim": "trim",
    "BodyClass": "bodyClass",
    "DriveType": "driveType",
    "EngineCylinders": "engineCylinders",
    "DisplacementL": "displacementL",
    "FuelTypePrimary": "fuelType",
    "TransmissionStyle": "transmission",
    "Doors": "doors",
    "PlantCountry": "plantCountry",
}


class _TTLCache:
    """Simple in-memory cache with per-entry TTL."""

    def __init__(self, ttl: int = _CACHE_TTL_SECONDS) -> None:
        self._store: dict[str, tuple[float, Any]] = {}
        self._ttl = ttl

    def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        ts, value = entry
        if time.monotonic() - ts > self._ttl:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._store[key] = (time.monotonic(), value)

    def clear(self) -> None:
        self._store.clear()


SHARED_NHTSA_CACHE = _TTLCache()


def normalize_vin(vin: str) -> str:
    normalized = (vin or "").strip().upper()
    if not VIN_RE.fullmatch(normalized):
        raise InvalidInputError(
            f"Invalid VIN '{vin}'. VIN must be exactly 17 characters "
            "(letters/digits, excluding I/O/Q).",
            details={"vin": vin},
        )
    return normalized


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or stripped.lower() in {"not applicable", "null"}:
            return None
        return stripped
    return value


def normalize_vin_specs(vin: str, raw: dict[str, Any]) -> dict[str, Any] | None:
    """Map a vPIC result row onto the vehicle-spec snapshot keys.

    Returns None when the row does not identify a vehicle (no make/model).
    """
    specs: dict[str, Any] = {"vin": vin}
    for source_key, target_key in _SPEC_FIELDS.items():
        specs[target_key] = _clean(raw.get(source_key))

    if not specs["make"] or not specs["model"]:
        return None

    year = specs.get("year")
    if isinstance(year, str):
        try:
            specs["year"] = int(year)
        except ValueError:
            specs["year"] = None
    return specs


class NHTSAClient:
    """Async client for the NHTSA vPIC VIN decode endpoint."""

    VPIC_BASE = "https://vpic.nhtsa.dot.gov/api/vehicles"

    def __init__(self, *, cache: _TTLCache | None = None) -> None:
        self.session: aiohttp.ClientSession | None = None
        self._cache = cache or _TTLCache()

    async def __aenter__(self) -> NHTSAClient:
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self.session:
            await self.session.close()

    async def _request(self, url: str, params: dict[str, str] | None = None) -> Any:
        """Make a GET request with retry on transient failures."""
        if not self.session:
            raise RuntimeError("Client not entered as context manager")

        cache_key = f"{url}|{params}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        last_exc: Exception | None = None
        for attempt in range(2):  # 1 retry
            try:
                async with self.session.get(
                    url, params=params, timeout=_REQUEST_TIMEOUT
                ) as resp:
                    if resp.status >= 500:
                        last_exc = aiohttp.ClientResponseError(
                            resp.request_info,
                            resp.history,
                            status=resp.status,
                        )
                        if attempt == 0:
                            continue
                        raise last_exc
                    resp.raise_for_status()
                    data = await resp.json()
                    self._cache.set(cache_key, data)
                    return data
            except (aiohttp.ClientError, TimeoutError) as exc:
                last_exc = exc
                if attempt == 0:
                    continue
                raise

        raise last_exc  # type: ignore[misc]  # pragma: no cover

    async def decode_vin(self, vin: str) -> dict[str, Any] | None:
        """Decode a VIN via the NHTSA vPIC API. Returns the raw result row."""
        try:
            data = await self._request(
                f"{self.VPIC_BASE}/DecodeVINValuesExtended/{vin}",
                params={"format": "json"},
            )
            results = data.get("Results", [])
            return results[0] if results else None
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error("NHTSA VIN decode error for %s: %s", vin, exc)
            return None


class NHTSASpecDecoder:
    """Vehicle-specification lookup: ``await decoder.decode(vin)``.

    Opens a short-lived client session per call; responses are cached in
    ``SHARED_NHTSA_CACHE`` so repeated deal sheets for the same VIN do not
    hit the network twice.
    """

    def __init__(self, *, cache: _TTLCache | None = None) -> None:
        self._cache = cache or SHARED_NHTSA_CACHE

    async def decode(self, vin: str) -> dict[str, Any] | None:
        normalized = normalize_vin(vin)
        async with NHTSAClient(cache=self._cache) as client:
            raw = await client.decode_vin(normalized)
        if not raw:
            return None
        return normalize_vin_specs(normalized, raw)
