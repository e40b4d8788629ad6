from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from snack_index.config import Configuration
from snack_index.models import Coordinates, OpeningPeriod, PlaceDetails, RegistryCandidate


STALE_ID_MARKER = "NOT_FOUND"

SEARCH_FIELDS = "places.id,places.displayName,places.formattedAddress,places.location"
DETAIL_FIELDS = "id,displayName,formattedAddress,location,regularOpeningHours,photos"
HOURS_FIELDS = "regularOpeningHours"


class PlacesApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_stale_id(self) -> bool:
        """404 plus the registry's not-found marker: the place id was retired."""
        return self.status_code == 404 and STALE_ID_MARKER in (self.body or "")


@dataclass
class _RetryPolicy:
    retries: int = 3
    base_delay: float = 0.5


def _hhmm(point: Dict[str, Any]) -> str:
    return f"{int(point.get('hour', 0)):02d}{int(point.get('minute', 0)):02d}"


def parse_periods(hours: Optional[Dict[str, Any]]) -> List[OpeningPeriod]:
    periods: list[OpeningPeriod] = []
    for raw in (hours or {}).get("periods") or []:
        open_ = raw.get("open")
        if not open_:
            continue
        close = raw.get("close")
        periods.append(
            OpeningPeriod(
                open_day=int(open_.get("day", 0)),
                open_time=_hhmm(open_),
                close_day=(int(close.get("day", 0)) if close else None),
                close_time=(_hhmm(close) if close else None),
            )
        )
    return periods


def _parse_location(raw: Optional[Dict[str, Any]]) -> Optional[Coordinates]:
    if not raw:
        return None
    lat = raw.get("latitude")
    lon = raw.get("longitude")
    if lat is None or lon is None:
        return None
    return Coordinates(float(lat), float(lon))


class GooglePlacesClient:
    """Place registry client for Google Places API (New)."""

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.places_base_url.rstrip("/")
        self.session = session or requests.Session()
        self.policy = _RetryPolicy(retries=cfg.places_retries)

    def _request(
        self,
        method: str,
        path: str,
        *,
        field_mask: Optional[str] = None,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        self.cfg.require_places_api()
        url = f"{self.base}{path}"
        headers = {"Accept": "application/json", "X-Goog-Api-Key": self.cfg.places_api_key or ""}
        if field_mask:
            headers["X-Goog-FieldMask"] = field_mask
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json_body,
                    timeout=self.cfg.places_timeout,
                )
            except requests.RequestException as exc:  # network error
                if attempt <= self.policy.retries:
                    time.sleep(self.policy.base_delay * attempt)
                    continue
                raise PlacesApiError(f"request error: {exc}") from exc

            if resp.status_code in (429, 500, 502, 503, 504):
                if attempt <= self.policy.retries:
                    logger.debug("places {} {} -> {}, retrying", method, path, resp.status_code)
                    time.sleep(self.policy.base_delay * attempt)
                    continue
                snippet = resp.text[:300]
                raise PlacesApiError(f"upstream {resp.status_code}: {snippet}", status_code=resp.status_code, body=resp.text)

            if not resp.ok:
                snippet = resp.text[:300]
                raise PlacesApiError(f"upstream {resp.status_code}: {snippet}", status_code=resp.status_code, body=resp.text)

            try:
                return resp.json()
            except ValueError as exc:
                raise PlacesApiError("invalid json response", status_code=resp.status_code) from exc

    def text_search(self, query: str, location_bias: Optional[Coordinates] = None, radius_m: float = 5000.0) -> List[RegistryCandidate]:
        body: dict[str, Any] = {"textQuery": query}
        if location_bias is not None:
            body["locationBias"] = {
                "circle": {
                    "center": {"latitude": location_bias.latitude, "longitude": location_bias.longitude},
                    "radius": radius_m,
                }
            }
        payload = self._request("POST", "/places:searchText", field_mask=SEARCH_FIELDS, json_body=body)
        results: list[RegistryCandidate] = []
        for place in payload.get("places") or []:
            place_id = place.get("id")
            if not place_id:
                continue
            results.append(
                RegistryCandidate(
                    external_id=str(place_id),
                    name=str((place.get("displayName") or {}).get("text") or ""),
                    address=place.get("formattedAddress"),
                    coordinates=_parse_location(place.get("location")),
                )
            )
        return results

    def fetch_details(self, external_id: str) -> PlaceDetails:
        payload = self._request("GET", f"/places/{external_id}", field_mask=DETAIL_FIELDS)
        photos = payload.get("photos") or []
        return PlaceDetails(
            external_id=str(payload.get("id") or external_id),
            name=str((payload.get("displayName") or {}).get("text") or ""),
            address=payload.get("formattedAddress"),
            coordinates=_parse_location(payload.get("location")),
            periods=parse_periods(payload.get("regularOpeningHours")),
            photo_ref=(photos[0].get("name") if photos else None),
        )

    def fetch_hours(self, external_id: str) -> List[OpeningPeriod]:
        payload = self._request("GET", f"/places/{external_id}", field_mask=HOURS_FIELDS)
        return parse_periods(payload.get("regularOpeningHours"))

    def photo_url(self, photo_ref: str, width: int = 800) -> Optional[str]:
        payload = self._request(
            "GET",
            f"/{photo_ref}/media",
            params={"maxWidthPx": width, "skipHttpRedirect": "true"},
        )
        return payload.get("photoUri")
