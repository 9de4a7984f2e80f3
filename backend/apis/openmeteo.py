from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from config import forecast_url, geocoding_url
from errors import ParseError
from features.types import MapFeature
from net.http import RateLimitedSession


class GeocodingParams(BaseModel):
    name: str
    count: int = Field(default=1, ge=1, le=100)
    language: str = "en"


class ForecastParams(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    current: list[str] = Field(default_factory=lambda: ["temperature_2m", "wind_speed_10m"])
    hourly: list[str] = Field(default_factory=list)
    daily: list[str] = Field(default_factory=list)
    timezone: str = "auto"


class OpenMeteoParams(BaseModel):
    """
    Typed parameters of an Open-Meteo request.

    Exactly one of `geocoding` / `forecast` is set, matching `endpoint`.
    """

    endpoint: Literal["geocoding", "forecast"]
    geocoding: GeocodingParams | None = None
    forecast: ForecastParams | None = None

    @classmethod
    def for_geocoding(cls, name: str, count: int = 1, language: str | None = None) -> "OpenMeteoParams":
        return cls(
            endpoint="geocoding",
            geocoding=GeocodingParams(name=name, count=count, language=language or "en"),
        )

    @classmethod
    def for_forecast(cls, latitude: float, longitude: float, **kwargs: Any) -> "OpenMeteoParams":
        return cls(
            endpoint="forecast",
            forecast=ForecastParams(latitude=latitude, longitude=longitude, **kwargs),
        )


class GeocodingResult(BaseModel):
    id: int
    name: str
    latitude: float
    longitude: float
    elevation: float | None = None
    feature_code: str | None = None
    country_code: str | None = None
    country: str | None = None
    timezone: str | None = None
    population: int | None = None
    admin1: str | None = None
    admin2: str | None = None


class GeocodingResponse(BaseModel):
    results: list[GeocodingResult] = Field(default_factory=list)


@dataclass
class OpenMeteoClient:
    http: RateLimitedSession = field(default_factory=RateLimitedSession)
    geocoding_url: str = field(default_factory=geocoding_url)
    forecast_url: str = field(default_factory=forecast_url)

    def fetch(self, params: OpenMeteoParams) -> bytes:
        if params.endpoint == "geocoding":
            if params.geocoding is None:
                raise ValueError("geocoding params missing")
            g = params.geocoding
            return self.http.get(
                self.geocoding_url,
                params={"name": g.name, "count": g.count, "language": g.language, "format": "json"},
            )

        if params.forecast is None:
            raise ValueError("forecast params missing")
        f = params.forecast
        query: dict[str, Any] = {
            "latitude": f.latitude,
            "longitude": f.longitude,
            "timezone": f.timezone,
        }
        for k in ("current", "hourly", "daily"):
            v = getattr(f, k)
            if v:
                query[k] = ",".join(v)
        return self.http.get(self.forecast_url, params=query)

    def geocode(self, name: str, count: int = 1, language: str | None = None) -> list[GeocodingResult]:
        raw = self.fetch(OpenMeteoParams.for_geocoding(name, count, language))
        return _parse_geocoding(raw).results


def _parse_geocoding(raw: bytes) -> GeocodingResponse:
    try:
        return GeocodingResponse.model_validate_json(raw or b"{}")
    except ValidationError as e:
        raise ParseError(f"invalid geocoding response: {e}") from e


def features_from_response(params: OpenMeteoParams, raw: bytes) -> list[MapFeature]:
    """
    Point features for an Open-Meteo response.

    Geocoding yields one point per result; a forecast yields a single point at
    the grid cell the API resolved, carrying the current conditions.
    """
    if params.endpoint == "geocoding":
        out: list[MapFeature] = []
        for r in _parse_geocoding(raw).results:
            props = r.model_dump(exclude_none=True)
            out.append(
                MapFeature(
                    id=f"geocode-{r.id}",
                    properties=props,
                    ring=((r.longitude, r.latitude),),
                    source="openmeteo",
                )
            )
        return out

    try:
        doc = json.loads(raw or b"{}")
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid forecast response: {e}") from e
    if not isinstance(doc, dict) or "latitude" not in doc or "longitude" not in doc:
        raise ParseError("forecast response is missing latitude/longitude")

    props: dict[str, Any] = {
        k: doc[k] for k in ("elevation", "timezone", "current", "current_units") if k in doc
    }
    lat, lon = float(doc["latitude"]), float(doc["longitude"])
    return [
        MapFeature(
            id=f"forecast-{lat:.4f}-{lon:.4f}",
            properties=props,
            ring=((lon, lat),),
            source="openmeteo",
        )
    ]
