"""Lectura de glucemias, tratamientos y perfiles desde la API de Nightscout."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

import requests
from dateutil import parser as date_parser
from dateutil import tz

from glyco_report.basal import ScheduleTimeline, ScheduleVersion
from glyco_report.model import (
    BasalBreakpoint,
    BasalSchedule,
    GlucoseSample,
    Period,
    TreatmentEvent,
    TreatmentKind,
)
from glyco_report.sources.base import DataSource, SourceBatch, SourceError

logger = logging.getLogger(__name__)

_HEADERS = {"accept": "application/json"}


def kind_from_event_type(event_type: str | None) -> TreatmentKind:
    """Map a Nightscout ``eventType`` to a TreatmentKind (case-insensitive)."""
    text = (event_type or "").strip().lower()
    if "temp basal" in text:
        return TreatmentKind.TEMP_BASAL
    if "site change" in text:
        return TreatmentKind.SITE_CHANGE
    if "sensor change" in text:
        return TreatmentKind.SENSOR_CHANGE
    if "correction bolus" in text:
        return TreatmentKind.CORRECTION_BOLUS
    if "bolus" in text:
        return TreatmentKind.MEAL_BOLUS
    if "carb" in text or "meal" in text:
        return TreatmentKind.CARB_INTAKE
    return TreatmentKind.OTHER


def _number(value: Any) -> float | None:
    """Float for numeric-looking values; None for missing / non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _timestamp_ms(value: Any) -> int | None:
    """Epoch ms from an ISO-8601 string or a numeric epoch-ms value."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value) if math.isfinite(value) else None
    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        dt = date_parser.isoparse(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz.UTC)
    return int(dt.timestamp() * 1000)


def _require_list(raw: Any, what: str) -> list[Any]:
    if not isinstance(raw, list):
        raise ValueError(f"Nightscout {what} JSON must be a list")
    return raw


def _item_to_sample(item: Any) -> GlucoseSample | None:
    """Convierte una entrada en GlucoseSample; None si falta fecha o valor."""
    if not isinstance(item, dict):
        return None
    ts = _timestamp_ms(item.get("date"))
    if ts is None:
        ts = _timestamp_ms(item.get("dateString"))
    value = _number(item.get("sgv"))
    if value is None:
        value = _number(item.get("glucose"))
    if ts is None or value is None:
        return None
    return GlucoseSample(timestamp_ms=ts, mg_dl=value)


def _item_to_treatment(item: Any) -> TreatmentEvent | None:
    """Convierte un tratamiento; None si no tiene ninguna fecha válida."""
    if not isinstance(item, dict):
        return None
    ts = None
    for key in ("timestamp", "created_at", "date"):
        ts = _timestamp_ms(item.get(key))
        if ts is not None:
            break
    if ts is None:
        return None
    event_type = str(item.get("eventType") or "")
    rate = _number(item.get("rate"))
    if rate is None:
        rate = _number(item.get("absolute"))
    identifier = item.get("identifier")
    return TreatmentEvent(
        timestamp_ms=ts,
        kind=kind_from_event_type(event_type),
        insulin_units=_number(item.get("insulin")),
        carbs_grams=_number(item.get("carbs")),
        duration_minutes=_number(item.get("duration")),
        rate_units_per_hour=rate,
        dedupe_key=str(identifier) if identifier else None,
        event_type=event_type,
    )


def parse_entries(raw: Any) -> list[GlucoseSample]:
    """Parse ``/entries.json`` into samples sorted by time.

    Raises:
        ValueError: If the payload is not a list.
    """
    out = [s for s in map(_item_to_sample, _require_list(raw, "entries")) if s]
    out.sort(key=lambda s: s.timestamp_ms)
    return out


def parse_treatments(raw: Any) -> list[TreatmentEvent]:
    """Parse ``/treatments.json``; undatable records are dropped.

    Raises:
        ValueError: If the payload is not a list.
    """
    items = _require_list(raw, "treatments")
    out = [e for e in map(_item_to_treatment, items) if e]
    if len(out) != len(items):
        logger.debug("Dropped %d treatments without timestamp", len(items) - len(out))
    out.sort(key=lambda e: e.timestamp_ms)
    return out


def _breakpoint(entry: Any) -> BasalBreakpoint:
    if not isinstance(entry, dict):
        raise ValueError(f"Invalid basal entry {entry!r}")
    value = _number(entry.get("value"))
    if value is None:
        raise ValueError(f"Basal entry without value: {entry!r}")
    if entry.get("time") is not None:
        return BasalBreakpoint.parse(str(entry["time"]), value)
    seconds = _number(entry.get("timeAsSeconds"))
    if seconds is None:
        raise ValueError(f"Basal entry without time: {entry!r}")
    return BasalBreakpoint(minute_of_day=int(seconds) // 60, units_per_hour=value)


def _schedule_from_document(doc: Mapping[str, Any]) -> BasalSchedule | None:
    name = doc.get("defaultProfile")
    store = doc.get("store")
    if not name or not isinstance(store, dict) or name not in store:
        return None
    basal = store[name].get("basal") if isinstance(store[name], dict) else None
    if basal is None:
        return None
    if isinstance(basal, list):
        if not basal:
            return None
        return BasalSchedule(tuple(_breakpoint(e) for e in basal))
    value = _number(basal)
    if value is None:
        raise ValueError(f"Unknown basal format in profile {name!r}")
    return BasalSchedule((BasalBreakpoint(0, value),))


def parse_profile(raw: Any) -> ScheduleTimeline:
    """Parse one profile document or a list of them into a timeline.

    Each document becomes a version effective from its ``startDate`` (or
    ``mills``, or ``date``); without any date it applies from the epoch.
    Documents whose default profile has no basal are skipped.

    Raises:
        ValueError: If the payload is neither a dict nor a list, or a basal
            entry is malformed.
    """
    if isinstance(raw, dict):
        docs: list[Any] = [raw]
    elif isinstance(raw, list):
        docs = raw
    else:
        raise ValueError("Nightscout profile JSON must be an object or a list")
    versions: list[ScheduleVersion] = []
    for doc in docs:
        if not isinstance(doc, dict):
            continue
        schedule = _schedule_from_document(doc)
        if schedule is None:
            logger.debug("Skipping profile without usable basal")
            continue
        effective = None
        for key in ("startDate", "mills", "date"):
            effective = _timestamp_ms(doc.get(key))
            if effective is not None:
                break
        versions.append(
            ScheduleVersion(effective_from_ms=effective or 0, schedule=schedule)
        )
    return ScheduleTimeline(versions)


def _iso_utc(timestamp_ms: int) -> str:
    seconds, millis = divmod(timestamp_ms, 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return f"{dt:%Y-%m-%dT%H:%M:%S}.{millis:03d}Z"


class NightscoutSource(DataSource):
    """Remote Nightscout site (``/api/v1``)."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        session: Any | None = None,
        timeout: float = 30.0,
        count: int = 10000,
    ) -> None:
        """Create a Nightscout source.

        Args:
            base_url: Site URL, e.g. ``https://example.herokuapp.com``.
            token: Access token sent as the ``token`` query parameter.
            session: Object with a ``requests.Session``-like ``get``, shared by
                the fetch threads. When omitted each request opens its own
                ``requests.Session``.
            timeout: Per-request timeout in seconds.
            count: Maximum records per collection.
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._session = session
        self._timeout = timeout
        self._count = count

    @property
    def base_url(self) -> str:
        return self._base_url

    def validate(self) -> None:
        if not self._base_url.startswith(("http://", "https://")):
            raise SourceError(f"Invalid Nightscout URL {self._base_url!r}")

    def _request(self, session: Any, url: str, query: dict[str, Any]) -> Any:
        response = session.get(
            url, params=query, headers=_HEADERS, timeout=self._timeout
        )
        response.raise_for_status()
        return response.json()

    def _get(self, endpoint: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}/api/v1/{endpoint}"
        query = dict(params)
        if self._token:
            query["token"] = self._token
        logger.info("GET %s %s", url, params)
        try:
            if self._session is not None:
                return self._request(self._session, url, query)
            # requests.Session no es thread-safe: una por petición.
            with requests.Session() as session:
                return self._request(session, url, query)
        except requests.exceptions.RequestException as exc:
            raise SourceError(f"Nightscout request to {endpoint} failed: {exc}") from exc
        except ValueError as exc:
            raise SourceError(f"Nightscout {endpoint} returned invalid JSON") from exc

    def _warn_if_truncated(self, endpoint: str, raw: Any) -> None:
        """Avisa cuando la respuesta llena ``count``: puede faltar el resto."""
        if isinstance(raw, list) and len(raw) >= self._count:
            logger.warning(
                "Nightscout %s returned %d records (count limit); "
                "older data in the period may be missing",
                endpoint,
                len(raw),
            )

    def fetch_entries(self, period: Period) -> list[GlucoseSample]:
        raw = self._get(
            "entries.json",
            {
                "find[date][$gte]": period.from_ms,
                "find[date][$lte]": period.to_ms,
                "count": self._count,
            },
        )
        self._warn_if_truncated("entries.json", raw)
        try:
            samples = parse_entries(raw)
        except ValueError as exc:
            raise SourceError(str(exc)) from exc
        logger.info("Fetched %d glucose entries", len(samples))
        return samples

    def fetch_treatments(self, period: Period) -> list[TreatmentEvent]:
        raw = self._get(
            "treatments.json",
            {
                "find[created_at][$gte]": _iso_utc(period.from_ms),
                "find[created_at][$lte]": _iso_utc(period.to_ms),
                "count": self._count,
            },
        )
        self._warn_if_truncated("treatments.json", raw)
        try:
            events = parse_treatments(raw)
        except ValueError as exc:
            raise SourceError(str(exc)) from exc
        logger.info("Fetched %d treatments", len(events))
        return events

    def fetch_profile(self) -> ScheduleTimeline:
        raw = self._get("profile.json", {})
        try:
            timeline = parse_profile(raw)
        except ValueError as exc:
            raise SourceError(str(exc)) from exc
        logger.info("Fetched %d basal profile version(s)", len(timeline))
        return timeline

    def fetch(self, period: Period) -> SourceBatch:
        """Issue the three requests concurrently and join them."""
        with ThreadPoolExecutor(max_workers=3) as pool:
            entries = pool.submit(self.fetch_entries, period)
            treatments = pool.submit(self.fetch_treatments, period)
            profile = pool.submit(self.fetch_profile)
            return SourceBatch(
                samples=tuple(entries.result()),
                events=tuple(treatments.result()),
                timeline=profile.result(),
            )
