"""
Recover insight records from free-text model replies.

The model is asked for a JSON array but often wraps it in prose or markdown
fences. We take the first span that looks like an array of objects and parse
only that. The pattern is greedy and anchored on the first ``[ {``, so a
bracketed aside in the preamble can shift the match; such replies end up as
MalformedPayload rather than being repaired.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field

from . import config
from .errors import ExtractionFailed, MalformedPayload

logger = logging.getLogger(__name__)

JSON_ARRAY_PATTERN = re.compile(r"\[\s*\{[\s\S]*\}\s*\]")

PRIORITIES = ("High", "Medium", "Low")


@dataclass(frozen=True)
class RestorationZone:
    lat: float
    lng: float
    radius_km: float

    def to_dict(self):
        return {"lat": self.lat, "lng": self.lng, "radius_km": self.radius_km}


@dataclass(frozen=True)
class InsightRecord:
    region_id: str
    summary: str
    priority: str
    restoration_zones: tuple = ()

    @property
    def has_known_priority(self):
        return self.priority in PRIORITIES

    def to_dict(self):
        # same shape the model was asked to produce
        return {
            "id": self.region_id,
            "insight": self.summary,
            "priority": self.priority,
            "restoration_zones": [z.to_dict() for z in self.restoration_zones],
        }


@dataclass
class ExtractionResult:
    records: list = field(default_factory=list)
    error: Exception = None  # ExtractionFailed or MalformedPayload

    @property
    def ok(self):
        return self.error is None


def locate_json_array(text):
    """First array-of-objects shaped span in text, or None."""
    match = JSON_ARRAY_PATTERN.search(text or "")
    return match.group(0) if match else None


def _number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        value = float(value)
    except (ValueError, OverflowError):
        # integer literals past float range
        return None
    return value if math.isfinite(value) else None


def _parse_zones(raw_zones, region_id, max_zones):
    if raw_zones is None:
        return ()
    if not isinstance(raw_zones, list):
        logger.warning("Region %s: restoration_zones is not a list, ignoring", region_id)
        return ()
    zones = []
    for raw in raw_zones:
        if not isinstance(raw, dict):
            logger.warning("Region %s: skipping non-object zone %r", region_id, raw)
            continue
        lat, lng, radius = _number(raw.get("lat")), _number(raw.get("lng")), _number(raw.get("radius_km"))
        if lat is None or lng is None or radius is None or radius < 0:
            logger.warning("Region %s: skipping incomplete zone %r", region_id, raw)
            continue
        zones.append(RestorationZone(lat=lat, lng=lng, radius_km=radius))
    if len(zones) > max_zones:
        logger.warning("Region %s: %d zones suggested, keeping %d", region_id, len(zones), max_zones)
        zones = zones[:max_zones]
    return tuple(zones)


def to_insight_record(item, max_zones=None):
    """Convert one parsed array element; returns None for non-objects."""
    if not isinstance(item, dict):
        return None
    if max_zones is None:
        max_zones = config.MAX_RESTORATION_ZONES
    region_id = item.get("id")
    region_id = str(region_id) if region_id is not None else None
    priority = item.get("priority")
    if priority not in PRIORITIES:
        # unexpected labels are shown as-is
        logger.warning("Region %s: unrecognized priority %r", region_id, priority)
    summary = item.get("insight")
    return InsightRecord(
        region_id=region_id,
        summary=summary if isinstance(summary, str) else ("" if summary is None else str(summary)),
        priority=priority,
        restoration_zones=_parse_zones(item.get("restoration_zones"), region_id, max_zones),
    )


def extract_insights(text, max_zones=None):
    """
    Parse model output into InsightRecords.

    Returns an ExtractionResult carrying either the records in the model's
    order, or ExtractionFailed (no array found, raw is the whole text) or
    MalformedPayload (array found but invalid JSON, raw is the matched span).
    """
    candidate = locate_json_array(text)
    if candidate is None:
        logger.error("No JSON array in model response")
        return ExtractionResult(error=ExtractionFailed(
            "Failed to extract JSON from OpenAI response", raw=text))

    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError) as e:
        # RecursionError: nesting deeper than the decoder can follow
        logger.error("Extracted JSON does not parse: %s", e)
        return ExtractionResult(error=MalformedPayload("Failed to parse extracted JSON", raw=candidate))

    records = []
    for item in parsed:
        record = to_insight_record(item, max_zones=max_zones)
        if record is None:
            logger.warning("Skipping non-object element %r", item)
            continue
        records.append(record)
    return ExtractionResult(records=records)
