"""
In-memory store of user-selected regions and their analysis metrics.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace

from shapely.geometry import Polygon

from .errors import InvalidRegion

logger = logging.getLogger(__name__)

# metric fields understood downstream, all optional
METRIC_FIELDS = (
    "biomass_mean_MgC_ha",
    "forest_loss_pixels",
    "soil_carbon_mean",
    "rainfall_mean_mm",
)


@dataclass
class RegionRecord:
    id: str
    geometry: tuple  # ((lat, lng), ...)
    center: tuple    # (lat, lng)
    metrics: dict = field(default_factory=dict)
    analyzed: bool = False  # True once metrics have been attached

    def metric(self, name):
        """Metric value, missing or null fields read as 0."""
        value = self.metrics.get(name)
        return 0 if value is None else value

    def to_dict(self):
        return {
            "id": self.id,
            "coordinates": [{"lat": lat, "lng": lng} for lat, lng in self.geometry],
            "analysis": dict(self.metrics),
            "center": {"lat": self.center[0], "lng": self.center[1]},
        }

    @classmethod
    def from_payload(cls, data):
        """Build a record from the front end's region shape: {id, analysis, center, coordinates?}."""
        if not isinstance(data, dict) or data.get("id") in (None, ""):
            raise InvalidRegion("Region must be an object with an id")
        coordinates = data.get("coordinates")
        geometry = normalize_geometry(coordinates) if coordinates else ()
        center = data.get("center")
        if center is not None:
            center = _to_latlng(center)
        elif geometry:
            center = bbox_center(geometry)
        else:
            raise InvalidRegion(f"Region {data['id']} has neither center nor coordinates")
        analysis = data.get("analysis") or {}
        if not isinstance(analysis, dict):
            raise InvalidRegion(f"Region {data['id']} analysis must be an object")
        return cls(
            id=str(data["id"]),
            geometry=geometry,
            center=center,
            metrics=clean_metrics(analysis),
            analyzed=bool(analysis),
        )


# --- geometry helpers ---

def _to_latlng(vertex):
    # accepts {"lat": .., "lng": ..} or a (lat, lng) pair
    try:
        if isinstance(vertex, dict):
            lat, lng = vertex["lat"], vertex["lng"]
        else:
            lat, lng = vertex
        lat, lng = float(lat), float(lng)
    except (KeyError, TypeError, ValueError, OverflowError):
        raise InvalidRegion(f"Invalid vertex: {vertex!r}")
    if not (math.isfinite(lat) and math.isfinite(lng)) or abs(lat) > 90 or abs(lng) > 180:
        raise InvalidRegion(f"Vertex out of range: {vertex!r}")
    return lat, lng


def normalize_geometry(vertices):
    """Validate polygon vertices and return them as a tuple of (lat, lng) pairs."""
    if isinstance(vertices, (str, bytes)) or not hasattr(vertices, "__iter__"):
        raise InvalidRegion("Polygon must be a sequence of vertices")
    points = [_to_latlng(v) for v in vertices]
    # an explicit closing vertex does not count as a corner
    if len(points) > 1 and points[0] == points[-1]:
        points = points[:-1]
    if len(set(points)) < 3:
        raise InvalidRegion("Polygon needs at least 3 distinct vertices")
    return tuple(points)


def bbox_center(geometry):
    """Center of the polygon's bounding box as (lat, lng)."""
    min_lng, min_lat, max_lng, max_lat = Polygon([(lng, lat) for lat, lng in geometry]).bounds
    return (min_lat + max_lat) / 2, (min_lng + max_lng) / 2


def clean_metrics(raw):
    """Keep the recognized numeric metric fields of an analysis response."""
    metrics = {}
    for name in METRIC_FIELDS:
        value = raw.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            if value is not None:
                logger.warning("Dropping non-numeric metric %s=%r", name, value)
            continue
        try:
            finite = math.isfinite(value)
        except OverflowError:
            finite = False
        if not finite:
            logger.warning("Dropping out-of-range metric %s", name)
            continue
        metrics[name] = value
    return metrics


class RegionStore:
    """
    Owns the regions of one session.

    Records are handed out as snapshots; the only mutations are add,
    a single attach_metrics per region, and remove_all.
    """

    def __init__(self, clock=time.time):
        self._records = {}  # id -> RegionRecord, insertion ordered
        self._lock = threading.Lock()
        self._clock = clock
        self._last_id = 0

    def _next_id(self):
        # millisecond timestamp, bumped so ids stay unique within one ms
        now_ms = int(self._clock() * 1000)
        self._last_id = max(now_ms, self._last_id + 1)
        return str(self._last_id)

    def add(self, geometry):
        vertices = normalize_geometry(geometry)
        center = bbox_center(vertices)
        with self._lock:
            region_id = self._next_id()
            self._records[region_id] = RegionRecord(id=region_id, geometry=vertices, center=center)
        logger.info("Region %s added at (%.4f, %.4f)", region_id, center[0], center[1])
        return region_id

    def attach_metrics(self, region_id, metrics):
        """Attach metrics once. Returns False if the region is gone or already analyzed."""
        with self._lock:
            record = self._records.get(region_id)
            if record is None:
                # response arrived after a reset
                logger.info("Discarding metrics for removed region %s", region_id)
                return False
            if record.analyzed:
                logger.warning("Region %s already has metrics, ignoring update", region_id)
                return False
            record.metrics = clean_metrics(metrics)
            record.analyzed = True
            return True

    def get(self, region_id):
        with self._lock:
            record = self._records.get(region_id)
            return _snapshot(record) if record is not None else None

    def list(self):
        with self._lock:
            return [_snapshot(r) for r in self._records.values()]

    def ids(self):
        with self._lock:
            return list(self._records)

    def remove_all(self):
        with self._lock:
            count = len(self._records)
            self._records.clear()
        logger.info("Cleared %d region(s)", count)

    def __len__(self):
        with self._lock:
            return len(self._records)


def _snapshot(record):
    return replace(record, metrics=dict(record.metrics))
