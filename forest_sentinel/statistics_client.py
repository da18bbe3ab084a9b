"""
Client for the region statistics service (biomass, forest loss, soil carbon, rainfall).
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import requests

from . import config
from .errors import MetricsFetchFailed
from .regions import clean_metrics

logger = logging.getLogger(__name__)


@dataclass
class MetricsResult:
    metrics: dict = field(default_factory=dict)
    error: MetricsFetchFailed = None

    @property
    def ok(self):
        return self.error is None


def polygon_payload(geometry):
    """Request body for the analysis service; GeoJSON order is [lng, lat]."""
    return {
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[lng, lat] for lat, lng in geometry]],
        }
    }


class StatisticsClient:
    def __init__(self, endpoint=None, timeout=None, max_workers=None, session=None):
        self.endpoint = endpoint or config.ANALYZE_REGION_API_ENDPOINT
        self.timeout = timeout if timeout is not None else config.STATS_TIMEOUT_S
        self.max_workers = max_workers or config.STATS_MAX_WORKERS
        self.session = session or requests.Session()

    def fetch_metrics(self, geometry):
        """POST one polygon and return its metrics; failures come back as an empty result with an error."""
        try:
            r = self.session.post(self.endpoint, json=polygon_payload(geometry), timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            logger.error("Error fetching region analysis: %s", e)
            return MetricsResult(error=MetricsFetchFailed(f"Failed to fetch region analysis: {e}"))
        except ValueError as e:
            # body was not JSON
            logger.error("Region analysis returned invalid JSON: %s", e)
            return MetricsResult(error=MetricsFetchFailed("Region analysis returned invalid JSON"))

        if not isinstance(data, dict):
            logger.error("Region analysis returned %s instead of an object", type(data).__name__)
            return MetricsResult(error=MetricsFetchFailed("Region analysis returned an unexpected payload"))
        return MetricsResult(metrics=clean_metrics(data))

    def fetch_many(self, geometries):
        """Fetch metrics for several polygons in parallel, results in input order."""
        geometries = list(geometries)
        if not geometries:
            return []
        workers = min(self.max_workers, len(geometries))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self.fetch_metrics, geometries))
