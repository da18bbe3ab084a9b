"""
One user's region workspace: select regions, request insights, project overlays.
"""

import logging
from dataclasses import dataclass, field

from .errors import ForestSentinelError, UpstreamUnavailable
from .extraction import extract_insights
from .insights import InsightBatcher, reconcile
from .overlays import project_overlays, summarize
from .regions import RegionStore, normalize_geometry
from .statistics_client import StatisticsClient

logger = logging.getLogger(__name__)


@dataclass
class RegionSelection:
    region_id: str
    error: ForestSentinelError = None  # MetricsFetchFailed when the analysis call failed


@dataclass
class InsightOutcome:
    records: list = field(default_factory=list)
    error: ForestSentinelError = None

    @property
    def ok(self):
        return self.error is None


def insights_for(regions, batcher):
    """Batch -> extract -> match by id. Empty input makes no model call."""
    regions = list(regions)
    if not regions:
        return InsightOutcome()

    try:
        text = batcher.request(regions)
    except UpstreamUnavailable as e:
        return InsightOutcome(error=e)

    extracted = extract_insights(text)
    if not extracted.ok:
        return InsightOutcome(error=extracted.error)

    records = reconcile(extracted.records, [r.id for r in regions])
    logger.info("Received %d insight(s) for %d region(s)", len(records), len(regions))
    return InsightOutcome(records=records)


class RegionSession:
    def __init__(self, store=None, statistics_client=None, batcher=None):
        self.store = store if store is not None else RegionStore()
        self.statistics_client = statistics_client or StatisticsClient()
        self.batcher = batcher or InsightBatcher()

    def select_region(self, geometry):
        """Store a drawn polygon and attach its metrics; a failed fetch leaves metrics empty."""
        vertices = normalize_geometry(geometry)
        region_id = self.store.add(vertices)
        result = self.statistics_client.fetch_metrics(vertices)
        if result.ok:
            self.store.attach_metrics(region_id, result.metrics)
        else:
            logger.warning("Region %s kept without metrics: %s", region_id, result.error)
        return RegionSelection(region_id=region_id, error=result.error)

    def select_regions(self, geometries):
        """Select several polygons in input order; metric fetches run concurrently."""
        # validate everything before storing anything
        geometries = [normalize_geometry(g) for g in geometries]
        region_ids = [self.store.add(g) for g in geometries]
        results = self.statistics_client.fetch_many(geometries)

        selections = []
        for region_id, result in zip(region_ids, results):
            if result.ok:
                self.store.attach_metrics(region_id, result.metrics)
            else:
                logger.warning("Region %s kept without metrics: %s", region_id, result.error)
            selections.append(RegionSelection(region_id=region_id, error=result.error))
        return selections

    def request_insights(self):
        """
        Request insights for the current regions.

        Never raises for upstream problems: the outcome carries either the
        records matched to stored regions or a classified error. The store is
        left untouched either way.
        """
        return insights_for(self.store.list(), self.batcher)

    def project(self, outcome, **scales):
        if not outcome.ok:
            return []
        return project_overlays(outcome.records, store=self.store, **scales)

    def summary(self):
        return summarize(self.store.list())

    def clear(self):
        self.store.remove_all()
