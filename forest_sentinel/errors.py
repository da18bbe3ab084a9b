"""Classified failures of the region insight pipeline.

Pipeline operations hand these back inside result objects rather than raising
them, so callers can branch on ``kind`` and decide what to show or retry.
"""


class ForestSentinelError(Exception):
    kind = "error"

    def __init__(self, message, raw=None):
        super().__init__(message)
        self.message = message
        self.raw = raw  # upstream text kept for display/diagnosis

    def to_dict(self):
        data = {"error": self.message, "kind": self.kind}
        if self.raw is not None:
            data["raw"] = self.raw
        return data


class MetricsFetchFailed(ForestSentinelError):
    """Statistics service call failed for one region; the region keeps empty metrics."""
    kind = "metrics_fetch_failed"


class UpstreamUnavailable(ForestSentinelError):
    """The generative model call failed; no insights for the whole batch."""
    kind = "upstream_unavailable"


class ExtractionFailed(ForestSentinelError):
    """The model replied but no JSON array could be located in the text."""
    kind = "extraction_failed"


class MalformedPayload(ForestSentinelError):
    """A JSON array was located but does not parse."""
    kind = "malformed_payload"


class LayerUnavailable(ForestSentinelError):
    kind = "layer_unavailable"


class InvalidRegion(ValueError):
    """Raised for geometry that cannot describe a region (fewer than 3 vertices, bad coordinates)."""
