"""Forest Sentinel: region analysis, AI insights and restoration overlays."""

__version__ = "0.1.0"
