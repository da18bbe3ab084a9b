"""
Map primitives for restoration zones and the unit conversions used by the dashboard.
"""

import logging
from dataclasses import asdict, dataclass

from . import config

logger = logging.getLogger(__name__)

# restoration palette
ZONE_FILL = "#10B981"
ZONE_STROKE = "#059669"
GLOW_FILL = "#34D399"


@dataclass(frozen=True)
class OverlayPrimitive:
    kind: str  # "marker", "glow" or "boundary"
    region_id: str
    lat: float
    lng: float
    radius_m: float = None  # circles only
    scale: float = None     # marker symbol size
    fill_color: str = "transparent"
    fill_opacity: float = 0.0
    stroke_color: str = ZONE_STROKE
    stroke_weight: int = 0
    stroke_opacity: float = 1.0

    def to_dict(self):
        return {k: v for k, v in asdict(self).items() if v is not None}


# --- unit conversions ---

def forest_loss_hectares(pixels, hectares_per_pixel=None):
    if hectares_per_pixel is None:
        hectares_per_pixel = config.HECTARES_PER_PIXEL
    return (pixels or 0) * hectares_per_pixel


def co2_tons(biomass_mgc_ha, co2_per_carbon=None):
    if co2_per_carbon is None:
        co2_per_carbon = config.CO2_PER_CARBON
    return (biomass_mgc_ha or 0) * co2_per_carbon


# --- projection ---

def zone_primitives(region_id, zone, inner_m_per_km=None, outer_m_per_km=None, marker_scale_per_km=None):
    """Marker, inner glow and outer boundary for one restoration zone."""
    inner = config.INNER_RADIUS_M_PER_KM if inner_m_per_km is None else inner_m_per_km
    outer = config.OUTER_RADIUS_M_PER_KM if outer_m_per_km is None else outer_m_per_km
    scale = config.MARKER_SCALE_PER_KM if marker_scale_per_km is None else marker_scale_per_km
    return [
        OverlayPrimitive(
            kind="marker", region_id=region_id, lat=zone.lat, lng=zone.lng,
            scale=zone.radius_km * scale,
            fill_color=ZONE_FILL, fill_opacity=0.4,
            stroke_color=ZONE_STROKE, stroke_weight=2,
        ),
        OverlayPrimitive(
            kind="glow", region_id=region_id, lat=zone.lat, lng=zone.lng,
            radius_m=zone.radius_km * inner,
            fill_color=GLOW_FILL, fill_opacity=0.6,
            stroke_color=ZONE_FILL, stroke_weight=0,
        ),
        OverlayPrimitive(
            kind="boundary", region_id=region_id, lat=zone.lat, lng=zone.lng,
            radius_m=zone.radius_km * outer,
            fill_color="transparent", fill_opacity=0.0,
            stroke_color=ZONE_STROKE, stroke_weight=2, stroke_opacity=0.8,
        ),
    ]


def project_overlays(insights, store=None, **scales):
    """
    Overlay primitives for every restoration zone, three per zone.

    With a store, insights are matched by region id and those whose region
    has since been removed are skipped.
    """
    known = set(store.ids()) if store is not None else None
    primitives = []
    for insight in insights:
        if known is not None and insight.region_id not in known:
            logger.info("Skipping overlays for removed region %s", insight.region_id)
            continue
        for zone in insight.restoration_zones:
            primitives.extend(zone_primitives(insight.region_id, zone, **scales))
    return primitives


# --- dashboard figures ---

def region_card(region, hectares_per_pixel=None):
    """Values shown in a region's info window."""
    return {
        "id": region.id,
        "center": {"lat": region.center[0], "lng": region.center[1]},
        "biomass_mgc_ha": round(region.metric("biomass_mean_MgC_ha"), 2),
        "forest_loss_ha": round(forest_loss_hectares(region.metric("forest_loss_pixels"), hectares_per_pixel)),
        "soil_carbon": round(region.metric("soil_carbon_mean"), 2),
        "rainfall_mm": round(region.metric("rainfall_mean_mm"), 2),
    }


def summarize(regions, hectares_per_pixel=None, co2_per_carbon=None):
    """Totals across regions for the dashboard; None when there are no regions."""
    regions = list(regions)
    if not regions:
        return None
    forest_loss = sum(forest_loss_hectares(r.metric("forest_loss_pixels"), hectares_per_pixel) for r in regions)
    emissions = sum(co2_tons(r.metric("biomass_mean_MgC_ha"), co2_per_carbon) for r in regions)
    return {
        "region_count": len(regions),
        "forest_loss_ha": forest_loss,
        "carbon_emissions_t": emissions,
        "forest_loss_label": f"{round(forest_loss):,} hectares",
        "carbon_emissions_label": f"{round(emissions):,} tons CO2",
    }
