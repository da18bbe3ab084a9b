"""Request AI restoration insights for every polygon in a GeoJSON file.

usage: python scripts/insights_from_geojson.py regions.geojson zones.geojson
"""
import os
import sys
import argparse
os.environ["OGR_GEOJSON_MAX_OBJ_SIZE"] = "0"
import geopandas as gpd
from shapely.geometry import Point

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from forest_sentinel import config
from forest_sentinel.logging_utils import setup_logging
from forest_sentinel.session import RegionSession


def polygons_latlng(gdf):
    """Exterior rings of every (multi)polygon as lists of (lat, lng)."""
    if gdf.crs is not None and gdf.crs.to_epsg() != 4326:
        gdf = gdf.to_crs(epsg=4326)
    parts = gdf[gdf.geometry.geom_type.isin(["Polygon", "MultiPolygon"])].explode(index_parts=False)
    # z values of 3D rings are dropped
    return [[(lat, lng) for lng, lat, *_ in geom.exterior.coords] for geom in parts.geometry]


def zones_frame(records):
    rows = []
    for rec in records:
        for zone in rec.restoration_zones:
            rows.append({
                "region_id": rec.region_id,
                "priority": rec.priority,
                "insight": rec.summary,
                "radius_km": zone.radius_km,
                "geometry": Point(zone.lng, zone.lat),
            })
    return gpd.GeoDataFrame(rows, geometry="geometry", crs="EPSG:4326") if rows else None


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("regions", help="GeoJSON file with polygon features")
    parser.add_argument("output", help="where to write restoration zones (GeoJSON)")
    args = parser.parse_args()

    setup_logging(config.LOG_LEVEL, config.LOG_FILE)

    print("Loading regions...")
    polygons = polygons_latlng(gpd.read_file(args.regions))
    print(f"  {len(polygons)} polygons loaded")

    session = RegionSession()
    selections = session.select_regions(polygons)
    failed = sum(1 for s in selections if s.error is not None)
    print(f"  metrics fetched for {len(selections) - failed}/{len(selections)} regions")

    summary = session.summary()
    if summary:
        print(f"Forest loss: {summary['forest_loss_label']}, emissions: {summary['carbon_emissions_label']}")

    print("Requesting insights...")
    outcome = session.request_insights()
    if not outcome.ok:
        print(f"Failed: {outcome.error.message}")
        if outcome.error.raw:
            print(outcome.error.raw)
        return 1

    for rec in outcome.records:
        print(f"  [{rec.priority}] {rec.region_id}: {rec.summary}")

    zones = zones_frame(outcome.records)
    if zones is None:
        print("No restoration zones suggested.")
        return 0
    zones.to_file(args.output, driver="GeoJSON")
    print(f"Done. {len(zones)} restoration zones written to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
