import os
import logging
from dotenv import load_dotenv

# load API keys and overrides from the repo-level .env
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))

logger = logging.getLogger(__name__)


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_int(name, default):
    return int(_env_float(name, default))


# --- external services ---
ANALYZE_REGION_API_ENDPOINT = os.environ.get(
    "ANALYZE_REGION_API_ENDPOINT",
    "https://get-statistics-data-985387719626.us-central1.run.app/analyze_region",
)

# tile layer services, each answers {"mapid": ...} for an Earth Engine layer
LAYER_ENDPOINTS = {
    "deforestation": os.environ.get(
        "GEE_API_ENDPOINT",
        "https://us-central1-crack-descent-467117-d4.cloudfunctions.net/get-deforestation-map",
    ),
    "restoration": os.environ.get(
        "RESTORATION_API_ENDPOINT",
        "https://get-restoration-985387719626.europe-west1.run.app/get_restoration_areas",
    ),
    "water": os.environ.get(
        "WATER_API_ENDPOINT",
        "https://get-hydrology-985387719626.europe-west1.run.app/get_water_layer",
    ),
    "climate": os.environ.get(
        "CLIMATE_API_ENDPOINT",
        "https://get-rainfall-985387719626.europe-west1.run.app/get_climate_layer",
    ),
    "ecosystem": os.environ.get(
        "ECOSYSTEM_API_ENDPOINT",
        "https://get-ecosystem-985387719626.europe-west1.run.app/get_ecosystem_layer",
    ),
    "soil": os.environ.get(
        "SOIL_API_ENDPOINT",
        "https://get-soil-985387719626.europe-west1.run.app/get_soil_layer",
    ),
    "biomass": os.environ.get(
        "BIOMASS_API_ENDPOINT",
        "https://get-biomass-985387719626.europe-west1.run.app/get_biomass_layer",
    ),
    "carbon": os.environ.get(
        "CARBON_API_ENDPOINT",
        "https://get-carbon-layer-985387719626.us-east1.run.app/get_carbon_layer",
    ),
}
EE_TILE_URL_TEMPLATE = "https://earthengine.googleapis.com/v1alpha/{mapid}/tiles/{z}/{x}/{y}"
DEFAULT_LAYER_OPACITY = 0.6
DEFORESTATION_LAYER_OPACITY = 0.7

# --- generative model ---
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4")

# --- timeouts (seconds) and pool sizes ---
STATS_TIMEOUT_S = _env_float("STATS_TIMEOUT_S", 30.0)
INSIGHT_TIMEOUT_S = _env_float("INSIGHT_TIMEOUT_S", 90.0)
LAYER_TIMEOUT_S = _env_float("LAYER_TIMEOUT_S", 30.0)
STATS_MAX_WORKERS = _env_int("STATS_MAX_WORKERS", 4)

# --- calibration constants ---
# Hansen forest loss pixels are 30m x 30m = 0.09 ha
HECTARES_PER_PIXEL = _env_float("HECTARES_PER_PIXEL", 0.09)
# molar mass ratio CO2 / C
CO2_PER_CARBON = _env_float("CO2_PER_CARBON", 3.67)
# restoration overlay radii, meters per km of suggested radius (inner:outer = 1:2)
INNER_RADIUS_M_PER_KM = _env_float("INNER_RADIUS_M_PER_KM", 500.0)
OUTER_RADIUS_M_PER_KM = _env_float("OUTER_RADIUS_M_PER_KM", 1000.0)
MARKER_SCALE_PER_KM = _env_float("MARKER_SCALE_PER_KM", 2.0)
MAX_RESTORATION_ZONES = _env_int("MAX_RESTORATION_ZONES", 2)

# --- service ---
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE") or None
PORT = _env_int("PORT", 3000)
