"""
Resolve Earth Engine tile layers (deforestation, restoration, water, ...) to tile URL templates.
"""

import logging
from dataclasses import dataclass

import requests

from . import config
from .errors import LayerUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TileLayer:
    name: str
    mapid: str
    url_template: str
    opacity: float
    tile_size: int = 256

    def tile_url(self, z, x, y):
        return self.url_template.replace("{z}", str(z)).replace("{x}", str(x)).replace("{y}", str(y))

    def to_dict(self):
        return {
            "name": self.name,
            "mapid": self.mapid,
            "url_template": self.url_template,
            "opacity": self.opacity,
            "tile_size": self.tile_size,
        }


class TileLayerClient:
    def __init__(self, endpoints=None, timeout=None, session=None):
        self.endpoints = dict(endpoints if endpoints is not None else config.LAYER_ENDPOINTS)
        self.timeout = timeout if timeout is not None else config.LAYER_TIMEOUT_S
        self.session = session or requests.Session()

    @property
    def names(self):
        return sorted(self.endpoints)

    def resolve(self, name, year=None):
        """Ask the layer service for a map id and build the tile URL template."""
        endpoint = self.endpoints.get(name)
        if endpoint is None:
            raise LayerUnavailable(f"Unknown layer: {name}")

        # only the deforestation service is year-aware
        body = {"year": year} if year is not None else None
        try:
            r = self.session.post(endpoint, json=body, timeout=self.timeout)
            r.raise_for_status()
            mapid = r.json().get("mapid")
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.error("Could not load %s layer: %s", name, e)
            raise LayerUnavailable(f"Failed to fetch {name} tiles") from e
        if not mapid:
            raise LayerUnavailable(f"Layer service for {name} returned no mapid")

        opacity = config.DEFORESTATION_LAYER_OPACITY if name == "deforestation" else config.DEFAULT_LAYER_OPACITY
        return TileLayer(
            name=name,
            mapid=str(mapid),
            # mapid filled now, z/x/y left for the map client
            url_template=config.EE_TILE_URL_TEMPLATE.replace("{mapid}", str(mapid)),
            opacity=opacity,
        )
