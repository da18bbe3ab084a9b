# --- setup & imports ---
import logging
import threading

from flask import Flask, jsonify, request

from forest_sentinel import config  # loads .env before anything reads the environment
from forest_sentinel.errors import InvalidRegion, LayerUnavailable, UpstreamUnavailable
from forest_sentinel.insights import InsightBatcher
from forest_sentinel.layers import TileLayerClient
from forest_sentinel.logging_utils import setup_logging
from forest_sentinel.overlays import region_card
from forest_sentinel.regions import RegionRecord, normalize_geometry
from forest_sentinel.session import RegionSession, insights_for
from forest_sentinel.statistics_client import StatisticsClient

logger = logging.getLogger(__name__)


# --- per-browser region workspaces (in memory only, gone on restart) ---
# a session exists from its first drawn region until it is cleared
class SessionRegistry:
    def __init__(self, factory):
        self._factory = factory
        self._sessions = {}
        self._busy = {}  # session id -> lock held while an insight batch is in flight
        self._lock = threading.Lock()

    def get(self, sid):
        with self._lock:
            return self._sessions.get(sid)

    def get_or_create(self, sid):
        with self._lock:
            if sid not in self._sessions:
                self._sessions[sid] = self._factory()
                self._busy[sid] = threading.Lock()
            return self._sessions[sid]

    def busy_lock(self, sid):
        with self._lock:
            return self._busy.get(sid)

    def drop(self, sid):
        with self._lock:
            self._busy.pop(sid, None)
            return self._sessions.pop(sid, None)

    def __len__(self):
        with self._lock:
            return len(self._sessions)


# map classified pipeline errors to HTTP statuses
def error_response(err):
    status = 502 if isinstance(err, (UpstreamUnavailable, LayerUnavailable)) else 500
    return jsonify(err.to_dict()), status


def region_json(record):
    data = record.to_dict()
    data["card"] = region_card(record)
    return data


def create_app(statistics_client=None, batcher=None, layer_client=None):
    app = Flask(__name__)

    # flask run and WSGI servers never reach __main__; keep handlers a host already installed
    if not logging.getLogger().handlers:
        setup_logging(config.LOG_LEVEL, config.LOG_FILE)

    statistics_client = statistics_client or StatisticsClient()
    batcher = batcher or InsightBatcher()
    layer_client = layer_client or TileLayerClient()
    sessions = SessionRegistry(lambda: RegionSession(statistics_client=statistics_client, batcher=batcher))
    app.extensions["forest_sentinel.sessions"] = sessions

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    # --- stateless proxy used by the map front end ---
    # body: {"regions": [{id, analysis, center, coordinates?}, ...]}
    @app.post("/generate-insights")
    def generate_insights():
        payload = request.get_json(silent=True) or {}
        regions = payload.get("regions") if isinstance(payload, dict) else None
        if not isinstance(regions, list):
            return jsonify({"error": "Expected 'regions' to be an array"}), 400
        try:
            records = [RegionRecord.from_payload(r) for r in regions]
        except InvalidRegion as e:
            return jsonify({"error": str(e)}), 400

        outcome = insights_for(records, batcher)
        if not outcome.ok:
            return error_response(outcome.error)
        return jsonify([r.to_dict() for r in outcome.records])

    # --- session workspace: draw regions, then ask for insights ---
    @app.post("/sessions/<sid>/regions")
    def add_region(sid):
        payload = request.get_json(silent=True) or {}
        coordinates = payload.get("coordinates") if isinstance(payload, dict) else None
        if not coordinates:
            return jsonify({"error": "Expected 'coordinates' to be a list of {lat, lng}"}), 400
        # validate before a session is allocated for this id
        try:
            vertices = normalize_geometry(coordinates)
        except InvalidRegion as e:
            return jsonify({"error": str(e)}), 400

        session = sessions.get_or_create(sid)
        selection = session.select_region(vertices)
        record = session.store.get(selection.region_id)
        if record is None:
            # cleared while the analysis was running
            return jsonify({"error": "Region was removed"}), 409
        body = {"region": region_json(record)}
        if selection.error is not None:
            body["warning"] = selection.error.to_dict()  # region kept with empty metrics
        return jsonify(body), 201

    # unknown session ids read as empty and are not allocated
    @app.get("/sessions/<sid>/regions")
    def list_regions(sid):
        session = sessions.get(sid)
        regions = session.store.list() if session is not None else []
        return jsonify({"regions": [region_json(r) for r in regions]})

    @app.delete("/sessions/<sid>/regions")
    def clear_regions(sid):
        session = sessions.drop(sid)
        if session is None:
            return jsonify({"cleared": 0})
        count = len(session.store)
        session.clear()  # late metric responses for this session become no-ops
        return jsonify({"cleared": count})

    @app.post("/sessions/<sid>/insights")
    def session_insights(sid):
        session = sessions.get(sid)
        busy = sessions.busy_lock(sid)
        if session is None or busy is None:
            return jsonify({"insights": [], "overlays": []})
        # one batch at a time per session, a second click gets 409
        if not busy.acquire(blocking=False):
            logger.info("Session %s already has an insight request running", sid)
            return jsonify({"error": "An insight request is already running"}), 409
        try:
            outcome = session.request_insights()
        finally:
            busy.release()

        if not outcome.ok:
            return error_response(outcome.error)
        return jsonify({
            "insights": [r.to_dict() for r in outcome.records],
            "overlays": [p.to_dict() for p in session.project(outcome)],
        })

    @app.get("/sessions/<sid>/summary")
    def session_summary(sid):
        session = sessions.get(sid)
        return jsonify({"summary": session.summary() if session is not None else None})

    # --- Earth Engine tile layers ---
    @app.get("/layers")
    def list_layers():
        return jsonify({"layers": layer_client.names})

    @app.get("/layers/<name>")
    def get_layer(name):
        if name not in layer_client.endpoints:
            return jsonify({"error": f"Unknown layer: {name}"}), 404
        year = request.args.get("year", type=int)
        try:
            layer = layer_client.resolve(name, year=year)
        except LayerUnavailable as e:
            return error_response(e)
        return jsonify(layer.to_dict())

    return app


app = create_app()


# run with: python app.py (starts on http://localhost:3000)
if __name__ == "__main__":
    app.run(debug=True, port=config.PORT)
