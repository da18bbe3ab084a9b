import logging
import unittest
from unittest.mock import MagicMock, patch

import openai

from app import create_app
from forest_sentinel import config
from forest_sentinel.insights import InsightBatcher
from forest_sentinel.layers import TileLayerClient
from forest_sentinel.statistics_client import StatisticsClient
from tests.fakes import SQUARE, FakeOpenAI, fake_response, model_reply


def payload_region(region_id, **analysis):
    return {"id": region_id, "analysis": analysis, "center": {"lat": -3.4, "lng": -62.1}}


class TestApi(unittest.TestCase):
    """HTTP contract of the Flask service, external services faked."""

    def setUp(self):
        self.http = MagicMock()
        self.http.post.return_value = fake_response({"forest_loss_pixels": 1000, "biomass_mean_MgC_ha": 10.0})
        self.model = FakeOpenAI(content="[]")
        self.layer_http = MagicMock()
        self.app = create_app(
            statistics_client=StatisticsClient(endpoint="https://stats.test", session=self.http),
            batcher=InsightBatcher(client=self.model),
            layer_client=TileLayerClient(endpoints={"soil": "https://gee.test/soil"}, session=self.layer_http),
        )
        self.client = self.app.test_client()

    # --- /generate-insights ---

    def test_regions_must_be_a_list(self):
        resp = self.client.post("/generate-insights", json={"regions": "r1"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "Expected 'regions' to be an array")

    def test_invalid_region_rejected(self):
        resp = self.client.post("/generate-insights", json={"regions": [{"id": "r1"}]})
        self.assertEqual(resp.status_code, 400)

    def test_empty_regions_short_circuit(self):
        resp = self.client.post("/generate-insights", json={"regions": []})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), [])
        self.assertEqual(self.model.calls, [])

    def test_insights_filtered_to_known_ids(self):
        self.model.completions.content = model_reply([
            {"id": "r1", "insight": "ok", "priority": "High", "restoration_zones": [{"lat": 1, "lng": 2, "radius_km": 5}]},
            {"id": "r9", "insight": "?", "priority": "Low", "restoration_zones": []},
        ])
        resp = self.client.post("/generate-insights", json={"regions": [payload_region("r1", forest_loss_pixels=10)]})

        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual([r["id"] for r in body], ["r1"])
        self.assertEqual(body[0]["restoration_zones"], [{"lat": 1.0, "lng": 2.0, "radius_km": 5.0}])
        self.assertIn("- Forest Loss Pixels: 10", self.model.calls[0]["messages"][0]["content"])

    def test_upstream_failure_is_502(self):
        self.model.completions.error = openai.OpenAIError("boom")
        resp = self.client.post("/generate-insights", json={"regions": [payload_region("r1")]})
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.get_json()["error"], "OpenAI call failed")

    def test_extraction_failure_returns_raw(self):
        self.model.completions.content = "No data."
        resp = self.client.post("/generate-insights", json={"regions": [payload_region("r1")]})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json(), {
            "error": "Failed to extract JSON from OpenAI response",
            "kind": "extraction_failed",
            "raw": "No data.",
        })

    def test_malformed_payload_returns_offending_text(self):
        self.model.completions.content = 'Result: [{"id": "r1", priority: High}]'
        resp = self.client.post("/generate-insights", json={"regions": [payload_region("r1")]})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json()["raw"], '[{"id": "r1", priority: High}]')

    def test_deeply_nested_reply_is_malformed_payload(self):
        self.model.completions.content = '[{"id": "r1", "insight": ' + "[" * 100000 + "1" + "]" * 100000 + "}]"
        resp = self.client.post("/generate-insights", json={"regions": [payload_region("r1")]})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json()["kind"], "malformed_payload")

    # --- session workspace ---

    def add_square(self, sid="s1"):
        coordinates = [{"lat": lat, "lng": lng} for lat, lng in SQUARE]
        return self.client.post(f"/sessions/{sid}/regions", json={"coordinates": coordinates})

    def test_session_flow(self):
        resp = self.add_square()
        self.assertEqual(resp.status_code, 201)
        region = resp.get_json()["region"]
        self.assertEqual(region["center"], {"lat": 2.0, "lng": 1.0})
        self.assertEqual(region["card"]["forest_loss_ha"], 90)

        self.model.completions.content = model_reply([
            {"id": region["id"], "insight": "degraded", "priority": "High",
             "restoration_zones": [{"lat": 2, "lng": 1, "radius_km": 5}]},
        ])
        resp = self.client.post("/sessions/s1/insights")
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["insights"][0]["priority"], "High")
        self.assertEqual([o["kind"] for o in body["overlays"]], ["marker", "glow", "boundary"])
        self.assertEqual(body["overlays"][2]["radius_m"], 5000)

        summary = self.client.get("/sessions/s1/summary").get_json()["summary"]
        self.assertEqual(summary["forest_loss_label"], "90 hectares")

        self.assertEqual(self.client.delete("/sessions/s1/regions").get_json(), {"cleared": 1})
        self.assertEqual(self.client.get("/sessions/s1/regions").get_json(), {"regions": []})

    def test_sessions_are_isolated(self):
        self.add_square("a")
        self.assertEqual(len(self.client.get("/sessions/a/regions").get_json()["regions"]), 1)
        self.assertEqual(self.client.get("/sessions/b/regions").get_json()["regions"], [])

    def test_metrics_failure_is_a_warning(self):
        self.http.post.return_value = fake_response(status=503)
        resp = self.add_square()
        self.assertEqual(resp.status_code, 201)
        body = resp.get_json()
        self.assertEqual(body["warning"]["kind"], "metrics_fetch_failed")
        self.assertEqual(body["region"]["analysis"], {})

    def test_bad_coordinates(self):
        resp = self.client.post("/sessions/s1/regions", json={"coordinates": [{"lat": 0, "lng": 0}]})
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post("/sessions/s1/regions", json={})
        self.assertEqual(resp.status_code, 400)

    def test_concurrent_insight_request_rejected(self):
        self.add_square()
        busy = self.app.extensions["forest_sentinel.sessions"].busy_lock("s1")
        busy.acquire()
        try:
            resp = self.client.post("/sessions/s1/insights")
        finally:
            busy.release()
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.model.calls, [])

    def test_empty_session_insights(self):
        resp = self.client.post("/sessions/empty/insights")
        self.assertEqual(resp.get_json(), {"insights": [], "overlays": []})

    def test_unknown_sessions_are_not_allocated(self):
        registry = self.app.extensions["forest_sentinel.sessions"]
        self.assertEqual(self.client.get("/sessions/x1/regions").get_json(), {"regions": []})
        self.assertEqual(self.client.get("/sessions/x2/summary").get_json(), {"summary": None})
        self.client.post("/sessions/x3/insights")
        self.assertEqual(self.client.delete("/sessions/x4/regions").get_json(), {"cleared": 0})
        self.client.post("/sessions/x5/regions", json={"coordinates": [{"lat": 0, "lng": 0}]})
        self.assertEqual(len(registry), 0)

    def test_clear_drops_the_session(self):
        registry = self.app.extensions["forest_sentinel.sessions"]
        self.add_square("a")
        self.add_square("b")
        self.assertEqual(len(registry), 2)

        self.client.delete("/sessions/a/regions")
        self.assertEqual(len(registry), 1)
        self.assertIsNone(registry.get("a"))
        self.assertIsNone(registry.busy_lock("a"))

    # --- layers and health ---

    def test_layers(self):
        self.layer_http.post.return_value = fake_response({"mapid": "m1"})
        resp = self.client.get("/layers/soil")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["url_template"], "https://earthengine.googleapis.com/v1alpha/m1/tiles/{z}/{x}/{y}")

        self.assertEqual(self.client.get("/layers/lava").status_code, 404)
        self.assertEqual(self.client.get("/layers").get_json(), {"layers": ["soil"]})

        self.layer_http.post.return_value = fake_response(status=500)
        self.assertEqual(self.client.get("/layers/soil").status_code, 502)

    def test_health(self):
        self.assertEqual(self.client.get("/api/health").get_json(), {"status": "ok"})


class TestAppLogging(unittest.TestCase):
    """create_app configures logging unless the host already did."""

    def make_app(self):
        return create_app(statistics_client=MagicMock(), batcher=MagicMock(), layer_client=MagicMock())

    @patch("app.setup_logging")
    def test_configures_logging_without_handlers(self, mock_setup):
        with patch.object(logging.getLogger(), "handlers", []):
            self.make_app()
        mock_setup.assert_called_once_with(config.LOG_LEVEL, config.LOG_FILE)

    @patch("app.setup_logging")
    def test_keeps_existing_handlers(self, mock_setup):
        with patch.object(logging.getLogger(), "handlers", [logging.NullHandler()]):
            self.make_app()
        mock_setup.assert_not_called()


if __name__ == "__main__":
    unittest.main()
