"""
Batch request of region insights from the OpenAI chat completions API.
"""

import logging

import openai

from . import config
from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """
You are an environmental analyst. Here are multiple region reports:

{regions}

For each region:
1. Summarize its environmental condition.
2. Classify restoration priority: High | Medium | Low
3. Suggest up to 2 restoration zones as:
[
  {{ "lat": <latitude>, "lng": <longitude>, "radius_km": <number> }}
]

Respond with a JSON array of this format:
[
  {{
    "id": "region_id",
    "insight": "...",
    "priority": "High|Medium|Low",
    "restoration_zones": [
      {{ "lat": 12.34, "lng": 56.78, "radius_km": 5 }}
    ]
  }},
  ...
]
"""


def _num(value):
    # 12.0 reads as 12 in the prompt
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def describe_region(index, region):
    lat, lng = region.center
    return (
        f"Region {index} (ID: {region.id}) at ({_num(lat)}, {_num(lng)}):\n"
        f"- Biomass: {_num(region.metric('biomass_mean_MgC_ha'))} MgC/ha\n"
        f"- Forest Loss Pixels: {_num(region.metric('forest_loss_pixels'))}\n"
        f"- Soil Carbon: {_num(region.metric('soil_carbon_mean'))} tons/ha\n"
        f"- Rainfall: {_num(region.metric('rainfall_mean_mm'))} mm"
    )


def build_prompt(regions):
    descriptions = "\n\n".join(describe_region(i, r) for i, r in enumerate(regions, start=1))
    return PROMPT_TEMPLATE.format(regions=descriptions)


class InsightBatcher:
    """
    Sends every region in one prompt and returns the model's raw text.

    Parsing is left to extraction.extract_insights. The call is not retried
    here; callers decide whether to try again.
    """

    def __init__(self, client=None, model=None, timeout=None, api_key=None):
        self._client = client
        self.model = model or config.OPENAI_MODEL
        self.timeout = timeout if timeout is not None else config.INSIGHT_TIMEOUT_S
        self.api_key = api_key or config.OPENAI_API_KEY

    # lazy init so the key from .env is in place before the client is built
    def _get_client(self):
        if self._client is None:
            self._client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def request(self, regions):
        regions = list(regions)
        if not regions:
            return ""

        prompt = build_prompt(regions)
        logger.info("Requesting insights for %d region(s) from %s", len(regions), self.model)
        try:
            resp = self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                timeout=self.timeout,
            )
        except openai.OpenAIError as e:
            logger.error("OpenAI call failed: %s", e)
            raise UpstreamUnavailable("OpenAI call failed") from e

        if not resp.choices:
            logger.error("OpenAI returned no choices")
            raise UpstreamUnavailable("OpenAI call failed")
        return resp.choices[0].message.content or ""


def reconcile(records, region_ids):
    """
    Keep insights that belong to known regions, in the model's order.

    Unknown ids are dropped; a repeated id keeps its first record.
    """
    known = set(region_ids)
    seen = set()
    matched = []
    for record in records:
        if record.region_id not in known:
            logger.warning("Dropping insight for unknown region %r", record.region_id)
            continue
        if record.region_id in seen:
            logger.warning("Dropping duplicate insight for region %s", record.region_id)
            continue
        seen.add(record.region_id)
        matched.append(record)
    return matched
