"""LLM extraction of general zoning rules from a municipal planning document summary.

NVIDIA NIM is the primary provider with Google Gemini as fallback; both are
OpenAI-compatible chat completions endpoints. The reply is validated
against GeneralZoningRules before it is returned, because the result is
cached permanently.
"""

import asyncio
import json
import logging

import httpx
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from plotlayers.config import settings
from plotlayers.core.errors import ProviderUnavailable
from plotlayers.observability.tracing import start_span, trace

logger = logging.getLogger(__name__)

# Granular timeouts: fail fast on connect, generous on read (LLM generation)
LLM_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=5.0)

NVIDIA_CHAT_URL = "https://integrate.api.nvidia.com/v1/chat/completions"
NVIDIA_MODEL = "meta/llama-3.3-70b-instruct"

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions"
GEMINI_MODEL = "gemini-2.5-flash"

MAX_RETRIES = 2
BASE_DELAY = 1.0

SYSTEM_PROMPT = """You extract general zoning rules from a summary of a municipal land-use plan (PDM).
Answer with a single JSON object and nothing else, using exactly these keys:
  "area_classification": string or null,
  "typical_plot_size": string or null,
  "general_height_limit": string or null,
  "building_style": string or null,
  "future_plans": list of strings,
  "key_points": list of strings,
  "additional_notes": string or null
Use null or an empty list when the document does not say. Write in English."""


class GeneralZoningRules(BaseModel):
    area_classification: str | None = None
    typical_plot_size: str | None = None
    general_height_limit: str | None = None
    building_style: str | None = None
    future_plans: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)
    additional_notes: str | None = None


def _parse_llm_content(content: str) -> dict:
    """Parse LLM response content, stripping markdown fences if present."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return json.loads(content.strip())


async def _call_provider(
    client: httpx.AsyncClient,
    url: str,
    api_key: str,
    payload: dict,
    provider_name: str,
) -> str | None:
    """Return the message content, retrying 429/5xx/timeouts with exponential backoff."""
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    with start_span(name=f"llm_provider_{provider_name.lower()}", span_type="CHAT_MODEL") as span:
        span.set_inputs({"provider": provider_name, "model": payload.get("model", "")})

        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
                content = resp.json()["choices"][0]["message"].get("content")
                span.set_outputs({"has_content": bool(content), "retries": attempt})
                return content
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if (status == 429 or status >= 500) and attempt < MAX_RETRIES:
                    delay = BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "%s %d (attempt %d/%d), retrying in %.1fs",
                        provider_name, status, attempt + 1, MAX_RETRIES + 1, delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error("%s error %d: %s", provider_name, status, e.response.text[:200])
                span.set_outputs({"error": f"http_{status}", "retries": attempt})
                return None
            except httpx.TimeoutException:
                if attempt < MAX_RETRIES:
                    delay = BASE_DELAY * (2 ** attempt)
                    logger.warning("%s timeout (attempt %d), retrying in %.1fs", provider_name, attempt + 1, delay)
                    await asyncio.sleep(delay)
                    continue
                span.set_outputs({"error": "timeout", "retries": attempt})
                return None
            except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
                logger.error("%s call failed: %s", provider_name, e)
                span.set_outputs({"error": str(e), "retries": attempt})
                return None
    return None


@trace(name="extract_general_zoning_rules", span_type="LLM")
async def extract_general_zoning_rules(summary: str) -> dict:
    """Extract GeneralZoningRules from a planning document summary.

    Raises:
        ProviderUnavailable: no provider configured or none produced valid rules.
    """
    providers = []
    if settings.nvidia_api_key:
        providers.append(("NVIDIA", NVIDIA_CHAT_URL, settings.nvidia_api_key, NVIDIA_MODEL))
    if settings.gemini_api_key:
        providers.append(("Gemini", GEMINI_URL, settings.gemini_api_key, GEMINI_MODEL))
    if not providers:
        raise ProviderUnavailable("No LLM provider configured (NVIDIA_API_KEY / GEMINI_API_KEY)")

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": summary[:20000]},
    ]

    async with httpx.AsyncClient(timeout=LLM_TIMEOUT) as client:
        for name, url, key, model in providers:
            payload = {"model": model, "messages": messages, "temperature": 0.1, "max_tokens": 1500}
            content = await _call_provider(client, url, key, payload, name)
            if not content:
                continue
            try:
                rules = GeneralZoningRules.model_validate(_parse_llm_content(content))
            except (json.JSONDecodeError, PydanticValidationError) as e:
                logger.error("Unusable %s zoning rules response: %s", name, e)
                continue
            return rules.model_dump()

    raise ProviderUnavailable("All LLM providers failed to extract zoning rules")
