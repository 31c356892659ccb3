"""Optional narrative enhancement over an OpenAI-compatible chat API.

The local prediction is always the source of truth. The collaborator may
rewrite reasoning prose and nudge probabilities, ceilings and the expected
final price; those numbers are clamped and rounded before they are accepted.
A response that changes the recommended action or the suggested buy price is
discarded entirely, as is any response that fails to arrive or parse.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

import httpx

from pyauction.config import AuctionRules, PredictionWeights

if TYPE_CHECKING:
    from .engine import NarrativeEnhancer, PredictionResult


logger = logging.getLogger(__name__)

_API_KEY_ENVS = ("PYAUCTION_NARRATIVE_API_KEY", "OPENAI_API_KEY")
_MODEL_ENV = "PYAUCTION_NARRATIVE_MODEL"
_BASE_URL_ENV = "PYAUCTION_NARRATIVE_BASE_URL"

_MAX_PROSE_LENGTH = 2_000
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

SYSTEM_PROMPT = (
    "You are an auction analyst. You receive a deterministic bid prediction as JSON. "
    "Improve the reasoning text only. Reply with JSON of the same shape. Do not change "
    "recommended_action.action or recommended_action.suggested_buy_price."
)


class NarrativeClientError(Exception):
    """Raised when the chat API call fails or returns an unusable body."""


class ChatCompletionsEnhancer:
    """Blocking chat-completions client used as a ``NarrativeEnhancer``."""

    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: str,
        *,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 20.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required for the narrative client")
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_env(cls) -> Optional["ChatCompletionsEnhancer"]:
        """Build a client from the environment, or ``None`` when no key is set."""

        api_key = next((os.getenv(name) for name in _API_KEY_ENVS if os.getenv(name)), None)
        if not api_key:
            return None
        return cls(api_key, model=os.getenv(_MODEL_ENV), base_url=os.getenv(_BASE_URL_ENV))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ChatCompletionsEnhancer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def enhance(self, result: "PredictionResult", context: Mapping[str, Any]) -> Mapping[str, Any] | None:
        body = {
            "model": self.model,
            "temperature": 0.3,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": json.dumps({"prediction": result.to_dict(), "context": dict(context)}, default=str),
                },
            ],
        }
        response = self._client.post(
            f"{self.base_url}/chat/completions",
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if response.status_code != 200:
            raise NarrativeClientError(f"chat API returned {response.status_code}: {response.text[:200]}")
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise NarrativeClientError("chat API response missing message content") from exc
        return parse_enhancement(content)


def parse_enhancement(content: str | None) -> Dict[str, Any] | None:
    """Decode the collaborator's JSON reply, tolerating markdown code fences."""

    if not content:
        return None
    text = _FENCE_RE.sub("", content.strip()).strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise NarrativeClientError(f"chat API returned invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise NarrativeClientError("chat API returned a non-object JSON payload")
    return payload


def _prose(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text[:_MAX_PROSE_LENGTH] if text else None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def merge_enhancement(
    result: "PredictionResult",
    payload: Mapping[str, Any],
    context: Mapping[str, Any],
    rules: AuctionRules,
    weights: PredictionWeights,
) -> "PredictionResult":
    """Fold an enhancement payload into ``result`` under the numeric guards."""

    local_action = result.recommended_action
    proposed = payload.get("recommended_action") or {}
    if not isinstance(proposed, Mapping):
        proposed = {}
    proposed_action = proposed.get("action")
    if proposed_action is not None and str(proposed_action).lower() != local_action.action.value:
        logger.warning("Narrative enhancement rejected: action %r != %r", proposed_action, local_action.action.value)
        return result
    proposed_price = _number(proposed.get("suggested_buy_price"))
    if proposed.get("suggested_buy_price") is not None and proposed_price != float(local_action.suggested_buy_price):
        logger.warning(
            "Narrative enhancement rejected: suggested price %r != %s",
            proposed.get("suggested_buy_price"),
            local_action.suggested_buy_price,
        )
        return result

    action = local_action
    reasoning = _prose(proposed.get("reasoning"))
    if reasoning:
        action = replace(local_action, reasoning=reasoning)

    purses: Mapping[str, int] = context.get("bidder_purses") or {}
    market = result.market_analysis
    updates: Dict[str, Mapping[str, Any]] = {}
    for item in payload.get("likely_bidders") or []:
        if isinstance(item, Mapping) and item.get("bidder_id") is not None:
            updates[str(item["bidder_id"])] = item

    bidders = []
    for bidder in result.likely_bidders:
        update = updates.get(bidder.bidder_id)
        if update is None:
            bidders.append(bidder)
            continue
        probability = bidder.probability
        value = _number(update.get("probability"))
        if value is not None:
            probability = max(0.0, min(weights.max_probability, value))
        ceiling = bidder.ceiling_price
        value = _number(update.get("ceiling_price"))
        if value is not None:
            purse = purses.get(bidder.bidder_id)
            upper = purse * weights.ceiling_absolute_purse_fraction if purse is not None else bidder.ceiling_price
            ceiling = rules.ceil_to_unit(max(market.minimum_next_bid, min(value, upper)))
        bidders.append(
            replace(
                bidder,
                probability=probability,
                ceiling_price=ceiling,
                reasoning=_prose(update.get("reasoning")) or bidder.reasoning,
            )
        )
    bidders.sort(key=lambda item: (-item.probability, item.bidder_id))

    market_update = payload.get("market_analysis") or {}
    expected = market.expected_final_price
    value = _number(market_update.get("expected_final_price")) if isinstance(market_update, Mapping) else None
    if value is not None:
        upper = float(context.get("max_price") or expected) * weights.expected_max_ratio
        expected = max(market.current_bid, rules.round_to_unit(min(value, upper)))

    return replace(
        result,
        likely_bidders=tuple(bidders),
        recommended_action=action,
        market_analysis=replace(market, expected_final_price=expected),
        narrative_source="external",
    )


def apply_enhancement(
    enhancer: "NarrativeEnhancer",
    result: "PredictionResult",
    context: Mapping[str, Any],
    rules: AuctionRules,
    weights: PredictionWeights,
) -> "PredictionResult":
    """Run the collaborator; on any failure keep the local result."""

    try:
        payload = enhancer.enhance(result, context)
        if not payload:
            return result
        return merge_enhancement(result, payload, context, rules, weights)
    except Exception as exc:  # collaborator failures are non-fatal
        logger.warning("Narrative enhancement unavailable: %s", exc)
        return result


__all__ = [
    "ChatCompletionsEnhancer",
    "NarrativeClientError",
    "apply_enhancement",
    "merge_enhancement",
    "parse_enhancement",
]
