import json

import httpx
import pytest

from pyauction.config import PredictionWeights
from pyauction.prediction import BidPredictionEngine, ChatCompletionsEnhancer, NarrativeClientError
from pyauction.prediction.narrative import parse_enhancement

from tests.factories import make_snapshot


class StaticEnhancer:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.contexts = []

    def enhance(self, result, context):
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return self.payload


def _predict(enhancer):
    engine = BidPredictionEngine(enhancer=enhancer)
    return engine.predict(make_snapshot(), "p1", "b1", use_external_enhancement=True)


def _local():
    return BidPredictionEngine().predict(make_snapshot(), "p1", "b1")


def test_enhancement_is_clamped_and_merged():
    enhancer = StaticEnhancer(
        {
            "recommended_action": {"action": "bid", "suggested_buy_price": 5_000, "reasoning": "Open low, he is in form."},
            "likely_bidders": [{"bidder_id": "b2", "probability": 1.7, "ceiling_price": 80_000, "reasoning": "Needs a bat."}],
            "market_analysis": {"expected_final_price": 999_999},
        }
    )
    result = _predict(enhancer)

    assert result.narrative_source == "external"
    assert result.recommended_action.reasoning == "Open low, he is in form."
    assert result.recommended_action.suggested_buy_price == 5_000
    b2 = next(item for item in result.likely_bidders if item.bidder_id == "b2")
    assert b2.probability == pytest.approx(0.95)
    assert b2.ceiling_price == 50_000
    assert b2.reasoning == "Needs a bat."
    assert result.market_analysis.expected_final_price == 11_000

    context = enhancer.contexts[0]
    assert context["max_price"] == 9_000
    assert context["bidder_purses"]["b2"] == 100_000


def test_enhanced_probability_respects_hard_ceiling_over_loose_profile():
    enhancer = StaticEnhancer({"likely_bidders": [{"bidder_id": "b3", "probability": 1.7}]})
    engine = BidPredictionEngine(weights=PredictionWeights(probability_cap=1.5), enhancer=enhancer)
    result = engine.predict(make_snapshot(), "p1", "b1", use_external_enhancement=True)

    assert result.narrative_source == "external"
    b3 = next(item for item in result.likely_bidders if item.bidder_id == "b3")
    assert b3.probability == pytest.approx(0.95)
    assert all(item.probability <= 0.95 for item in result.likely_bidders)


def test_enhancement_changing_action_is_discarded():
    result = _predict(StaticEnhancer({"recommended_action": {"action": "pass", "reasoning": "Skip."}}))
    assert result.narrative_source == "local"
    assert result.to_dict() == _local().to_dict()


def test_enhancement_changing_suggested_price_is_discarded():
    result = _predict(StaticEnhancer({"recommended_action": {"action": "bid", "suggested_buy_price": 12_000}}))
    assert result.narrative_source == "local"
    assert result.recommended_action.suggested_buy_price == 5_000


def test_enhancer_failure_keeps_local_result():
    result = _predict(StaticEnhancer(error=RuntimeError("service down")))
    assert result.to_dict() == _local().to_dict()


def _chat_response(content: str, status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/chat/completions")
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["messages"][0]["role"] == "system"
        return httpx.Response(status_code, json={"choices": [{"message": {"content": content}}]})

    return httpx.MockTransport(handler)


def test_chat_client_parses_fenced_json():
    content = '```json\n{"recommended_action": {"action": "bid", "reasoning": "Fenced."}}\n```'
    client = httpx.Client(transport=_chat_response(content))
    with ChatCompletionsEnhancer("test-key", base_url="http://llm.local/v1", client=client) as enhancer:
        result = _predict(enhancer)
    assert result.narrative_source == "external"
    assert result.recommended_action.reasoning == "Fenced."


def test_chat_client_error_status_falls_back():
    client = httpx.Client(transport=_chat_response("{}", status_code=500))
    enhancer = ChatCompletionsEnhancer("test-key", base_url="http://llm.local/v1", client=client)
    with pytest.raises(NarrativeClientError):
        enhancer.enhance(_local(), {})
    assert _predict(enhancer).narrative_source == "local"
    enhancer.close()


def test_from_env_without_key_returns_none(monkeypatch):
    monkeypatch.delenv("PYAUCTION_NARRATIVE_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert ChatCompletionsEnhancer.from_env() is None


def test_from_env_reads_model_and_base_url(monkeypatch):
    monkeypatch.setenv("PYAUCTION_NARRATIVE_API_KEY", "k")
    monkeypatch.setenv("PYAUCTION_NARRATIVE_MODEL", "tiny-model")
    monkeypatch.setenv("PYAUCTION_NARRATIVE_BASE_URL", "http://llm.local/v1/")
    enhancer = ChatCompletionsEnhancer.from_env()
    assert enhancer.model == "tiny-model"
    assert enhancer.base_url == "http://llm.local/v1"
    enhancer.close()


def test_parse_enhancement_rejects_non_objects():
    assert parse_enhancement("") is None
    with pytest.raises(NarrativeClientError):
        parse_enhancement("[1, 2]")
    with pytest.raises(NarrativeClientError):
        parse_enhancement("not json")
