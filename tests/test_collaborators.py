"""Scorer, storage and payment gateway wiring."""

import httpx
import pytest
from beanie import PydanticObjectId

from bluecarbon.core.config import get_settings
from bluecarbon.core.exceptions import ConfigurationError
from bluecarbon.models.report import Report
from bluecarbon.payments.base import get_payment_gateway
from bluecarbon.scoring.base import ScoringError, UnconfiguredScorer, get_scorer
from bluecarbon.scoring.http import HttpScorer
from bluecarbon.storage.base import get_storage
from bluecarbon.storage.local import LocalStorage
from conftest import sample_raw_data

pytestmark = pytest.mark.asyncio


def _report() -> Report:
    return Report(id=PydanticObjectId(), project_id=PydanticObjectId(), submitter_id="m1", raw_data=sample_raw_data())


async def test_http_scorer_parses_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content
        return httpx.Response(200, json={"tonnage_estimate": 55.5, "quality_score": 0.8, "evidence_reference": "ml://run/7"})

    scorer = HttpScorer("http://scorer.test/score", transport=httpx.MockTransport(handler))
    result = await scorer.score(_report())
    assert result.tonnage_estimate == 55.5
    assert result.evidence_reference == "ml://run/7"
    assert b"NDVI" in seen["body"]


async def test_http_scorer_rejects_out_of_range():
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"tonnage_estimate": 10, "quality_score": 3}))
    with pytest.raises(ScoringError):
        await HttpScorer("http://scorer.test/score", transport=transport).score(_report())


async def test_http_scorer_wraps_server_errors():
    transport = httpx.MockTransport(lambda r: httpx.Response(503))
    with pytest.raises(ScoringError):
        await HttpScorer("http://scorer.test/score", transport=transport).score(_report())


async def test_unconfigured_scorer(monkeypatch):
    monkeypatch.delenv("SCORER_URL", raising=False)
    get_settings.cache_clear()
    scorer = get_scorer()
    assert isinstance(scorer, UnconfiguredScorer)
    with pytest.raises(ScoringError):
        await scorer.score(_report())


async def test_configured_scorer(monkeypatch):
    monkeypatch.setenv("SCORER_URL", "http://scorer.test/score")
    get_settings.cache_clear()
    assert isinstance(get_scorer(), HttpScorer)


async def test_local_storage_roundtrip(tmp_path, monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_PATH", str(tmp_path))
    get_settings.cache_clear()
    storage = get_storage()
    assert isinstance(storage, LocalStorage)
    await storage.put("mrv/p1/a.txt", b"hello")
    assert await storage.get("mrv/p1/a.txt") == b"hello"
    await storage.delete("mrv/p1/a.txt")
    with pytest.raises(FileNotFoundError):
        await storage.get("mrv/p1/a.txt")


async def test_gateway_requires_keys(monkeypatch):
    monkeypatch.setenv("RAZORPAY_KEY_ID", "")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "")
    get_settings.cache_clear()
    with pytest.raises(ConfigurationError):
        get_payment_gateway()
