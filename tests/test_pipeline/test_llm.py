from __future__ import annotations

import json

import httpx
import pytest

from src.config import Settings
from src.models.normalization import NormalizationDomain, NormalizationSource
from src.pipeline.errors import (
    ConfigurationError,
    ParseError,
    PermanentAPIError,
    TransientAPIError,
)
from src.pipeline.llm import (
    SemanticGroupingClient,
    extract_json_object,
    parse_grouping_response,
)
from src.pipeline.normalize import NameNormalizer
from tests.fixtures.xrf_readings import FakeCache


def _settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "database_url": "postgresql+asyncpg://xrf:pw@localhost:5432/xrf_processor",
        "openai_api_key": "sk-test-openai",
        "ai_min_request_interval_seconds": 0.0,
        "ai_retry_backoff_base_seconds": 1.0,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _client(clock: FakeClock | None = None, **overrides: object) -> SemanticGroupingClient:
    clock = clock or FakeClock()
    return SemanticGroupingClient(_settings(**overrides), sleep=clock.sleep, clock=clock)


def _status_error(status: int) -> httpx.HTTPStatusError:
    resp = httpx.Response(status, request=httpx.Request("POST", "https://example.com"))
    return httpx.HTTPStatusError("error", request=resp.request, response=resp)


_GROUPS_JSON = json.dumps({
    "normalizations": [
        {"canonical": "Door Jamb", "variants": ["door jamb", "dr jamb"], "confidence": 0.95},
    ]
})


# --- response extraction ---
class TestExtractJsonObject:
    def test_pure_json(self) -> None:
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_block(self) -> None:
        raw = 'Sure:\n```json\n{"a": 1}\n```\nDone.'
        assert extract_json_object(raw) == {"a": 1}

    def test_fenced_block_without_language(self) -> None:
        assert extract_json_object('```\n{"b": 2}\n```') == {"b": 2}

    def test_embedded_in_commentary(self) -> None:
        raw = 'Here is the grouping {"a": {"nested": "}"}} hope it helps {"b": 2}'
        assert extract_json_object(raw) == {"a": {"nested": "}"}}

    def test_invalid_fence_falls_back_to_balanced_span(self) -> None:
        raw = '```\nnot json\n```\n{"a": 1}'
        assert extract_json_object(raw) == {"a": 1}

    def test_unparseable_raises_parse_error(self) -> None:
        with pytest.raises(ParseError):
            extract_json_object("I could not group these names.")

    def test_json_array_is_not_an_object(self) -> None:
        with pytest.raises(ParseError):
            extract_json_object("[1, 2, 3]")


class TestParseGroupingResponse:
    def test_parses_groups(self) -> None:
        result = parse_grouping_response(_GROUPS_JSON)
        assert len(result.normalizations) == 1
        assert result.normalizations[0].canonical == "Door Jamb"
        assert result.normalizations[0].variants == ["door jamb", "dr jamb"]

    def test_normalizations_must_be_a_list(self) -> None:
        with pytest.raises(ParseError):
            parse_grouping_response('{"normalizations": "none found"}')
    def test_missing_normalizations_key(self) -> None:
        with pytest.raises(ParseError):
            parse_grouping_response('{"groups": []}')

    def test_skips_malformed_groups_and_clamps_confidence(self) -> None:
        raw = json.dumps({
            "normalizations": [
                {"canonical": "", "variants": ["x"]},
                {"canonical": "Window Sill", "variants": "win sill"},
                "junk",
                {"canonical": "Wood", "variants": ["wd"], "confidence": 1.7},
                {"canonical": "Metal", "variants": ["mtl"]},
            ]
        })
        result = parse_grouping_response(raw)
        assert [g.canonical for g in result.normalizations] == ["Wood", "Metal"]
        assert result.normalizations[0].confidence == 1.0
        assert result.normalizations[1].confidence == 0.9


# --- configuration ---
def test_openai_configured_with_key() -> None:
    assert _client().is_configured() is True


def test_openai_not_configured_without_key() -> None:
    assert _client(openai_api_key=None).is_configured() is False


def test_azure_requires_endpoint() -> None:
    client = _client(ai_provider="azure", azure_openai_api_key="azure-key", azure_openai_endpoint=None)
    assert client.is_configured() is False
    configured = _client(
        ai_provider="azure",
        azure_openai_api_key="azure-key",
        azure_openai_endpoint="https://res.openai.azure.com/",
        ai_model="gpt4-deploy",
    )
    assert configured.is_configured() is True


def test_build_request_openai() -> None:
    url, headers, body = _client(openai_base_url="https://api.openai.com/v1/")._build_request("sys", "user")
    assert url == "https://api.openai.com/v1/chat/completions"
    assert headers["Authorization"] == "Bearer sk-test-openai"
    assert body["model"] == "gpt-4o-mini"
    assert body["messages"][0] == {"role": "system", "content": "sys"}


def test_build_request_azure() -> None:
    client = _client(
        ai_provider="azure",
        azure_openai_api_key="azure-key",
        azure_openai_endpoint="https://res.openai.azure.com/",
        ai_model="gpt4-deploy",
    )
    url, headers, body = client._build_request("sys", "user")
    assert url == (
        "https://res.openai.azure.com/openai/deployments/gpt4-deploy/chat/completions"
        "?api-version=2024-02-15-preview"
    )
    assert headers == {"api-key": "azure-key"}
    assert "model" not in body


@pytest.mark.asyncio
async def test_group_unconfigured_raises_configuration_error() -> None:
    client = _client(openai_api_key=None)
    calls = 0

    async def _fake(**kw: object) -> str:
        nonlocal calls
        calls += 1
        return _GROUPS_JSON

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    with pytest.raises(ConfigurationError):
        await client.group("sys", ["door jamb"])
    assert calls == 0


@pytest.mark.asyncio
async def test_group_empty_names_makes_no_request() -> None:
    client = _client(openai_api_key=None)
    result = await client.group("sys", [])
    assert result.normalizations == []
    assert client.request_count == 0


# --- retry / backoff ---
@pytest.mark.asyncio
async def test_retry_on_429_then_success() -> None:
    clock = FakeClock()
    client = _client(clock)
    attempt = 0

    async def _fake(**kw: object) -> str:
        nonlocal attempt
        attempt += 1
        if attempt == 1:
            raise _status_error(429)
        return _GROUPS_JSON

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    result = await client.group("sys", ["door jamb", "dr jamb"])
    assert attempt == 2
    assert clock.sleeps == [1.0]
    assert result.normalizations[0].canonical == "Door Jamb"


@pytest.mark.asyncio
async def test_backoff_is_exponential_and_bounded() -> None:
    clock = FakeClock()
    client = _client(clock, ai_retry_backoff_base_seconds=0.5)
    attempt = 0

    async def _fake(**kw: object) -> str:
        nonlocal attempt
        attempt += 1
        raise _status_error(429)

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    with pytest.raises(TransientAPIError) as excinfo:
        await client.group("sys", ["door jamb"])
    assert attempt == 3
    assert clock.sleeps == [0.5, 1.0]
    assert excinfo.value.status_code == 429


@pytest.mark.asyncio
async def test_auth_error_not_retried() -> None:
    clock = FakeClock()
    client = _client(clock)
    attempt = 0

    async def _fake(**kw: object) -> str:
        nonlocal attempt
        attempt += 1
        raise _status_error(401)

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    with pytest.raises(PermanentAPIError) as excinfo:
        await client.group("sys", ["door jamb"])
    assert attempt == 1
    assert clock.sleeps == []
    assert excinfo.value.kind == "permanent"


@pytest.mark.asyncio
async def test_server_error_not_retried() -> None:
    client = _client()
    attempt = 0

    async def _fake(**kw: object) -> str:
        nonlocal attempt
        attempt += 1
        raise _status_error(503)

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    with pytest.raises(PermanentAPIError):
        await client.group("sys", ["door jamb"])
    assert attempt == 1


@pytest.mark.asyncio
async def test_transport_error_is_permanent() -> None:
    client = _client()

    async def _fake(**kw: object) -> str:
        raise httpx.ConnectError("connection refused")

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    with pytest.raises(PermanentAPIError):
        await client.group("sys", ["door jamb"])


@pytest.mark.asyncio
async def test_unparseable_response_raises_parse_error() -> None:
    client = _client()

    async def _fake(**kw: object) -> str:
        return "Sorry, I cannot help with that."

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    with pytest.raises(ParseError):
        await client.group("sys", ["door jamb"])


# --- rate limiting ---
@pytest.mark.asyncio
async def test_min_interval_between_requests() -> None:
    clock = FakeClock()
    client = _client(clock, ai_min_request_interval_seconds=1.0)

    async def _fake(**kw: object) -> str:
        clock.now += 0.25
        return _GROUPS_JSON

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    await client.group("sys", ["door jamb"])
    assert clock.sleeps == []
    await client.group("sys", ["window sill"])
    assert clock.sleeps == [pytest.approx(1.0)]
    assert client.request_count == 2


@pytest.mark.asyncio
async def test_no_wait_when_interval_already_elapsed() -> None:
    clock = FakeClock()
    client = _client(clock, ai_min_request_interval_seconds=1.0)

    async def _fake(**kw: object) -> str:
        return _GROUPS_JSON

    client._call_chat_completion = _fake  # type: ignore[method-assign]
    await client.group("sys", ["door jamb"])
    clock.now += 5.0
    await client.group("sys", ["window sill"])
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_call_chat_completion_reads_content(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"choices": [{"message": {"content": _GROUPS_JSON}}]})

    transport = httpx.MockTransport(_handler)
    real_client = httpx.AsyncClient

    def _client_factory(*args: object, **kwargs: object) -> httpx.AsyncClient:
        kwargs["transport"] = transport
        return real_client(*args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(httpx, "AsyncClient", _client_factory)
    client = _client()
    content = await client._call_chat_completion(system_prompt="sys", user_prompt="user")
    assert content == _GROUPS_JSON
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test-openai"


@pytest.mark.asyncio
async def test_call_chat_completion_empty_content_is_parse_error(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})
    )
    real_client = httpx.AsyncClient

    def _client_factory(*args: object, **kwargs: object) -> httpx.AsyncClient:
        kwargs["transport"] = transport
        return real_client(*args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(httpx, "AsyncClient", _client_factory)
    with pytest.raises(ParseError):
        await _client()._call_chat_completion(system_prompt="sys", user_prompt="user")


def _html_gateway_transport(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, text="<html>502 upstream gateway</html>")
    )
    real_client = httpx.AsyncClient

    def _client_factory(*args: object, **kwargs: object) -> httpx.AsyncClient:
        kwargs["transport"] = transport
        return real_client(*args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(httpx, "AsyncClient", _client_factory)


@pytest.mark.asyncio
async def test_non_json_success_body_is_parse_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _html_gateway_transport(monkeypatch)
    client = _client()
    with pytest.raises(ParseError):
        await client.group("sys", ["door jamb"])
    assert client.request_count == 1


@pytest.mark.asyncio
async def test_non_json_success_body_degrades_normalizer_to_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    _html_gateway_transport(monkeypatch)
    cache = FakeCache()
    normalizer = NameNormalizer(
        domain=NormalizationDomain.COMPONENT, cache=cache, grouping_client=_client()
    )

    records = await normalizer.normalize(["door jamb", "dr jamb"])

    assert [r.normalized_name for r in records] == ["Door Jamb", "Dr Jamb"]
    assert all(r.source == NormalizationSource.FALLBACK for r in records)
    assert all(r.confidence == 0.5 for r in records)
