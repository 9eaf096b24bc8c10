import asyncio
import base64
from types import SimpleNamespace

import httpx
import pytest

import drscan.classifier as classifier_module
from conftest import ScriptedBackend
from drscan.classifier import (
    CLASSIFICATION_PROMPT,
    GeminiBackend,
    RetinopathyClassifier,
    map_api_error,
    parse_data_url,
    parse_severity,
)
from drscan.errors import (
    AnalysisTimeoutError,
    ConfigurationError,
    FormatError,
    ImageTooLargeError,
    InvalidResponseError,
    NetworkError,
    PermissionDeniedError,
    QuotaExceededError,
    RemoteServiceError,
    UnauthenticatedError,
)

PAYLOAD = b"\x89PNG fake image bytes"
IMAGE_URL = "data:image/png;base64," + base64.b64encode(PAYLOAD).decode()


def test_parse_data_url():
    assert parse_data_url(IMAGE_URL) == ("image/png", PAYLOAD)


@pytest.mark.parametrize("url", [
    "",
    "image/png;base64,AAAA",
    "data:image/png,AAAA",
    "data:image/png;base64,",
    "data:;base64,AAAA",
])
def test_malformed_data_urls_raise_format_error(url):
    with pytest.raises(FormatError):
        parse_data_url(url)


def test_unsupported_mime_raises_format_error():
    with pytest.raises(FormatError) as excinfo:
        parse_data_url("data:image/gif;base64,R0lGODlh")
    assert "JPEG or PNG" in excinfo.value.user_message


def test_bad_base64_raises_format_error():
    with pytest.raises(FormatError):
        parse_data_url("data:image/png;base64,***")


@pytest.mark.parametrize("text, level", [("2", 2), (" 0\n", 0), ("4.", 4), ("3 - Severe DR", 3)])
def test_parse_severity(text, level):
    assert parse_severity(text) == level


@pytest.mark.parametrize("text", ["7", "abc", "", "   ", "-1", "Level 2", None])
def test_parse_severity_rejects(text):
    with pytest.raises(InvalidResponseError):
        parse_severity(text)


def test_classify_sends_prompt_and_image():
    backend = ScriptedBackend((0, "2"))
    classifier = RetinopathyClassifier(backend)

    assert asyncio.run(classifier.classify(IMAGE_URL)) == 2
    assert backend.calls == [(CLASSIFICATION_PROMPT, PAYLOAD, "image/png")]


@pytest.mark.parametrize("answer", ["7", "abc"])
def test_classify_rejects_invalid_answers(answer):
    classifier = RetinopathyClassifier(ScriptedBackend((0, answer)))
    with pytest.raises(InvalidResponseError):
        asyncio.run(classifier.classify(IMAGE_URL))


def test_classify_rejects_bad_image_before_calling_backend():
    backend = ScriptedBackend((0, "1"))
    with pytest.raises(FormatError):
        asyncio.run(RetinopathyClassifier(backend).classify("data:image/gif;base64,R0lGODlh"))
    assert backend.calls == []


def test_classify_times_out_and_abandons_request():
    backend = ScriptedBackend((5, "1"))
    classifier = RetinopathyClassifier(backend, timeout_seconds=0.05)

    with pytest.raises(AnalysisTimeoutError):
        asyncio.run(classifier.classify(IMAGE_URL))
    assert backend.cancelled == 1
    assert backend.finished == 0


def test_default_timeout_is_thirty_seconds():
    assert RetinopathyClassifier(ScriptedBackend()).timeout_seconds == 30.0


def test_remote_errors_propagate_unchanged():
    classifier = RetinopathyClassifier(ScriptedBackend((0, QuotaExceededError())))
    with pytest.raises(QuotaExceededError):
        asyncio.run(classifier.classify(IMAGE_URL))


class _ApiError(Exception):
    def __init__(self, code, status, message):
        super().__init__(message)
        self.code = code
        self.status = status
        self.message = message


@pytest.mark.parametrize("error, kind", [
    (_ApiError(401, "UNAUTHENTICATED", "bad credentials"), UnauthenticatedError),
    (_ApiError(400, "INVALID_ARGUMENT", "API key not valid. Please pass a valid API key."),
     UnauthenticatedError),
    (_ApiError(403, "PERMISSION_DENIED", "no access"), PermissionDeniedError),
    (_ApiError(429, "RESOURCE_EXHAUSTED", "quota"), QuotaExceededError),
    (_ApiError(400, "INVALID_ARGUMENT", "Request payload size exceeds the limit"), ImageTooLargeError),
    (_ApiError(413, None, "payload"), ImageTooLargeError),
    (_ApiError(500, "INTERNAL", "boom"), RemoteServiceError),
])
def test_map_api_error(error, kind):
    mapped = map_api_error(error)
    assert type(mapped) is kind
    assert mapped.user_message == kind.default_message


class _FakeModels:
    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []

    async def generate_content(self, *, model, contents):
        self.requests.append((model, contents))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class _FakeClient:
    def __init__(self, outcome):
        self.models = _FakeModels(outcome)
        self.closed = 0
        self.aio = SimpleNamespace(models=self.models, aclose=self._aclose)

    async def _aclose(self):
        self.closed += 1


def _fake_client(outcome):
    client = _FakeClient(outcome)
    return client, client.models


@pytest.fixture
def created_clients(monkeypatch):
    """Replace genai.Client so backends without an injected client build fakes."""
    created = []
    outcomes = []

    def factory(api_key):
        client = _FakeClient(outcomes.pop(0) if outcomes else SimpleNamespace(text="1"))
        client.api_key = api_key
        created.append(client)
        return client

    monkeypatch.setattr(classifier_module.genai, "Client", factory)
    return created, outcomes


def test_gemini_backend_returns_response_text():
    client, models = _fake_client(SimpleNamespace(text=" 3 "))
    backend = GeminiBackend(None, model_name="gemini-test", client=client)

    assert asyncio.run(backend("prompt", PAYLOAD, "image/png")) == " 3 "
    model, contents = models.requests[0]
    assert model == "gemini-test"
    assert contents[0] == "prompt"


def test_gemini_backend_maps_transport_failures():
    client, _ = _fake_client(httpx.ConnectError("connection refused"))
    backend = GeminiBackend(None, client=client)
    with pytest.raises(NetworkError):
        asyncio.run(backend("prompt", PAYLOAD, "image/png"))


def test_gemini_backend_without_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        asyncio.run(GeminiBackend(None)("prompt", PAYLOAD, "image/png"))


def test_empty_model_response_is_invalid():
    client, _ = _fake_client(None)
    classifier = RetinopathyClassifier(GeminiBackend(None, client=client))
    with pytest.raises(InvalidResponseError):
        asyncio.run(classifier.classify(IMAGE_URL))


def test_gemini_backend_maps_sdk_timeouts_to_timeout_error():
    client, _ = _fake_client(httpx.ReadTimeout("slow"))
    backend = GeminiBackend(None, client=client)
    with pytest.raises(AnalysisTimeoutError) as excinfo:
        asyncio.run(backend("prompt", PAYLOAD, "image/png"))
    assert excinfo.value.user_message == AnalysisTimeoutError.default_message


def test_gemini_backend_closes_the_clients_it_creates(created_clients):
    created, _ = created_clients
    backend = GeminiBackend("secret-key")

    assert asyncio.run(backend("prompt", PAYLOAD, "image/png")) == "1"
    assert asyncio.run(backend("prompt", PAYLOAD, "image/png")) == "1"

    assert len(created) == 2
    assert [client.closed for client in created] == [1, 1]
    assert created[0].api_key == "secret-key"


def test_gemini_backend_closes_its_client_after_a_failure(created_clients):
    created, outcomes = created_clients
    outcomes.append(httpx.ConnectError("connection refused"))
    backend = GeminiBackend("secret-key")

    with pytest.raises(NetworkError):
        asyncio.run(backend("prompt", PAYLOAD, "image/png"))
    assert created[0].closed == 1


def test_gemini_backend_leaves_injected_client_open():
    client, _ = _fake_client(SimpleNamespace(text="0"))
    backend = GeminiBackend(None, client=client)

    asyncio.run(backend("prompt", PAYLOAD, "image/png"))

    assert client.closed == 0
