"""Tests for the analysis client and its retry policy."""

import json
from types import SimpleNamespace

import pytest

from app.archive_analyzer.models import AnalysisResult, ImagePayload
from app.archive_analyzer.services.ai import AnalysisClient, analyze_image, backoff_delay
from app.archive_analyzer.services.exceptions import AnalysisError


def _response(content: str | None):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeCompletions:
    """Plays back a scripted sequence of answers and errors."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return _response(outcome)


class FakeModels:
    def __init__(self, ids=None, error=None):
        self.ids = ids or []
        self.error = error

    async def list(self):
        if self.error:
            raise self.error
        return SimpleNamespace(data=[SimpleNamespace(id=i) for i in self.ids])


def _fake_client(outcomes=(), model_ids=None, models_error=None):
    completions = FakeCompletions(outcomes)
    return SimpleNamespace(
        chat=SimpleNamespace(completions=completions),
        models=FakeModels(model_ids, models_error),
    )


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def image() -> ImagePayload:
    return ImagePayload(mime_type="image/png", data="aGVsbG8=")


class TestRetryPolicy:
    """Tests for bounded retries with exponential backoff."""

    def test_backoff_delay(self):
        """Test the wait after attempt n is 2**n seconds."""
        assert [backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, image: ImagePayload):
        """Test no wait happens when the first attempt succeeds."""
        client = _fake_client(["{}"])
        sleep = RecordingSleep()

        content = await analyze_image(image, client, "model", sleep=sleep)

        assert content == "{}"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_third_attempt_succeeds(self, image: ImagePayload):
        """Test two failures then success waits 2s then 4s."""
        client = _fake_client([TimeoutError("slow"), RuntimeError("500"), "answer"])
        sleep = RecordingSleep()

        content = await analyze_image(image, client, "model", max_attempts=3, sleep=sleep)

        assert content == "answer"
        assert sleep.delays == [2.0, 4.0]
        assert len(client.chat.completions.calls) == 3

    @pytest.mark.asyncio
    async def test_all_attempts_fail(self, image: ImagePayload):
        """Test exhaustion raises AnalysisError with the last error."""
        last = RuntimeError("still down")
        client = _fake_client([RuntimeError("down"), RuntimeError("down"), last])
        sleep = RecordingSleep()

        with pytest.raises(AnalysisError) as exc_info:
            await analyze_image(image, client, "model", max_attempts=3, sleep=sleep)

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert "after 3 attempts" in str(exc_info.value)
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_empty_content_counts_as_failure(self, image: ImagePayload):
        """Test an empty answer is retried."""
        client = _fake_client(["", "answer"])
        sleep = RecordingSleep()

        assert await analyze_image(image, client, "model", sleep=sleep) == "answer"
        assert sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_invalid_attempt_budget(self, image: ImagePayload):
        """Test max_attempts must be at least one."""
        with pytest.raises(ValueError):
            await analyze_image(image, _fake_client(), "model", max_attempts=0)

    @pytest.mark.asyncio
    async def test_request_parameters(self, image: ImagePayload):
        """Test deterministic decoding and the image data URL are sent."""
        client = _fake_client(["answer"])
        await analyze_image(image, client, "vision-model", sleep=RecordingSleep())

        call = client.chat.completions.calls[0]
        assert call["model"] == "vision-model"
        assert call["temperature"] == 0.0
        assert call["top_p"] == 0.1
        assert call["max_tokens"] == 2048

        user_content = call["messages"][1]["content"]
        assert user_content[1]["image_url"]["url"] == "data:image/png;base64,aGVsbG8="


class TestAnalysisClient:
    """Tests for AnalysisClient."""

    def test_mock_mode_without_key(self):
        """Test a missing key switches to mock mode."""
        client = AnalysisClient(api_key="")
        assert client.use_mock is True

    def test_injected_client_disables_mock(self):
        """Test a provided client is used for real calls."""
        client = AnalysisClient(client=_fake_client())
        assert client.use_mock is False

    @pytest.mark.asyncio
    async def test_mock_analysis_is_valid(self, image: ImagePayload):
        """Test the mock answer passes validation."""
        client = AnalysisClient(use_mock=True)
        raw = await client.analyze(image)
        result = client.parse(raw)

        assert isinstance(result, AnalysisResult)
        assert result.title == "Mock Analysis of Archival Document"
        assert len(result.entities) == 3
        assert result.entities[2].date == "1944-06-06"

    @pytest.mark.asyncio
    async def test_analyze_uses_retry_budget(self, image: ImagePayload):
        """Test analyze retries through the injected client and sleep."""
        fake = _fake_client([RuntimeError("down"), json.dumps({"ok": True})])
        sleep = RecordingSleep()
        client = AnalysisClient(client=fake, model="m", max_attempts=2, sleep=sleep)

        raw = await client.analyze(image)

        assert json.loads(raw) == {"ok": True}
        assert sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_list_models(self):
        """Test model IDs are read from the endpoint."""
        client = AnalysisClient(client=_fake_client(model_ids=["a", "b"]))
        assert await client.list_models() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_list_models_mock(self):
        """Test mock mode reports the configured model."""
        client = AnalysisClient(use_mock=True, model="vision")
        assert await client.list_models() == ["vision"]

    @pytest.mark.asyncio
    async def test_check_connection(self):
        """Test connection check reflects model listing."""
        ok = AnalysisClient(client=_fake_client(model_ids=["a"]))
        down = AnalysisClient(client=_fake_client(models_error=RuntimeError("refused")))

        assert await ok.check_connection() is True
        assert await down.check_connection() is False
