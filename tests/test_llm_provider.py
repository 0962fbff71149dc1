from types import SimpleNamespace

from elanvital.agent import llm_provider
from elanvital.agent.llm_provider import run_structured_completion, validate_structured_response
from elanvital.agent.schemas import ClassifierOutput


class _FakeCompletions:

    def __init__(self, content):
        self.content = content
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.content, Exception):
            raise self.content
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(content):
    completions = _FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


async def _classify(**overrides):
    kwargs = dict(model="gpt-4o-mini",
                  system_prompt="분류",
                  developer_prompt=None,
                  user_payload={"text": "안녕"},
                  response_model=ClassifierOutput,
                  max_completion_tokens=100)
    kwargs.update(overrides)
    return await run_structured_completion(**kwargs)


def test_validate_accepts_fenced_json():
    raw = '```json\n{"category": "TASK", "confidence": 0.8}\n```'
    parsed = validate_structured_response(ClassifierOutput, raw)
    assert parsed.category == "TASK"
    assert parsed.extractedInfo.content is None


def test_validate_slices_outer_object():
    parsed = validate_structured_response(ClassifierOutput, 'result: {"category": "HELP"} done')
    assert parsed.category == "HELP"


def test_validate_rejects_garbage():
    assert validate_structured_response(ClassifierOutput, "not json at all") is None
    assert validate_structured_response(ClassifierOutput, "") is None
    assert validate_structured_response(ClassifierOutput, '{"confidence": 1}') is None


async def test_missing_api_key_is_unavailable(monkeypatch):
    monkeypatch.setenv("AGENT_LLM_PROVIDER", "openai")

    def _raise():
        raise RuntimeError("OPENAI_API_KEY is not set")

    monkeypatch.setattr(llm_provider, "get_async_client", _raise)
    parsed, raw, meta = await _classify()
    assert parsed is None and raw == ""
    assert meta["unavailable_reason"] == "openai_api_key_missing"


async def test_parses_openai_json(monkeypatch):
    monkeypatch.setenv("AGENT_LLM_PROVIDER", "openai")
    client, completions = _fake_client('{"category": "SCHEDULE", "scheduleType": "add"}')
    monkeypatch.setattr(llm_provider, "get_async_client", lambda: client)
    parsed, raw, meta = await _classify()
    assert parsed.category == "SCHEDULE"
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert "json" in completions.kwargs["messages"][0]["content"].lower()
    assert "llm_error" not in meta


async def test_malformed_output_reports_error(monkeypatch):
    monkeypatch.setenv("AGENT_LLM_PROVIDER", "openai")
    client, _ = _fake_client("{category: SCHEDULE")
    monkeypatch.setattr(llm_provider, "get_async_client", lambda: client)
    parsed, raw, meta = await _classify()
    assert parsed is None
    assert raw == "{category: SCHEDULE"
    assert meta["llm_error"] == "unparseable_output"


async def test_transport_error_never_raises(monkeypatch):
    monkeypatch.setenv("AGENT_LLM_PROVIDER", "openai")
    client, _ = _fake_client(ConnectionError("boom"))
    monkeypatch.setattr(llm_provider, "get_async_client", lambda: client)
    parsed, _raw, meta = await _classify()
    assert parsed is None
    assert "boom" in meta["llm_error"]


def test_select_provider(monkeypatch):
    monkeypatch.delenv("AGENT_LLM_PROVIDER", raising=False)
    assert llm_provider.select_provider("gpt-4o-mini") == "openai"
    assert llm_provider.select_provider("gemini-2.0-flash") == "gemini"
    assert llm_provider.select_provider("models/gemini-flash-latest") == "gemini"
    monkeypatch.setenv("AGENT_LLM_PROVIDER", "openai")
    assert llm_provider.select_provider("gemini-2.0-flash") == "openai"


async def test_gemini_without_package_is_unavailable(monkeypatch):
    monkeypatch.setenv("AGENT_LLM_PROVIDER", "gemini")
    monkeypatch.setattr(llm_provider, "genai", None)
    parsed, raw, meta = await _classify()
    assert parsed is None and raw == ""
    assert meta["llm_available"] is False
    assert meta["unavailable_reason"] == "google_genai_not_installed"
