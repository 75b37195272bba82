from __future__ import annotations

from types import SimpleNamespace

from perflab.rewrite import SYSTEM_PROMPT, OpenAIRewriter, build_rewriter


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.content is None:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _client(content):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_rewrite_sends_grounded_context() -> None:
    client, completions = _client("Load is stable this week.")
    rewriter = OpenAIRewriter("key", model="test-model", max_tokens=300, temperature=0.1, client=client)

    result = rewriter.rewrite("How is the load?", "SQUAD - GPS EXTERNAL LOAD\nTotal records: 3")

    assert result == "Load is stable this week."
    assert completions.kwargs["model"] == "test-model"
    assert completions.kwargs["max_tokens"] == 300
    messages = completions.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert "Coach question: How is the load?" in messages[1]["content"]
    assert "Total records: 3" in messages[1]["content"]


def test_rewrite_without_choices_returns_empty_text() -> None:
    client, _ = _client(None)
    assert OpenAIRewriter("key", model="m", client=client).rewrite("q", "ctx") == ""


def test_build_rewriter_requires_api_key(monkeypatch) -> None:
    assert build_rewriter() is None
    monkeypatch.setenv("LLM_API_KEY", "sk-test")
    rewriter = build_rewriter()
    assert isinstance(rewriter, OpenAIRewriter)
    assert rewriter.model == "openai/gpt-4o-mini"
