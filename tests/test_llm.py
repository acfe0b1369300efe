"""Completion client tests. No request ever leaves the machine."""

from types import SimpleNamespace

import pytest

from recall_cli import llm
from recall_cli.assistant import summarize_pending
from recall_cli.config import LLMConfig
from recall_cli.db import Store
from recall_cli.errors import LLMError

AWS_ENV_VARS = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_PROFILE",
    "AWS_DEFAULT_PROFILE",
    "AWS_CONTAINER_CREDENTIALS_RELATIVE_URI",
    "AWS_CONTAINER_CREDENTIALS_FULL_URI",
    "AWS_WEB_IDENTITY_TOKEN_FILE",
    "AWS_ROLE_ARN",
)


@pytest.fixture
def no_aws_credentials(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """An AWS environment in which credential resolution finds nothing."""
    for name in AWS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "aws-config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "aws-credentials"))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")


class FakeMessages:
    def __init__(self, reply=None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.requests: list[dict] = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.reply


def _fake_client(monkeypatch: pytest.MonkeyPatch, messages: FakeMessages) -> None:
    monkeypatch.setattr(llm, "_client", lambda config: SimpleNamespace(messages=messages))


class TestComplete:

    def test_missing_api_key(self) -> None:
        with pytest.raises(LLMError, match="No Anthropic API key found"):
            llm.complete(LLMConfig(), "context", "question")

    def test_joins_text_blocks_into_one_reply(self, monkeypatch: pytest.MonkeyPatch) -> None:
        reply = SimpleNamespace(content=[
            SimpleNamespace(type="text", text="Hello "),
            SimpleNamespace(type="tool_use"),
            SimpleNamespace(type="text", text="there"),
        ])
        messages = FakeMessages(reply)
        _fake_client(monkeypatch, messages)

        assert llm.complete(LLMConfig(), "ctx", "ask") == "Hello there"
        (request,) = messages.requests
        assert request["max_tokens"] == llm.DEFAULT_MAX_TOKENS
        assert request["messages"] == [{"role": "user", "content": "ctx\n\nask"}]

    def test_empty_reply_is_an_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _fake_client(monkeypatch, FakeMessages(SimpleNamespace(content=[])))
        with pytest.raises(LLMError, match="Empty response"):
            llm.complete(LLMConfig(), "ctx", "ask")

    def test_sdk_runtime_error_becomes_llm_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        error = RuntimeError("could not resolve credentials from session")
        _fake_client(monkeypatch, FakeMessages(error=error))

        with pytest.raises(LLMError, match="could not resolve credentials") as info:
            llm.complete(LLMConfig(provider="bedrock"), "ctx", "ask")
        assert info.value.__cause__ is error

    def test_bedrock_without_aws_credentials(self, no_aws_credentials) -> None:
        config = LLMConfig(provider="bedrock", aws_region="us-east-1")
        with pytest.raises(LLMError):
            llm.complete(config, "ctx", "ask")


def test_summarize_pending_survives_credential_failure(
    store: Store, add, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A signing failure is recorded per session; the batch still finishes."""
    for session in ("a", "b"):
        for i in range(3):
            add(session, command_text=f"make step{i}")
    _fake_client(monkeypatch, FakeMessages(error=RuntimeError("no credentials")))

    outcomes = summarize_pending(store, LLMConfig(provider="bedrock"))

    assert sorted(o.session_id for o in outcomes) == ["a", "b"]
    assert all(o.summary is None and "no credentials" in o.error for o in outcomes)
    assert sorted(store.unsummarized_sessions(3)) == ["a", "b"]
