"""Tests for agentstream.cli."""

from unittest.mock import patch

from langchain_core.messages import AIMessage
from typer.testing import CliRunner

from agentstream import __version__
from agentstream.cli.commands import app
from agentstream.core.config import Config
from agentstream.core.errors import ProviderError
from tests.fakes import RecordingSearch, scripted_llm, text_stream, tool_call_reply

runner = CliRunner()

_PATCH_CONFIG = "agentstream.core.config.loader.load_config"
_PATCH_TEXT = "agentstream.agent.direct.llm_provider.astream_text"
_PATCH_CHAT = "agentstream.agent.nodes.llm_provider.astream_chat"
_PATCH_SELECT = "agentstream.agent.runner.select_tools"


def _config():
    return Config(llm={"api_key": "sk-test"})


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.output
    assert "chat" in result.output


def test_cli_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_chat_direct():
    with (
        patch(_PATCH_CONFIG, return_value=_config()),
        patch(_PATCH_TEXT, new=text_stream("Merhaba", "!")),
    ):
        result = runner.invoke(app, ["chat", "-m", "selam"])

    assert result.exit_code == 0
    assert "Merhaba!" in result.output


def test_chat_agent_flag():
    search = RecordingSearch(answer="[Sunny](http://w)")
    llm = scripted_llm(tool_call_reply("search", "weather"), AIMessage(content="Sunny today."))
    with (
        patch(_PATCH_CONFIG, return_value=_config()),
        patch(_PATCH_CHAT, llm),
        patch(_PATCH_SELECT, return_value=[search.tool]),
    ):
        result = runner.invoke(app, ["chat", "-m", "weather?", "--agent"])

    assert result.exit_code == 0
    assert search.queries == ["weather"]
    assert "[Sunny](http://w)" in result.output
    assert "Sunny today." in result.output


def test_chat_missing_key_exits():
    with patch(_PATCH_CONFIG, return_value=Config()):
        result = runner.invoke(app, ["chat", "-m", "hi"])
    assert result.exit_code == 1
    assert "API key" in result.output


def test_chat_provider_error_exits():
    async def failing(messages, settings, temperature=None):
        raise ProviderError("LLM unavailable")
        yield  # pragma: no cover

    with (
        patch(_PATCH_CONFIG, return_value=_config()),
        patch(_PATCH_TEXT, new=failing),
    ):
        result = runner.invoke(app, ["chat", "-m", "hi"])

    assert result.exit_code == 1
    assert "LLM unavailable" in result.output
