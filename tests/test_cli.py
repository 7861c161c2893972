"""CLI entry point and the package-level ``run`` helper."""

from __future__ import annotations

import asyncio
import io
from pathlib import Path
from typing import Any

import pytest

import parlance
from parlance import cli
from parlance.config import Config
from parlance.errors import APIError, SessionTimeoutError

pytestmark = pytest.mark.unit


@pytest.fixture
def piped_stdin(monkeypatch: pytest.MonkeyPatch):
    """Replace stdin with a non-TTY stream; call with the text to pipe."""

    def _pipe(text: str = "") -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO(text))

    _pipe()
    return _pipe


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args(["-p", "hi"])

    assert args.prompt == "hi"
    assert args.model is None
    assert args.max_turns is None
    assert args.no_stream is False
    assert args.mock is False
    assert args.base_dir == "."


def test_version_flag_prints_version(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])

    assert excinfo.value.code == 0
    assert parlance.__version__ in capsys.readouterr().out


def test_mock_run_streams_echo_to_stdout(
    piped_stdin, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["--mock", "-p", "hello", "--base-dir", str(tmp_path)])

    out = capsys.readouterr().out
    assert code == cli.EXIT_OK
    assert out == "echo: hello\n"


def test_positional_words_form_the_prompt(
    piped_stdin, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["--mock", "--no-stream", "how", "are", "you"])

    assert code == 0
    assert capsys.readouterr().out == "echo: how are you\n"


def test_piped_stdin_is_prepended_to_prompt(
    piped_stdin, capsys: pytest.CaptureFixture[str]
) -> None:
    piped_stdin("notes.txt contents\n")

    code = cli.main(["--mock", "--no-stream", "-p", "summarize"])

    assert code == 0
    assert capsys.readouterr().out == "echo: notes.txt contents\n\nsummarize\n"


def test_missing_prompt_without_tty_is_a_usage_error(piped_stdin) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--mock"])

    assert excinfo.value.code == 2


def test_missing_api_key_exits_with_error(
    piped_stdin, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["-p", "hi", "-m", "gpt-4o"])

    captured = capsys.readouterr()
    assert code == cli.EXIT_ERROR
    assert captured.out == ""
    assert "API key required" in captured.err
    assert "OPENAI_API_KEY" in captured.err


def test_invalid_settings_exit_with_error(
    piped_stdin, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["--mock", "-p", "hi", "--max-turns", "0"])

    assert code == cli.EXIT_ERROR
    assert "Error:" in capsys.readouterr().err


def test_timeout_exits_with_124(
    piped_stdin, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    async def hang(*args: Any, **kwargs: Any) -> tuple[int, list[Any]]:
        await asyncio.sleep(10)
        return 0, []

    monkeypatch.setattr(cli, "_run_session", hang)

    code = cli.main(["--mock", "-p", "hi", "--timeout", "0.05"])

    assert code == cli.EXIT_TIMEOUT
    assert "timed out" in capsys.readouterr().err


# =============================================================================
# parlance.run
# =============================================================================


@pytest.mark.asyncio
async def test_run_returns_final_text_with_mock_provider() -> None:
    text = await parlance.run("ping", config=Config(use_mock=True, stream=False))

    assert text == "echo: ping"


@pytest.mark.asyncio
async def test_run_raises_the_terminal_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def refuse(self: Any, request: Any) -> Any:
        raise APIError("bad request", status_code=400)

    monkeypatch.setattr("parlance.providers.mock.MockProvider.chat", refuse)

    with pytest.raises(APIError, match="bad request"):
        await parlance.run("hi", config=Config(use_mock=True, stream=False))


@pytest.mark.asyncio
async def test_run_converts_timeout_to_session_timeout_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def slow_chat(self: Any, request: Any) -> Any:
        await asyncio.sleep(10)

    monkeypatch.setattr("parlance.providers.mock.MockProvider.chat", slow_chat)

    with pytest.raises(SessionTimeoutError, match="timed out after 0.05 seconds"):
        await parlance.run(
            "hi", config=Config(use_mock=True, stream=False, timeout_s=0.05)
        )
