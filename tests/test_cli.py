"""Tests for mft-upload CLI helpers."""
import logging
import os
import types
from contextlib import ExitStack

import httpx
import pytest

from conftest import AUTHORITY_URL, BASE_URL
from mft_streaming import cli
from mft_streaming.cli import CLIError, _build_requests, _mask, _setup_logging, run_cli
from mft_streaming.cli_progress import render_results
from mft_streaming.errors import ValidationFailure
from mft_streaming.models import TransferOutcome, UploadRequest, UploadResult
from mft_streaming.orchestrator import BatchSummary, StreamingClient
from mft_streaming.services.token_provider import TokenProvider


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """No MFT_* variables and no stray .env in the working directory."""
    for key in list(os.environ):
        if key.startswith("MFT_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    yield
    logging.disable(logging.NOTSET)
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)


@pytest.fixture
def configured_env(clean_env, monkeypatch):
    monkeypatch.setenv("MFT_BASE_URL", BASE_URL)
    monkeypatch.setenv("MFT_AUTHORITY_URL", AUTHORITY_URL)
    monkeypatch.setenv("MFT_CLIENT_ID", "MyClientId")
    monkeypatch.setenv("MFT_CLIENT_SECRET", "MyClientSecret")
    monkeypatch.setenv("MFT_TENANT_ID", "MyTenantId")


@pytest.fixture
def fake_network(backend, monkeypatch):
    """Route every client the CLI builds to the in-memory backend."""
    def mock_http():
        return httpx.AsyncClient(transport=httpx.MockTransport(backend.handle), base_url=BASE_URL)

    def streaming_client(config):
        http = mock_http()
        provider = TokenProvider.from_config(config, http_client=http)
        return StreamingClient(config, token_provider=provider, http_client=http)

    monkeypatch.setattr(cli, "StreamingClient", streaming_client)
    monkeypatch.setattr(
        cli,
        "TokenProvider",
        types.SimpleNamespace(from_config=lambda config: TokenProvider.from_config(config, http_client=mock_http())),
    )
    return backend


def test_mask():
    assert _mask("MyClientSecret") == "***"
    assert _mask(None) == "(missing)"


def test_build_requests(tmp_path):
    first = tmp_path / "testFile1.yml"
    second = tmp_path / "testFile2.txt"
    first.write_bytes(b"a: 1\n")
    second.write_bytes(b"hello")

    with ExitStack() as stack:
        requests = _build_requests([first, second], None, 3, "MyTenantId", stack)
        assert [r.name for r in requests] == ["testFile1.yml", "testFile2.txt"]
        assert all(r.business_type_id == 3 for r in requests)
        assert requests[0].content.read() == b"a: 1\n"
    assert requests[0].content.closed


def test_build_requests_name_requires_single_file(tmp_path):
    first = tmp_path / "a.txt"
    first.write_bytes(b"a")
    with ExitStack() as stack:
        with pytest.raises(CLIError, match="single file"):
            _build_requests([first, first], "renamed.txt", 0, None, stack)


def test_build_requests_missing_file(tmp_path):
    with ExitStack() as stack:
        with pytest.raises(CLIError, match="not a file"):
            _build_requests([tmp_path / "missing.txt"], None, 0, None, stack)


def test_setup_logging_defaults_to_silent(clean_env):
    mode = _setup_logging(debug=False, silent=False, log_level=None)
    assert mode == "silent"
    assert logging.getLogger().isEnabledFor(logging.ERROR) is False


def test_setup_logging_debug_mode(clean_env):
    mode = _setup_logging(debug=True, silent=False, log_level=None)
    assert mode == "DEBUG"
    assert logging.getLogger().isEnabledFor(logging.DEBUG) is True
    assert logging.getLogger("httpx").getEffectiveLevel() == logging.WARNING


def test_setup_logging_explicit_level(clean_env):
    mode = _setup_logging(debug=False, silent=False, log_level="warning")
    assert mode == "WARNING"


def test_no_arguments_prints_help(clean_env, capsys):
    assert run_cli([]) == 0
    assert "usage: mft-upload" in capsys.readouterr().out


def test_missing_env_file(clean_env, tmp_path, capsys):
    assert run_cli(["--env-file", str(tmp_path / "nope.env"), "--token-only"]) == 1
    assert "not found" in capsys.readouterr().err


def test_missing_base_url(clean_env, tmp_path, capsys):
    path = tmp_path / "a.txt"
    path.write_bytes(b"a")
    assert run_cli([str(path)]) == 1
    assert "MFT_BASE_URL" in capsys.readouterr().err


def test_secret_not_printed(configured_env, fake_network, capsys):
    assert run_cli(["--token-only"]) == 0
    output = capsys.readouterr()
    assert "MyClientSecret" not in output.out
    assert "MyClientSecret" not in output.err
    assert "Token issued" in output.out


def test_upload_all(configured_env, fake_network, tmp_path, capsys):
    first = tmp_path / "testFile1.yml"
    second = tmp_path / "testFile2.txt"
    first.write_bytes(b"y" * 100)
    second.write_bytes(b"t" * 142)

    assert run_cli([str(first), str(second), "-b", "7"]) == 0

    uploads = {u["name"]: u for u in fake_network.uploads}
    assert set(uploads) == {"testFile1.yml", "testFile2.txt"}
    assert len(uploads["testFile2.txt"]["content"]) == 142
    assert uploads["testFile1.yml"]["fields"]["businessTypeId"] == "7"
    assert uploads["testFile1.yml"]["fields"]["tenantId"] == "MyTenantId"
    assert "2/2 uploaded" in capsys.readouterr().out


def test_upload_race(configured_env, fake_network, tmp_path, capsys):
    fake_network.delays["slow.txt"] = 0.05
    slow = tmp_path / "slow.txt"
    fast = tmp_path / "fast.txt"
    slow.write_bytes(b"s" * 10)
    fast.write_bytes(b"f" * 10)

    assert run_cli([str(slow), str(fast), "--policy", "race"]) == 0

    out = capsys.readouterr().out
    assert "First completed: fast.txt" in out
    assert len(fake_network.uploads) == 2


def test_upload_failure_exit_code(configured_env, fake_network, tmp_path, capsys):
    path = tmp_path / "bad.txt"
    path.write_bytes(b"bad")
    fake_network.upload_responses = [400]

    assert run_cli([str(path), "--name", "renamed.txt"]) == 1

    assert fake_network.uploads[0]["name"] == "renamed.txt"
    assert "0/1 uploaded" in capsys.readouterr().out


def test_bracketed_names_and_error_text_rendered_verbatim(configured_env, fake_network, tmp_path, capsys):
    path = tmp_path / "notes[draft].txt"
    path.write_bytes(b"draft")
    fake_network.upload_responses = [httpx.Response(400, json={"error": "path [/tmp] not allowed"})]

    assert run_cli([str(path)]) == 1

    out = capsys.readouterr().out
    assert "SEND notes[draft].txt" in out
    assert "0/1 uploaded" in out


def test_render_results_keeps_brackets(capsys):
    ok = TransferOutcome.succeeded(
        UploadRequest(name="notes[draft].txt"),
        UploadResult(name="notes[draft].txt", size=5, identifier="[id]"),
    )
    bad = TransferOutcome.failed(
        UploadRequest(name="bad.txt"),
        ValidationFailure("path [/x] not allowed", 400),
    )

    render_results(BatchSummary.from_outcomes([ok, bad]))

    out = capsys.readouterr().out
    assert "notes[draft].txt" in out
    assert "[id]" in out
