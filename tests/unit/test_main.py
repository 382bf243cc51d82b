import json
import logging

import pytest

from registrar.logging_setup import JsonFormatter
from registrar.main import parse_args, run


@pytest.mark.unit
def test_cli_returns_non_zero_for_invalid_role(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = run(["--role", "bad-role", "--dry-run-startup"])
    captured = capsys.readouterr()

    assert exit_code == 2
    assert "ERROR:" in captured.err
    assert "Supported roles" in captured.err


@pytest.mark.unit
@pytest.mark.parametrize("role", ["api", "worker-register"])
def test_cli_dry_run_succeeds_for_valid_role(role: str) -> None:
    exit_code = run(["--role", role, "--dry-run-startup"])
    assert exit_code == 0


@pytest.mark.unit
def test_host_defaults_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_HOST", "127.0.0.1")

    args = parse_args(["--role", "api"])

    assert args.host == "127.0.0.1"
    assert args.port is None


@pytest.mark.unit
def test_json_formatter_promotes_pipeline_context() -> None:
    record = logging.LogRecord(
        name="registrar.pipeline",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="registration stage failed",
        args=(),
        exc_info=None,
    )
    record.registration_id = "reg_1"
    record.stage = "upload"
    record.error_code = "storage_unavailable"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "registrar.pipeline"
    assert payload["registration_id"] == "reg_1"
    assert payload["stage"] == "upload"
    assert payload["error_code"] == "storage_unavailable"
    assert "role" not in payload
