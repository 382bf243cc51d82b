import pytest

from registrar.roles import SUPPORTED_ROLES, validate_role


@pytest.mark.unit
@pytest.mark.parametrize("role", SUPPORTED_ROLES)
def test_supported_role_is_accepted(role: str) -> None:
    validated = validate_role(f" {role} ")
    assert validated.name == role


@pytest.mark.unit
def test_only_worker_role_runs_the_worker_loop() -> None:
    api = validate_role("api")
    worker = validate_role("worker-register")

    assert api.runs_worker is False
    assert worker.runs_worker is True
    assert api.default_port == 8000
    assert worker.default_port == 8100


@pytest.mark.unit
def test_invalid_role_rejected_with_actionable_message() -> None:
    with pytest.raises(ValueError) as exc_info:
        validate_role("worker-unknown")

    message = str(exc_info.value)
    assert "Unsupported role 'worker-unknown'" in message
    assert "Supported roles: api, worker-register" in message
    assert "db/migrations" in message
