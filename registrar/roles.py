from __future__ import annotations

from dataclasses import dataclass

API_ROLE = "api"
WORKER_ROLE = "worker-register"
SUPPORTED_ROLES = (API_ROLE, WORKER_ROLE)

_DEFAULT_PORTS = {API_ROLE: 8000, WORKER_ROLE: 8100}


@dataclass(frozen=True)
class RuntimeRole:
    name: str

    @property
    def runs_worker(self) -> bool:
        return self.name == WORKER_ROLE

    @property
    def default_port(self) -> int:
        return _DEFAULT_PORTS[self.name]


def validate_role(role: str) -> RuntimeRole:
    role = role.strip()
    if role not in SUPPORTED_ROLES:
        supported = ", ".join(SUPPORTED_ROLES)
        raise ValueError(
            f"Unsupported role '{role}'. Supported roles: {supported}. "
            "Database migrations are applied separately from db/migrations."
        )
    return RuntimeRole(name=role)
