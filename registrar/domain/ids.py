from __future__ import annotations

import importlib

ulid_module = importlib.import_module("ulid")

REGISTRATION_ID_PREFIX = "reg_"


def new_registration_id() -> str:
    return f"{REGISTRATION_ID_PREFIX}{ulid_module.new().str}"


def is_registration_id(value: str) -> bool:
    return value.startswith(REGISTRATION_ID_PREFIX)
