from __future__ import annotations

from functools import lru_cache
from pathlib import Path


SQL_DIR = Path(__file__).with_name("sql")


@lru_cache(maxsize=None)
def load_sql(name: str) -> str:
    filename = name if name.endswith(".sql") else f"{name}.sql"
    return (SQL_DIR / filename).read_text(encoding="utf-8").strip()
