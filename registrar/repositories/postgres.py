from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import importlib
import json
from typing import Any

from registrar.domain.contracts import ACTIVE_ASSET_INDEX, STAGE_RESULT_FIELDS
from registrar.domain.errors import (
    DomainInvariantError,
    DraftLockedError,
    DuplicateActiveRegistration,
    RegistrationNotFound,
)
from registrar.domain.ids import new_registration_id
from registrar.domain.lifecycle import is_allowed_transition
from registrar.domain.models import (
    AssetMetadata,
    NewRegistration,
    RegistrationListQuery,
    RegistrationSnapshot,
    RegistrationStats,
    RegistrationStatus,
    StatusHistoryEntry,
    StatusUpdate,
)
from registrar.repositories.sql_loader import load_sql

asyncpg_module = importlib.import_module("asyncpg")


SQL_CREATE_REGISTRATION = load_sql("create_registration.sql")
SQL_GET_REGISTRATION = load_sql("get_registration.sql")
SQL_GET_LATEST_BY_ASSET = load_sql("get_latest_by_asset.sql")
SQL_APPEND_STATUS = load_sql("append_status.sql")
SQL_SET_ENRICHED_METADATA = load_sql("set_enriched_metadata.sql")
SQL_SET_CONTENT_LOCATOR = load_sql("set_content_locator.sql")
SQL_UPDATE_CUSTOM_METADATA = load_sql("update_custom_metadata.sql")
SQL_NEXT_PENDING = load_sql("next_pending.sql")
SQL_LIST_STALE_IN_FLIGHT = load_sql("list_stale_in_flight.sql")
SQL_COUNT_BY_STATUS = load_sql("count_by_status.sql")

_STAGE_RESULT_SQL = {
    "enriched_metadata": SQL_SET_ENRICHED_METADATA,
    "content_locator": SQL_SET_CONTENT_LOCATOR,
}


def _is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "sqlstate", None) == "23505"


def _is_active_asset_violation(exc: Exception) -> bool:
    return _is_unique_violation(exc) and getattr(exc, "constraint_name", None) == ACTIVE_ASSET_INDEX


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None
    min_size: int = 1
    max_size: int = 5

    async def startup(self) -> None:
        async def _init_connection(conn: Any) -> None:
            await conn.set_type_codec(
                "jsonb",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresRegistrationRepository:
    """Registration store on PostgreSQL.

    Every method is a single statement. The partial unique index on
    ``asset_id WHERE status <> 'FAILED'`` makes concurrent creates for one
    asset resolve to exactly one winner; every other insert surfaces as
    DuplicateActiveRegistration.
    """

    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def create(self, *, registration: NewRegistration) -> RegistrationSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            for _ in range(5):
                try:
                    row = await conn.fetchrow(
                        SQL_CREATE_REGISTRATION,
                        new_registration_id(),
                        registration.asset_id,
                        registration.owner_id,
                        registration.initial_status.value,
                        registration.license_template_id,
                        _metadata_to_json(registration.custom_metadata),
                        registration.ai_prompt,
                        registration.enrichment_enabled,
                        registration.enrichment_required,
                        registration.storyworld_id,
                        "Registration record created",
                    )
                except Exception as exc:
                    if _is_active_asset_violation(exc):
                        existing = await conn.fetchrow(SQL_GET_LATEST_BY_ASSET, registration.asset_id)
                        raise DuplicateActiveRegistration(
                            registration.asset_id,
                            existing["public_id"] if existing is not None else None,
                        ) from exc
                    if _is_unique_violation(exc):
                        continue
                    raise
                if row is None:
                    raise DomainInvariantError("failed to create registration")
                return _snapshot(row)
        raise DomainInvariantError("failed to allocate unique registration id")

    async def get(self, *, registration_id: str) -> RegistrationSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_REGISTRATION, registration_id)
        if row is None:
            return None
        return _snapshot(row)

    async def get_by_asset_id(self, *, asset_id: str) -> RegistrationSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_LATEST_BY_ASSET, asset_id)
        if row is None:
            return None
        return _snapshot(row)

    async def list_registrations(self, *, query: RegistrationListQuery) -> list[RegistrationSnapshot]:
        where_parts: list[str] = []
        args: list[object] = []

        if query.statuses:
            args.append([status.value for status in query.statuses])
            where_parts.append(f"status = ANY(${len(args)}::text[])")
        if query.owner_id is not None:
            args.append(query.owner_id)
            where_parts.append(f"owner_id = ${len(args)}")
        if query.asset_id is not None:
            args.append(query.asset_id)
            where_parts.append(f"asset_id = ${len(args)}")
        if query.storyworld_id is not None:
            args.append(query.storyworld_id)
            where_parts.append(f"storyworld_id = ${len(args)}")

        sql = "SELECT * FROM registrations"
        if where_parts:
            sql += " WHERE " + " AND ".join(where_parts)
        args.append(query.limit)
        limit_index = len(args)
        args.append(query.offset)
        offset_index = len(args)
        sql += f" ORDER BY created_at DESC, id DESC LIMIT ${limit_index} OFFSET ${offset_index}"

        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(sql, *args)
        return [_snapshot(row) for row in rows]

    async def stats(self, *, owner_id: str | None = None) -> RegistrationStats:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_COUNT_BY_STATUS, owner_id)
        by_status = {row["status"]: int(row["total"]) for row in rows}
        return RegistrationStats(total=sum(by_status.values()), by_status=by_status)

    async def append_status(self, *, registration_id: str, update: StatusUpdate) -> RegistrationSnapshot | None:
        if not is_allowed_transition(update.expected_status, update.status):
            raise DomainInvariantError(f"invalid transition: {update.expected_status} -> {update.status}")
        if update.status == RegistrationStatus.COMPLETED and update.receipt is None:
            raise DomainInvariantError("ledger receipt is required to complete a registration")

        receipt = update.receipt
        pool = self._pool()
        async with pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    SQL_APPEND_STATUS,
                    registration_id,
                    update.expected_status.value,
                    update.status.value,
                    update.message,
                    update.error,
                    update.error_code,
                    receipt.ledger_id if receipt is not None else None,
                    receipt.transaction_ref if receipt is not None else None,
                    1 if update.count_retry else 0,
                )
            except Exception as exc:
                # Re-entry from FAILED while another record holds the asset.
                if _is_active_asset_violation(exc):
                    current = await conn.fetchrow(SQL_GET_REGISTRATION, registration_id)
                    asset_id = current["asset_id"] if current is not None else registration_id
                    raise DuplicateActiveRegistration(asset_id) from exc
                raise
            if row is None:
                exists = await conn.fetchrow(SQL_GET_REGISTRATION, registration_id)
                if exists is None:
                    raise RegistrationNotFound(registration_id)
                return None
        return _snapshot(row)

    async def set_stage_result(
        self,
        *,
        registration_id: str,
        field: str,
        value: AssetMetadata | str,
    ) -> RegistrationSnapshot:
        if field not in STAGE_RESULT_FIELDS:
            raise DomainInvariantError(f"unknown stage result field: {field}")
        stored = value.to_json() if isinstance(value, AssetMetadata) else value

        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(_STAGE_RESULT_SQL[field], registration_id, stored)
            if row is None:
                current = await conn.fetchrow(SQL_GET_REGISTRATION, registration_id)
                if current is None:
                    raise RegistrationNotFound(registration_id)
                raise DomainInvariantError(f"stage result {field} rejected in status {current['status']}")
        return _snapshot(row)

    async def update_custom_metadata(
        self,
        *,
        registration_id: str,
        custom_metadata: AssetMetadata | None,
        ai_prompt: str | None,
    ) -> RegistrationSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                SQL_UPDATE_CUSTOM_METADATA,
                registration_id,
                _metadata_to_json(custom_metadata),
                ai_prompt,
            )
            if row is None:
                current = await conn.fetchrow(SQL_GET_REGISTRATION, registration_id)
                if current is None:
                    raise RegistrationNotFound(registration_id)
                raise DraftLockedError(f"metadata is locked once processing started (status {current['status']})")
        return _snapshot(row)

    async def next_pending(self) -> RegistrationSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_NEXT_PENDING)
        if row is None:
            return None
        return _snapshot(row)

    async def list_stale_in_flight(self, *, updated_before: datetime, limit: int = 50) -> list[RegistrationSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_STALE_IN_FLIGHT, updated_before, limit)
        return [_snapshot(row) for row in rows]


def _metadata_to_json(metadata: AssetMetadata | None) -> dict[str, object] | None:
    if metadata is None:
        return None
    return metadata.to_json()


def _metadata_from_json(payload: Any) -> AssetMetadata | None:
    if payload is None:
        return None
    return AssetMetadata.from_json(payload)


def _history_from_json(payload: Any) -> tuple[StatusHistoryEntry, ...]:
    entries: list[StatusHistoryEntry] = []
    for item in payload or []:
        entries.append(
            StatusHistoryEntry(
                status=RegistrationStatus(item["status"]),
                timestamp=datetime.fromisoformat(item["timestamp"]),
                message=item.get("message"),
            )
        )
    return tuple(entries)


def _snapshot(row: Any) -> RegistrationSnapshot:
    return RegistrationSnapshot(
        registration_id=row["public_id"],
        asset_id=row["asset_id"],
        owner_id=row["owner_id"],
        status=RegistrationStatus(row["status"]),
        license_template_id=row["license_template_id"],
        custom_metadata=_metadata_from_json(row["custom_metadata"]),
        ai_prompt=row["ai_prompt"],
        enrichment_enabled=row["enrichment_enabled"],
        enrichment_required=row["enrichment_required"],
        storyworld_id=row["storyworld_id"],
        enriched_metadata=_metadata_from_json(row["enriched_metadata"]),
        content_locator=row["content_locator"],
        ledger_id=row["ledger_id"],
        transaction_ref=row["transaction_ref"],
        status_history=_history_from_json(row["status_history"]),
        last_error=row["last_error"],
        last_error_code=row["last_error_code"],
        retry_count=row["retry_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )
