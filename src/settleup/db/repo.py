from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Optional

import asyncpg

from settleup.db.models import ExpenseSplitFact, FriendWeight, Settlement, SettlementStatus
from settleup.logging import get_logger, sql_logger


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


class Database:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql:// scheme without the "+asyncpg" driver suffix
            dsn = self._dsn.replace("+asyncpg", "")
            self._pool = await asyncpg.create_pool(dsn, init=_init_connection)
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetch", query=query, args=args)
        return await self._pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await self._pool.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchval", query=query, args=args)
        return await self._pool.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.execute", query=query, args=args)
        return await self._pool.execute(query, *args)

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


class SettleUpRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def insert_settlement(
        self,
        group_id: str,
        payer_id: str,
        receiver_id: str,
        amount: int,
        currency: str,
        created_by: str,
        notes: Optional[str],
    ) -> Settlement:
        row = await self.db.fetchrow(
            """
            INSERT INTO settlements (group_id, payer_id, receiver_id, amount, currency, status, created_by, notes)
            VALUES ($1, $2, $3, $4, $5, 'pending', $6, $7)
            RETURNING *
            """,
            group_id,
            payer_id,
            receiver_id,
            amount,
            currency,
            created_by,
            notes,
        )
        assert row is not None
        return Settlement.from_row(row)

    async def get_settlement(self, settlement_id: int) -> Optional[Settlement]:
        row = await self.db.fetchrow("SELECT * FROM settlements WHERE id = $1", settlement_id)
        return Settlement.from_row(row) if row is not None else None

    async def compare_and_set_status(
        self,
        settlement_id: int,
        expected: SettlementStatus,
        new: SettlementStatus,
        completed_at: Optional[datetime] = None,
        cancel_reason: Optional[str] = None,
        payment_details: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Settlement]:
        row = await self.db.fetchrow(
            """
            UPDATE settlements
               SET status = $3,
                   completed_at = COALESCE($4, completed_at),
                   cancel_reason = COALESCE($5, cancel_reason),
                   payment_details = COALESCE($6, payment_details),
                   updated_at = now()
             WHERE id = $1 AND status = $2
            RETURNING *
            """,
            settlement_id,
            expected.value,
            new.value,
            completed_at,
            cancel_reason,
            dict(payment_details) if payment_details is not None else None,
        )
        return Settlement.from_row(row) if row is not None else None

    async def list_group_settlements(
        self, group_id: str, status: Optional[SettlementStatus] = None
    ) -> list[Settlement]:
        if status is None:
            rows = await self.db.fetch(
                "SELECT * FROM settlements WHERE group_id = $1 ORDER BY created_at DESC, id DESC",
                group_id,
            )
        else:
            rows = await self.db.fetch(
                "SELECT * FROM settlements WHERE group_id = $1 AND status = $2 ORDER BY created_at DESC, id DESC",
                group_id,
                status.value,
            )
        return [Settlement.from_row(row) for row in rows]

    async def bump_ledger_version(self, group_id: str, currency: str) -> None:
        await self.db.execute(
            """
            INSERT INTO ledger_versions (group_id, currency, version)
            VALUES ($1, $2, 1)
            ON CONFLICT (group_id, currency) DO UPDATE
                SET version = ledger_versions.version + 1
            """,
            group_id,
            currency,
        )

    async def ledger_fingerprint(self, group_id: str, currency: str) -> str:
        version = await self.db.fetchval(
            "SELECT version FROM ledger_versions WHERE group_id = $1 AND currency = $2",
            group_id,
            currency,
        )
        return str(version or 0)

    async def fetch_expense_splits(self, group_id: str, currency: str) -> list[ExpenseSplitFact]:
        rows = await self.db.fetch(
            """
            SELECT payer_id, participant_id, owed_amount, currency
            FROM expense_splits
            WHERE group_id = $1 AND currency = $2 AND deleted = false
            ORDER BY id
            """,
            group_id,
            currency,
        )
        return [
            ExpenseSplitFact(
                payer_id=row["payer_id"],
                participant_id=row["participant_id"],
                owed_amount=row["owed_amount"],
                currency=row["currency"],
            )
            for row in rows
        ]

    async def fetch_completed_settlements(self, group_id: str, currency: str) -> list[Settlement]:
        rows = await self.db.fetch(
            """
            SELECT * FROM settlements
            WHERE group_id = $1 AND currency = $2 AND status = 'completed'
            ORDER BY completed_at, id
            """,
            group_id,
            currency,
        )
        return [Settlement.from_row(row) for row in rows]

    async def fetch_friend_weights(self, group_id: str) -> list[FriendWeight]:
        rows = await self.db.fetch(
            """
            SELECT fw.user_a, fw.user_b, fw.weight
            FROM friend_weights fw
            JOIN group_members a ON a.user_id = fw.user_a AND a.group_id = $1
            JOIN group_members b ON b.user_id = fw.user_b AND b.group_id = $1
            """,
            group_id,
        )
        return [FriendWeight(user_a=row["user_a"], user_b=row["user_b"], weight=float(row["weight"])) for row in rows]
