from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Sequence

import asyncpg

from billsplit.db.models import (
    Bill,
    BillStatus,
    Claim,
    Item,
    ItemSource,
    Participant,
    ShareType,
)
from billsplit.logging import get_logger, sql_logger
from billsplit.services.errors import StorageFailure

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class _Executor:
    """Runs statements against a pool or a single connection, logging each one."""

    async def _target(self) -> asyncpg.Pool | asyncpg.Connection:
        raise NotImplementedError

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        target = await self._target()
        sql_logger.info("sql.fetch", query=query, args=args)
        try:
            return await target.fetch(query, *args)
        except _DB_ERRORS as exc:
            raise StorageFailure(f"Database error: {exc}") from exc

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        target = await self._target()
        sql_logger.info("sql.fetchrow", query=query, args=args)
        try:
            return await target.fetchrow(query, *args)
        except _DB_ERRORS as exc:
            raise StorageFailure(f"Database error: {exc}") from exc

    async def fetchval(self, query: str, *args: Any) -> Any:
        target = await self._target()
        sql_logger.info("sql.fetchval", query=query, args=args)
        try:
            return await target.fetchval(query, *args)
        except _DB_ERRORS as exc:
            raise StorageFailure(f"Database error: {exc}") from exc

    async def execute(self, query: str, *args: Any) -> str:
        target = await self._target()
        sql_logger.info("sql.execute", query=query, args=args)
        try:
            return await target.execute(query, *args)
        except _DB_ERRORS as exc:
            raise StorageFailure(f"Database error: {exc}") from exc

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        target = await self._target()
        sql_logger.info("sql.executemany", query=command)
        try:
            await target.executemany(command, args)
        except _DB_ERRORS as exc:
            raise StorageFailure(f"Database error: {exc}") from exc


class Connection(_Executor):
    """A connection checked out of the pool with an open transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def _target(self) -> asyncpg.Connection:
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Connection"]:
        # nested transactions become savepoints
        async with self._conn.transaction():
            yield self


class Database(_Executor):
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql:// scheme, without "+asyncpg"
            dsn = self._dsn.replace("+asyncpg", "")
            try:
                self._pool = await asyncpg.create_pool(dsn)
            except _DB_ERRORS as exc:
                raise StorageFailure(f"Could not connect to the database: {exc}") from exc
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    async def _target(self) -> asyncpg.Pool:
        if self._pool is None:
            await self.connect()
        assert self._pool
        return self._pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        pool = await self._target()
        async with pool.acquire() as conn:
            sql_logger.info("sql.begin")
            async with conn.transaction():
                yield Connection(conn)
            sql_logger.info("sql.commit")


def _bill(row: Mapping[str, Any]) -> Bill:
    return Bill(
        id=row["id"],
        code=row["code"],
        organizer_access_code=row["organizer_access_code"],
        tax_amount=Decimal(row["tax_amount"] or 0),
        tip_amount=Decimal(row["tip_amount"] or 0),
        status=BillStatus(row["status"]),
        organizer_id=row["organizer_id"],
        organizer_phone=row["organizer_phone"],
        receipt_analyzed=row["receipt_analyzed"],
        created_at=row["created_at"],
    )


def _item(row: Mapping[str, Any]) -> Item:
    return Item(
        id=row["id"],
        bill_id=row["bill_id"],
        name=row["name"],
        price=Decimal(row["price"]),
        quantity=row["quantity"] or 1,
        source=ItemSource(row["source"]),
        display_order=row["display_order"],
    )


def _participant(row: Mapping[str, Any]) -> Participant:
    return Participant(
        id=row["id"],
        bill_id=row["bill_id"],
        name=row["name"],
        phone_number=row["phone_number"],
        plus_one_count=row["plus_one_count"] or 0,
        has_responded=row["has_responded"],
        last_updated_at=row["last_updated_at"],
    )


def _claim(row: Mapping[str, Any]) -> Claim:
    quantity = row["quantity_claimed"]
    return Claim(
        id=row["id"],
        item_id=row["item_id"],
        participant_id=row["participant_id"],
        share_type=ShareType(row["share_type"]),
        share_with_participant_ids=tuple(row["share_with_participant_ids"] or ()),
        quantity_claimed=Decimal(1) if quantity is None else Decimal(quantity),
        amount_owed=Decimal(row["amount_owed"] or 0),
    )


class BillRepository:
    def __init__(self, db: Database | Connection) -> None:
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["BillRepository"]:
        async with self.db.transaction() as conn:
            yield BillRepository(conn)

    # bills

    async def create_bill(
        self,
        code: str,
        organizer_access_code: str,
        tax_amount: Decimal,
        tip_amount: Decimal,
        organizer_id: Optional[int] = None,
        organizer_phone: Optional[str] = None,
        receipt_analyzed: bool = False,
    ) -> Bill:
        row = await self.db.fetchrow(
            """
            INSERT INTO bills (code, organizer_access_code, tax_amount, tip_amount,
                               organizer_id, organizer_phone, receipt_analyzed, status)
            VALUES ($1, $2, $3, $4, $5, $6, $7, 'active')
            RETURNING *
            """,
            code,
            organizer_access_code,
            tax_amount,
            tip_amount,
            organizer_id,
            organizer_phone,
            receipt_analyzed,
        )
        assert row is not None
        return _bill(row)

    async def get_bill(self, bill_id: int) -> Bill | None:
        row = await self.db.fetchrow("SELECT * FROM bills WHERE id = $1", bill_id)
        return _bill(row) if row else None

    async def get_bill_by_code(self, code: str) -> Bill | None:
        row = await self.db.fetchrow("SELECT * FROM bills WHERE code = $1", code.upper())
        return _bill(row) if row else None

    async def get_bill_by_organizer_code(self, organizer_code: str) -> Bill | None:
        row = await self.db.fetchrow(
            "SELECT * FROM bills WHERE organizer_access_code = $1 LIMIT 1",
            organizer_code.upper(),
        )
        return _bill(row) if row else None

    async def set_bill_status(self, bill_id: int, status: BillStatus) -> None:
        await self.db.execute("UPDATE bills SET status = $1 WHERE id = $2", status.value, bill_id)

    # items

    async def add_item(
        self,
        bill_id: int,
        name: str,
        price: Decimal,
        quantity: int,
        source: ItemSource,
        display_order: int,
    ) -> Item:
        row = await self.db.fetchrow(
            """
            INSERT INTO items (bill_id, name, price, quantity, source, display_order)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING *
            """,
            bill_id,
            name,
            price,
            quantity,
            source.value,
            display_order,
        )
        assert row is not None
        return _item(row)

    async def lock_item(self, item_id: int) -> Item | None:
        """Fetch an item and hold its row lock until the transaction ends."""
        row = await self.db.fetchrow("SELECT * FROM items WHERE id = $1 FOR UPDATE", item_id)
        return _item(row) if row else None

    async def list_bill_items(self, bill_id: int) -> list[Item]:
        rows = await self.db.fetch(
            "SELECT * FROM items WHERE bill_id = $1 ORDER BY display_order, id",
            bill_id,
        )
        return [_item(row) for row in rows]

    # participants

    async def add_participant(
        self,
        bill_id: int,
        name: str,
        phone_number: str,
        plus_one_count: int,
    ) -> Participant:
        row = await self.db.fetchrow(
            """
            INSERT INTO participants (bill_id, name, phone_number, plus_one_count, has_responded)
            VALUES ($1, $2, $3, $4, false)
            RETURNING *
            """,
            bill_id,
            name,
            phone_number,
            plus_one_count,
        )
        assert row is not None
        return _participant(row)

    async def get_participant(self, participant_id: int) -> Participant | None:
        row = await self.db.fetchrow("SELECT * FROM participants WHERE id = $1", participant_id)
        return _participant(row) if row else None

    async def list_bill_participants(self, bill_id: int) -> list[Participant]:
        rows = await self.db.fetch(
            "SELECT * FROM participants WHERE bill_id = $1 ORDER BY id",
            bill_id,
        )
        return [_participant(row) for row in rows]

    async def count_participant_claims(self, participant_id: int) -> int:
        count = await self.db.fetchval(
            "SELECT count(*) FROM claims WHERE participant_id = $1",
            participant_id,
        )
        return int(count or 0)

    async def set_participant_responded(self, participant_id: int, responded: bool) -> None:
        await self.db.execute(
            """
            UPDATE participants
            SET has_responded = $1, last_updated_at = now()
            WHERE id = $2
            """,
            responded,
            participant_id,
        )

    # claims

    async def list_item_claims(self, item_id: int) -> list[Claim]:
        rows = await self.db.fetch("SELECT * FROM claims WHERE item_id = $1 ORDER BY id", item_id)
        return [_claim(row) for row in rows]

    async def list_bill_claims(self, bill_id: int) -> list[Claim]:
        rows = await self.db.fetch(
            """
            SELECT c.*
            FROM claims c
            JOIN items i ON i.id = c.item_id
            WHERE i.bill_id = $1
            ORDER BY c.id
            """,
            bill_id,
        )
        return [_claim(row) for row in rows]

    async def list_participant_claims(self, participant_id: int) -> list[tuple[Claim, Item]]:
        rows = await self.db.fetch(
            """
            SELECT c.*,
                   i.bill_id AS item_bill_id,
                   i.name AS item_name,
                   i.price AS item_price,
                   i.quantity AS item_quantity,
                   i.source AS item_source,
                   i.display_order AS item_display_order
            FROM claims c
            JOIN items i ON i.id = c.item_id
            WHERE c.participant_id = $1
            ORDER BY i.display_order, i.id
            """,
            participant_id,
        )
        result = []
        for row in rows:
            item = Item(
                id=row["item_id"],
                bill_id=row["item_bill_id"],
                name=row["item_name"],
                price=Decimal(row["item_price"]),
                quantity=row["item_quantity"] or 1,
                source=ItemSource(row["item_source"]),
                display_order=row["item_display_order"],
            )
            result.append((_claim(row), item))
        return result

    async def insert_claim(
        self,
        item_id: int,
        participant_id: int,
        share_type: ShareType,
        share_with_participant_ids: Sequence[int],
        quantity_claimed: Decimal,
    ) -> Claim:
        row = await self.db.fetchrow(
            """
            INSERT INTO claims (item_id, participant_id, share_type,
                                share_with_participant_ids, quantity_claimed, amount_owed)
            VALUES ($1, $2, $3, $4, $5, 0)
            RETURNING *
            """,
            item_id,
            participant_id,
            share_type.value,
            list(share_with_participant_ids),
            quantity_claimed,
        )
        assert row is not None
        return _claim(row)

    async def update_claim(
        self,
        claim_id: int,
        share_type: ShareType,
        share_with_participant_ids: Sequence[int],
        quantity_claimed: Decimal,
    ) -> Claim:
        row = await self.db.fetchrow(
            """
            UPDATE claims
            SET share_type = $1,
                share_with_participant_ids = $2,
                quantity_claimed = $3,
                updated_at = now()
            WHERE id = $4
            RETURNING *
            """,
            share_type.value,
            list(share_with_participant_ids),
            quantity_claimed,
            claim_id,
        )
        assert row is not None
        return _claim(row)

    async def delete_claims(self, claim_ids: Sequence[int]) -> None:
        if not claim_ids:
            return
        await self.db.execute("DELETE FROM claims WHERE id = ANY($1::bigint[])", list(claim_ids))

    async def set_claim_amounts(self, amounts: Mapping[int, Decimal]) -> None:
        if not amounts:
            return
        await self.db.executemany(
            "UPDATE claims SET amount_owed = $1, updated_at = now() WHERE id = $2",
            ((amount, claim_id) for claim_id, amount in amounts.items()),
        )


_global_repo: BillRepository | None = None


def set_global_repository(repo: BillRepository) -> None:
    global _global_repo
    _global_repo = repo


def get_global_repository() -> BillRepository:
    if _global_repo is None:
        raise RuntimeError("Repository is not initialized")
    return _global_repo
