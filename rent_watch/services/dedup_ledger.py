"""
Dedup ledger: the record of listings already delivered for each search.

Rows are written only for confirmed deliveries. Writing the same
``(search_id, external_id)`` twice is a no-op, enforced by the database
unique constraint and an ``ON CONFLICT DO NOTHING`` insert.
"""

from datetime import datetime
from typing import Iterable, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from ..models.listing import Listing, SentListingRecord
from ..utils.logging import get_logger
from .database import Database, SentListingRow, to_sent_record

_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class DedupLedger:
    """Per-search set of delivered listing ids."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("ledger")

    def partition(
        self, search_id: int, listings: Iterable[Listing]
    ) -> Tuple[List[Listing], List[Listing]]:
        """
        Split listings into (already_sent, candidate_new).

        Repeats of the same external id within one batch are dropped so a
        listing is never offered twice in one pass.
        """
        unique: List[Listing] = []
        seen_in_batch = set()
        for listing in listings:
            if listing.external_id in seen_in_batch:
                continue
            seen_in_batch.add(listing.external_id)
            unique.append(listing)

        if not unique:
            return [], []

        with self.database.session_scope() as session:
            sent_ids = set(
                session.scalars(
                    select(SentListingRow.external_id).where(
                        SentListingRow.search_id == search_id,
                        SentListingRow.external_id.in_(list(seen_in_batch)),
                    )
                ).all()
            )

        already_sent = [l for l in unique if l.external_id in sent_ids]
        candidate_new = [l for l in unique if l.external_id not in sent_ids]

        self.logger.debug(
            "Partitioned listings",
            extra={
                "search_id": search_id,
                "already_sent": len(already_sent),
                "candidate_new": len(candidate_new),
            },
        )
        return already_sent, candidate_new

    def commit(self, search_id: int, confirmed: Iterable[Listing]) -> int:
        """
        Record confirmed deliveries.

        Returns:
            Number of ledger rows actually inserted.
        """
        now = datetime.now()
        rows = {}
        for listing in confirmed:
            rows.setdefault(
                listing.external_id,
                {
                    "search_id": search_id,
                    "external_id": listing.external_id,
                    "url": listing.url,
                    "price": listing.price,
                    "rooms": listing.rooms,
                    "district": listing.district,
                    "description": listing.description,
                    "photo_urls": list(listing.photo_urls),
                    "sent_at": now,
                },
            )

        if not rows:
            return 0

        insert = _UPSERT_INSERTS.get(self.database.dialect_name)
        if insert is not None:
            inserted = self._insert_ignoring_conflicts(insert, list(rows.values()))
        else:
            inserted = self._insert_one_by_one(list(rows.values()))

        self.logger.info(
            "Recorded sent listings",
            extra={
                "search_id": search_id,
                "confirmed": len(rows),
                "inserted": inserted,
            },
        )
        return inserted

    def _insert_ignoring_conflicts(self, insert, values: List[dict]) -> int:
        stmt = insert(SentListingRow.__table__).values(values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["search_id", "external_id"])
        with self.database.session_scope() as session:
            result = session.execute(stmt)
            return max(result.rowcount or 0, 0)

    def _insert_one_by_one(self, values: List[dict]) -> int:
        inserted = 0
        with self.database.session_scope() as session:
            for row in values:
                try:
                    with session.begin_nested():
                        session.add(SentListingRow(**row))
                    inserted += 1
                except IntegrityError:
                    continue
        return inserted

    def count_sent(self, search_id: int) -> int:
        with self.database.session_scope() as session:
            return session.scalar(
                select(func.count())
                .select_from(SentListingRow)
                .where(SentListingRow.search_id == search_id)
            ) or 0

    def sent_records(self, search_id: int) -> List[SentListingRecord]:
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(SentListingRow)
                .where(SentListingRow.search_id == search_id)
                .order_by(SentListingRow.sent_at, SentListingRow.id)
            ).all()
            return [to_sent_record(row) for row in rows]
