"""Database engine, ORM tables and session utilities.

Three tables back the bot: ``users``, ``searches`` and ``sent_listings``.
Two invariants are enforced by the database itself so that they hold even
when two writers race:

* at most one ``active`` search per owner (partial unique index);
* at most one ledger row per ``(search_id, external_id)`` (unique constraint).
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.listing import SentListingRecord
from ..models.search import Search, SearchCriteria, SearchStatus, User

Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"
    id = Column(BigInteger, primary_key=True, autoincrement=False)
    display_name = Column(Text, nullable=False, default="")
    username = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class SearchRow(Base):
    __tablename__ = "searches"
    __table_args__ = (
        CheckConstraint(
            "min_price IS NULL OR max_price IS NULL OR min_price < max_price",
            name="ck_searches_price_range",
        ),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=SearchStatus.ACTIVE.value)
    min_price = Column(Integer)
    max_price = Column(Integer)
    num_rooms = Column(Integer)
    districts = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)
    last_checked_at = Column(DateTime)


Index(
    "uq_searches_one_active_per_owner",
    SearchRow.owner_id,
    unique=True,
    sqlite_where=SearchRow.status == SearchStatus.ACTIVE.value,
    postgresql_where=SearchRow.status == SearchStatus.ACTIVE.value,
)
Index("idx_searches_status", SearchRow.status)


class SentListingRow(Base):
    __tablename__ = "sent_listings"
    __table_args__ = (
        UniqueConstraint("search_id", "external_id", name="uq_sent_listing_per_search"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    search_id = Column(Integer, ForeignKey("searches.id"), nullable=False, index=True)
    external_id = Column(String(512), nullable=False)
    url = Column(Text, nullable=False)
    price = Column(Integer)
    rooms = Column(Integer)
    district = Column(Text)
    description = Column(Text)
    photo_urls = Column(JSON, nullable=False, default=list)
    sent_at = Column(DateTime, nullable=False, default=datetime.now)


def to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        display_name=row.display_name,
        username=row.username,
        created_at=row.created_at,
    )


def to_search(row: SearchRow) -> Search:
    return Search(
        id=row.id,
        owner_id=row.owner_id,
        status=SearchStatus(row.status),
        criteria=SearchCriteria(
            min_price=row.min_price,
            max_price=row.max_price,
            num_rooms=row.num_rooms,
            districts=list(row.districts or []),
        ),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_checked_at=row.last_checked_at,
    )


def to_sent_record(row: SentListingRow) -> SentListingRecord:
    return SentListingRecord(
        search_id=row.search_id,
        external_id=row.external_id,
        url=row.url,
        sent_at=row.sent_at,
        price=row.price,
        rooms=row.rooms,
        district=row.district,
        description=row.description,
        photo_urls=list(row.photo_urls or []),
    )


def normalize_url(url: str) -> str:
    # SQLAlchemy 2.x doesn't accept the 'postgres://' scheme
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


class Database:
    """Owns the engine and hands out short transactional sessions."""

    def __init__(self, url: str, echo: bool = False):
        self.url = normalize_url(url)

        engine_kwargs = {"echo": echo}
        if self.url.startswith("sqlite"):
            # sessions are used from the event loop and from executor threads
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.engine = create_engine(self.url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
