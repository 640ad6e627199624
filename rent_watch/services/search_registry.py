"""
Search registry: persistence and lifecycle of users and standing searches.

Business-rule failures come back as ``RegistryResult`` values carrying an
``ErrorKind``; anything unexpected (a broken database connection, say)
propagates to the caller.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import CriteriaValidationError
from ..models.results import ErrorKind, RegistryResult
from ..models.search import Search, SearchCriteria, SearchStatus, User
from ..utils.logging import get_logger
from .database import Database, SearchRow, UserRow, to_search, to_user

LIMIT_MESSAGE = "You already have an active search. Pause or delete it first."
NOT_FOUND_MESSAGE = "Search not found."


class SearchRegistry:
    """Creates, mutates and looks up searches while guarding the one-active rule."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("registry")

    # Users

    def ensure_user(
        self, user_id: int, display_name: Optional[str], username: Optional[str] = None
    ) -> User:
        """Register a user on first contact, refreshing their names afterwards."""
        with self.database.session_scope() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                row = UserRow(
                    id=user_id,
                    display_name=display_name or "",
                    username=username,
                    created_at=datetime.now(),
                )
                session.add(row)
                self.logger.info("Registered new user", extra={"user_id": user_id})
            else:
                if display_name and row.display_name != display_name:
                    row.display_name = display_name
                if username and row.username != username:
                    row.username = username
            session.flush()
            return to_user(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self.database.session_scope() as session:
            row = session.get(UserRow, user_id)
            return to_user(row) if row else None

    # Mutations

    def create_search(self, user_id: int, criteria: SearchCriteria) -> RegistryResult:
        """
        Persist a new active search for a user.

        Fails with NOT_FOUND for an unknown user, LIMIT_EXCEEDED when the
        user already has an active search and INVALID_CRITERIA when the
        criteria do not validate.
        """
        try:
            with self.database.session_scope() as session:
                if session.get(UserRow, user_id) is None:
                    return RegistryResult.failure(ErrorKind.NOT_FOUND, "User not found.")

                if self._active_row(session, user_id) is not None:
                    self.logger.info(
                        "Search creation refused: active search exists",
                        extra={"user_id": user_id},
                    )
                    return RegistryResult.failure(
                        ErrorKind.LIMIT_EXCEEDED, LIMIT_MESSAGE
                    )

                invalid = self._validation_failure(criteria)
                if invalid:
                    return invalid

                now = datetime.now()
                row = SearchRow(
                    owner_id=user_id,
                    status=SearchStatus.ACTIVE.value,
                    min_price=criteria.min_price,
                    max_price=criteria.max_price,
                    num_rooms=criteria.num_rooms,
                    districts=list(criteria.districts),
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                search = to_search(row)
        except IntegrityError:
            # a concurrent creation won the partial unique index
            self.logger.warning(
                "Concurrent active search insert rejected", extra={"user_id": user_id}
            )
            return RegistryResult.failure(ErrorKind.LIMIT_EXCEEDED, LIMIT_MESSAGE)

        self.logger.info(
            "Search created",
            extra={"user_id": user_id, "search_id": search.id},
        )
        return RegistryResult.success(search, "Search created.")

    def pause_search(self, search_id: int) -> RegistryResult:
        with self.database.session_scope() as session:
            row = self._locked_row(session, search_id)
            if row is None:
                return RegistryResult.failure(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

            if row.status != SearchStatus.PAUSED.value:
                row.status = SearchStatus.PAUSED.value
                row.updated_at = datetime.now()
            session.flush()
            search = to_search(row)

        self.logger.info("Search paused", extra={"search_id": search_id})
        return RegistryResult.success(search, "Search paused.")

    def resume_search(self, search_id: int) -> RegistryResult:
        try:
            with self.database.session_scope() as session:
                row = self._locked_row(session, search_id)
                if row is None:
                    return RegistryResult.failure(
                        ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE
                    )

                other = self._active_row(session, row.owner_id)
                if other is not None and other.id != row.id:
                    return RegistryResult.failure(
                        ErrorKind.LIMIT_EXCEEDED, LIMIT_MESSAGE
                    )

                if row.status != SearchStatus.ACTIVE.value:
                    row.status = SearchStatus.ACTIVE.value
                    row.updated_at = datetime.now()
                session.flush()
                search = to_search(row)
        except IntegrityError:
            return RegistryResult.failure(ErrorKind.LIMIT_EXCEEDED, LIMIT_MESSAGE)

        self.logger.info("Search resumed", extra={"search_id": search_id})
        return RegistryResult.success(search, "Search resumed.")

    def update_criteria(
        self, search_id: int, criteria: SearchCriteria
    ) -> RegistryResult:
        """Re-validate and overwrite the criteria of an existing search."""
        invalid = self._validation_failure(criteria)
        if invalid:
            return invalid

        with self.database.session_scope() as session:
            row = self._locked_row(session, search_id)
            if row is None:
                return RegistryResult.failure(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

            row.min_price = criteria.min_price
            row.max_price = criteria.max_price
            row.num_rooms = criteria.num_rooms
            row.districts = list(criteria.districts)
            row.updated_at = datetime.now()
            session.flush()
            search = to_search(row)

        self.logger.info("Search criteria updated", extra={"search_id": search_id})
        return RegistryResult.success(search, "Search updated.")

    def delete_search(self, search_id: int) -> RegistryResult:
        """Soft delete: the row stays, with status DELETED."""
        with self.database.session_scope() as session:
            row = session.get(SearchRow, search_id)
            if row is None:
                return RegistryResult.failure(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

            if row.status != SearchStatus.DELETED.value:
                row.status = SearchStatus.DELETED.value
                row.updated_at = datetime.now()
            session.flush()
            search = to_search(row)

        self.logger.info("Search deleted", extra={"search_id": search_id})
        return RegistryResult.success(search, "Search deleted.")

    def update_last_checked(
        self, search_id: int, checked_at: Optional[datetime] = None
    ) -> bool:
        """Record a completed check. Best effort: failures are logged, not raised."""
        try:
            with self.database.session_scope() as session:
                row = session.get(SearchRow, search_id)
                if row is None:
                    self.logger.warning(
                        "Cannot update last check of missing search",
                        extra={"search_id": search_id},
                    )
                    return False
                row.last_checked_at = checked_at or datetime.now()
            return True
        except SQLAlchemyError as e:
            self.logger.error(
                f"Failed to update last check time: {e}",
                extra={"search_id": search_id},
            )
            return False

    # Queries

    def find_active_searches(self) -> List[Search]:
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(SearchRow)
                .where(SearchRow.status == SearchStatus.ACTIVE.value)
                .order_by(SearchRow.id)
            ).all()
            return [to_search(row) for row in rows]

    def get_search(self, search_id: int) -> Optional[Search]:
        with self.database.session_scope() as session:
            row = session.get(SearchRow, search_id)
            return to_search(row) if row else None

    def get_active_search(self, user_id: int) -> Optional[Search]:
        with self.database.session_scope() as session:
            row = self._active_row(session, user_id)
            return to_search(row) if row else None

    def get_current_search(self, user_id: int) -> Optional[Search]:
        """The user's active search, else their most recently updated paused one."""
        with self.database.session_scope() as session:
            row = self._active_row(session, user_id)
            if row is None:
                row = session.scalars(
                    select(SearchRow)
                    .where(
                        SearchRow.owner_id == user_id,
                        SearchRow.status == SearchStatus.PAUSED.value,
                    )
                    .order_by(SearchRow.updated_at.desc(), SearchRow.id.desc())
                    .limit(1)
                ).first()
            return to_search(row) if row else None

    # Helpers

    def _active_row(self, session: Session, user_id: int) -> Optional[SearchRow]:
        return session.scalars(
            select(SearchRow).where(
                SearchRow.owner_id == user_id,
                SearchRow.status == SearchStatus.ACTIVE.value,
            )
        ).first()

    def _locked_row(self, session: Session, search_id: int) -> Optional[SearchRow]:
        """Load a non-deleted search with a row lock held until commit."""
        row = session.scalars(
            select(SearchRow).where(SearchRow.id == search_id).with_for_update()
        ).first()
        if row is None or row.status == SearchStatus.DELETED.value:
            return None
        return row

    def _validation_failure(
        self, criteria: SearchCriteria
    ) -> Optional[RegistryResult]:
        try:
            criteria.validate()
        except CriteriaValidationError as e:
            return RegistryResult.failure(ErrorKind.INVALID_CRITERIA, str(e))
        return None
