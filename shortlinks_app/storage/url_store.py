"""
Durable URL store.

Every method opens its own session from the session factory, so each call is
an independent transaction. Correctness under concurrency comes from the
database itself:
- the unique index on short_code rejects colliding inserts
- ``clicks = clicks + 1`` is evaluated server-side in one UPDATE
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shortlinks_app.errors import ConflictError, StoreError, ValidationError
from shortlinks_app.models.url import ShortUrl, utcnow
from shortlinks_app.schemas.url import NewShortUrl, ShortUrlRecord, URLUpdate

logger = logging.getLogger(__name__)


class UrlStore(ABC):
    """Entity-CRUD contract the service layer depends on"""

    @abstractmethod
    def insert(self, candidate: NewShortUrl) -> ShortUrlRecord:
        """Insert a new row. Raises ConflictError if short_code exists."""
        pass

    @abstractmethod
    def find_by_short_code(self, short_code: str) -> Optional[ShortUrlRecord]:
        """Row for the code regardless of is_active (callers filter)."""
        pass

    @abstractmethod
    def increment_clicks(self, short_code: str) -> None:
        """Atomic clicks + 1."""
        pass

    @abstractmethod
    def list_by_owner(
        self,
        owner_id: str,
        page: int,
        limit: int,
        is_active: Optional[bool] = None
    ) -> Tuple[List[ShortUrlRecord], int]:
        """One page of the owner's URLs (newest first) and the total count."""
        pass

    @abstractmethod
    def find_owned(self, url_id: str, owner_id: str) -> Optional[ShortUrlRecord]:
        """None if absent OR owned by someone else."""
        pass

    @abstractmethod
    def update(self, url_id: str, owner_id: str, patch: URLUpdate) -> Optional[ShortUrlRecord]:
        pass

    @abstractmethod
    def delete(self, url_id: str, owner_id: str) -> Optional[ShortUrlRecord]:
        pass


class SQLAlchemyUrlStore(UrlStore):
    """
    SQLAlchemy implementation (PostgreSQL in production, SQLite in dev/tests).
    """

    def __init__(self, session_factory):
        """
        Args:
            session_factory: Callable returning a new Session (e.g. SessionLocal)
        """
        self.session_factory = session_factory

    def insert(self, candidate: NewShortUrl) -> ShortUrlRecord:
        with self.session_factory() as session:
            url = ShortUrl(
                original_url=candidate.original_url,
                short_code=candidate.short_code,
                owner_id=candidate.owner_id,
                expires_at=candidate.expires_at,
            )
            session.add(url)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConflictError(short_code=candidate.short_code) from e
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("Insert failed for %s: %s", candidate.short_code, e)
                raise StoreError() from e
            session.refresh(url)
            return ShortUrlRecord.model_validate(url)

    def find_by_short_code(self, short_code: str) -> Optional[ShortUrlRecord]:
        try:
            with self.session_factory() as session:
                url = session.scalars(
                    select(ShortUrl).where(ShortUrl.short_code == short_code)
                ).first()
                return ShortUrlRecord.model_validate(url) if url else None
        except SQLAlchemyError as e:
            logger.error("Lookup failed for %s: %s", short_code, e)
            raise StoreError() from e

    def increment_clicks(self, short_code: str) -> None:
        try:
            with self.session_factory() as session:
                session.execute(
                    update(ShortUrl)
                    .where(ShortUrl.short_code == short_code)
                    .values(clicks=ShortUrl.clicks + 1, updated_at=utcnow())
                )
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Click increment failed for %s: %s", short_code, e)
            raise StoreError() from e

    def list_by_owner(
        self,
        owner_id: str,
        page: int,
        limit: int,
        is_active: Optional[bool] = None
    ) -> Tuple[List[ShortUrlRecord], int]:
        if page < 1 or limit < 1:
            raise ValidationError("page must be >= 1 and limit must be > 0", page=page, limit=limit)

        conditions = [ShortUrl.owner_id == owner_id]
        if is_active is not None:
            conditions.append(ShortUrl.is_active == is_active)

        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(ShortUrl)
                    .where(*conditions)
                    .order_by(ShortUrl.created_at.desc())
                    .limit(limit)
                    .offset((page - 1) * limit)
                ).all()
                total = session.scalar(
                    select(func.count()).select_from(ShortUrl).where(*conditions)
                )
                return [ShortUrlRecord.model_validate(row) for row in rows], total or 0
        except SQLAlchemyError as e:
            logger.error("Listing failed for owner %s: %s", owner_id, e)
            raise StoreError() from e

    def find_owned(self, url_id: str, owner_id: str) -> Optional[ShortUrlRecord]:
        try:
            with self.session_factory() as session:
                url = self._get_owned(session, url_id, owner_id)
                return ShortUrlRecord.model_validate(url) if url else None
        except SQLAlchemyError as e:
            logger.error("Lookup failed for %s: %s", url_id, e)
            raise StoreError() from e

    def update(self, url_id: str, owner_id: str, patch: URLUpdate) -> Optional[ShortUrlRecord]:
        try:
            with self.session_factory() as session:
                url = self._get_owned(session, url_id, owner_id)
                if url is None:
                    return None
                for field, value in patch.changes().items():
                    setattr(url, field, value)
                url.updated_at = utcnow()
                session.commit()
                session.refresh(url)
                return ShortUrlRecord.model_validate(url)
        except SQLAlchemyError as e:
            logger.error("Update failed for %s: %s", url_id, e)
            raise StoreError() from e

    def delete(self, url_id: str, owner_id: str) -> Optional[ShortUrlRecord]:
        """Hard delete; the short_code becomes available again."""
        try:
            with self.session_factory() as session:
                url = self._get_owned(session, url_id, owner_id)
                if url is None:
                    return None
                record = ShortUrlRecord.model_validate(url)
                session.delete(url)
                session.commit()
                return record
        except SQLAlchemyError as e:
            logger.error("Delete failed for %s: %s", url_id, e)
            raise StoreError() from e

    @staticmethod
    def _get_owned(session, url_id: str, owner_id: str) -> Optional[ShortUrl]:
        return session.scalars(
            select(ShortUrl).where(ShortUrl.id == url_id, ShortUrl.owner_id == owner_id)
        ).first()
