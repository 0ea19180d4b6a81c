"""
Repositories over the relational backing store.

Each method runs in its own transaction and returns detached ORM objects.
SQLAlchemy failures are logged and re-raised as BackingStoreError.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generic, Iterator, List, Optional, Set, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import Base, session_scope, utc_now
from .tables import (
    BudgetAlertRecord,
    CollectionRecord,
    DocumentRecord,
    DocumentStatus,
    UsageRecord,
)
from ..exceptions import (
    BackingStoreError,
    CollectionNotFound,
    DocumentNotFound,
    ValidationError,
)
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Shared session handling and lookups for one model class"""

    model: Type[ModelT]

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"{self.model.__tablename__}: backing store failure: {e}")
            raise BackingStoreError(
                f"Backing store failure on {self.model.__tablename__}: {e}"
            ) from e

    def get(self, id) -> Optional[ModelT]:
        with self._session() as session:
            return session.get(self.model, id)


class CollectionRepository(BaseRepository[CollectionRecord]):
    model = CollectionRecord

    def create(
        self, name: str, description: Optional[str] = None, is_personal: bool = False
    ) -> CollectionRecord:
        try:
            with self._session() as session:
                record = CollectionRecord(
                    name=name, description=description, is_personal=is_personal
                )
                session.add(record)
                session.flush()
                return record
        except IntegrityError as e:
            raise ValidationError(
                f"Collection name already exists: {name}", field="name"
            ) from e

    def require(self, collection_id: str) -> CollectionRecord:
        record = self.get(collection_id)
        if record is None:
            raise CollectionNotFound(collection_id)
        return record

    def get_by_name(self, name: str) -> Optional[CollectionRecord]:
        with self._session() as session:
            stmt = select(CollectionRecord).where(CollectionRecord.name == name)
            return session.execute(stmt).scalar_one_or_none()

    def list_all(self) -> List[CollectionRecord]:
        with self._session() as session:
            stmt = select(CollectionRecord).order_by(CollectionRecord.created_at)
            return list(session.execute(stmt).scalars().all())

    def delete(self, collection_id: str) -> bool:
        """Delete a collection and, through the ORM cascade, its documents"""
        with self._session() as session:
            record = session.get(CollectionRecord, collection_id)
            if record is None:
                return False
            session.delete(record)
            return True


class DocumentRepository(BaseRepository[DocumentRecord]):
    model = DocumentRecord

    def create(
        self,
        collection_id: str,
        title: str,
        extracted_text: Optional[str] = None,
        content_type: str = "text/plain",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DocumentRecord:
        with self._session() as session:
            if session.get(CollectionRecord, collection_id) is None:
                raise CollectionNotFound(collection_id)
            record = DocumentRecord(
                collection_id=collection_id,
                title=title,
                content_type=content_type,
                extracted_text=extracted_text,
                doc_metadata=dict(metadata or {}),
                status=DocumentStatus.PENDING,
            )
            session.add(record)
            session.flush()
            return record

    def require(self, document_id: str) -> DocumentRecord:
        record = self.get(document_id)
        if record is None:
            raise DocumentNotFound(document_id)
        return record

    def set_extracted_text(self, document_id: str, text: str) -> None:
        with self._session() as session:
            record = self._load(session, document_id)
            record.extracted_text = text
            record.status = DocumentStatus.PENDING
            record.error_message = None

    def update_status(
        self, document_id: str, status: str, error_message: Optional[str] = None
    ) -> None:
        if status not in DocumentStatus.ALL:
            raise ValidationError(f"Unknown document status: {status}", field="status")
        with self._session() as session:
            record = self._load(session, document_id)
            record.status = status
            record.error_message = error_message
        logger.debug(f"Document {document_id} -> {status}")

    def update_metadata(self, document_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``updates`` into the document metadata and return the result"""
        with self._session() as session:
            record = self._load(session, document_id)
            merged = dict(record.doc_metadata or {})
            merged.update(updates)
            # Reassign so the JSON column is marked dirty
            record.doc_metadata = merged
            return merged

    def list_by_collection(
        self, collection_id: str, status: Optional[str] = None
    ) -> List[DocumentRecord]:
        with self._session() as session:
            stmt = select(DocumentRecord).where(DocumentRecord.collection_id == collection_id)
            if status is not None:
                stmt = stmt.where(DocumentRecord.status == status)
            stmt = stmt.order_by(DocumentRecord.created_at, DocumentRecord.id)
            return list(session.execute(stmt).scalars().all())

    @staticmethod
    def _load(session: Session, document_id: str) -> DocumentRecord:
        record = session.get(DocumentRecord, document_id)
        if record is None:
            raise DocumentNotFound(document_id)
        return record


class UsageRepository(BaseRepository[UsageRecord]):
    model = UsageRecord

    def add(
        self,
        provider: str,
        operation: str,
        units: int,
        cost: float,
        model: Optional[str] = None,
        collection_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> UsageRecord:
        with self._session() as session:
            record = UsageRecord(
                provider=provider,
                operation=operation,
                units=units,
                cost=cost,
                model=model,
                collection_id=collection_id,
                created_at=created_at or utc_now(),
            )
            session.add(record)
            session.flush()
            return record

    def total_cost_since(self, start: datetime) -> float:
        with self._session() as session:
            stmt = select(func.coalesce(func.sum(UsageRecord.cost), 0.0)).where(
                UsageRecord.created_at >= start
            )
            return float(session.execute(stmt).scalar_one())

    def breakdown_since(self, start: datetime) -> List[Dict[str, Any]]:
        """Aggregate usage per provider and operation, most expensive first"""
        with self._session() as session:
            total_cost = func.sum(UsageRecord.cost)
            stmt = (
                select(
                    UsageRecord.provider,
                    UsageRecord.operation,
                    func.count(UsageRecord.id),
                    func.sum(UsageRecord.units),
                    total_cost,
                )
                .where(UsageRecord.created_at >= start)
                .group_by(UsageRecord.provider, UsageRecord.operation)
                .order_by(total_cost.desc(), UsageRecord.provider, UsageRecord.operation)
            )
            rows = []
            for provider, operation, count, units, cost in session.execute(stmt).all():
                cost = float(cost or 0.0)
                rows.append({
                    "provider": provider,
                    "operation": operation,
                    "request_count": int(count),
                    "total_units": int(units or 0),
                    "total_cost": cost,
                    "avg_cost_per_request": cost / count if count else 0.0,
                })
            return rows


class AlertRepository(BaseRepository[BudgetAlertRecord]):
    model = BudgetAlertRecord

    def add(
        self,
        alert_type: str,
        threshold: float,
        spend_at_trigger: float,
        period_start: datetime,
    ) -> BudgetAlertRecord:
        with self._session() as session:
            record = BudgetAlertRecord(
                alert_type=alert_type,
                threshold=threshold,
                spend_at_trigger=spend_at_trigger,
                period_start=period_start,
            )
            session.add(record)
            session.flush()
            return record

    def types_in_period(self, period_start: datetime) -> Set[str]:
        with self._session() as session:
            stmt = select(BudgetAlertRecord.alert_type).where(
                BudgetAlertRecord.period_start == period_start
            )
            return set(session.execute(stmt).scalars().all())

    def recent(self, limit: int = 10) -> List[BudgetAlertRecord]:
        with self._session() as session:
            stmt = (
                select(BudgetAlertRecord)
                .order_by(BudgetAlertRecord.created_at.desc(), BudgetAlertRecord.id.desc())
                .limit(limit)
            )
            return list(session.execute(stmt).scalars().all())

    def acknowledge(self, alert_id: int) -> bool:
        with self._session() as session:
            record = session.get(BudgetAlertRecord, alert_id)
            if record is None:
                return False
            record.acknowledged = True
            return True
