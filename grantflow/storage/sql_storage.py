# grantflow/storage/sql_storage.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    DateTime,
    Engine,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    func,
    select,
    text,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from grantflow.common.exceptions import StoreError
from grantflow.common.job import Job
from grantflow.common.states import (
    BaseState,
    ELIGIBLE_STATES,
    PendingState,
    ProcessingState,
    can_transition,
)
from grantflow.serialization.base import BaseSerializer
from grantflow.serialization.json_serializer import JsonSerializer
from grantflow.storage.base import JobStorage, state_column_values, summarize_statistics

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class JobModel(Base):
    __tablename__ = "grantflow_jobs"
    __table_args__ = (
        Index("ix_grantflow_jobs_claim", "status", "scheduled_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_type: Mapped[str] = mapped_column(String(100), index=True)
    payload: Mapped[str] = mapped_column(Text, default="{}")
    status: Mapped[str] = mapped_column(String(20), index=True)
    priority: Mapped[int] = mapped_column(Integer, index=True, default=5)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class JobHistoryModel(Base):
    __tablename__ = "grantflow_job_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), index=True)
    state: Mapped[str] = mapped_column(String(20), index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    data: Mapped[str] = mapped_column(Text, default="{}")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite keeps the wall-clock time and drops the offset, so every value
    # written or compared is converted to UTC first.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _column_values(state: BaseState) -> Dict[str, Any]:
    return {
        key: _utc(value) if isinstance(value, datetime) else value
        for key, value in state_column_values(state).items()
    }


class SqlStorage(JobStorage):
    def __init__(
        self,
        connection_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        create_tables: bool = True,
        serializer: Optional[BaseSerializer] = None,
    ) -> None:
        if engine is None and connection_url is None:
            raise ValueError("connection_url or engine is required")
        self.engine = engine or create_engine(connection_url)
        self.serializer = serializer or JsonSerializer()
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(self.engine)

        self._supports_skip_locked = self.engine.dialect.name in {
            "postgresql",
            "mysql",
            "mariadb",
        }

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Job store transaction failed", exc_info=True)
            raise StoreError(f"Job store unavailable: {exc}") from exc

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Job store query failed", exc_info=True)
            raise StoreError(f"Job store unavailable: {exc}") from exc

    def _job_from_model(self, model: JobModel) -> Job:
        return Job(
            id=model.id,
            job_type=model.job_type,
            payload=self.serializer.deserialize_payload(model.payload),
            status=model.status,
            priority=model.priority,
            scheduled_at=_aware(model.scheduled_at),
            started_at=_aware(model.started_at),
            completed_at=_aware(model.completed_at),
            error_message=model.error_message,
            retry_count=model.retry_count,
            max_retries=model.max_retries,
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at),
        )

    def _record_history(self, session: Session, job_id: str, state: BaseState) -> None:
        session.add(
            JobHistoryModel(
                job_id=job_id,
                state=state.name,
                timestamp=_utc(state.created_at),
                data=self.serializer.serialize_state_data(state.serialize_data()),
            )
        )

    def enqueue(self, job: Job) -> str:
        with self._transaction() as session:
            session.add(
                JobModel(
                    id=job.id,
                    job_type=job.job_type,
                    payload=self.serializer.serialize_payload(job.payload),
                    status=job.status,
                    priority=job.priority,
                    scheduled_at=_utc(job.scheduled_at),
                    started_at=_utc(job.started_at),
                    completed_at=_utc(job.completed_at),
                    error_message=job.error_message,
                    retry_count=job.retry_count,
                    max_retries=job.max_retries,
                    created_at=_utc(job.created_at),
                    updated_at=_utc(job.updated_at),
                )
            )
            self._record_history(session, job.id, PendingState(created_at=job.created_at))
        return job.id

    def claim_batch(
        self,
        batch_size: int,
        now: Optional[datetime] = None,
        server_id: str = "",
        worker_id: str = "",
    ) -> List[Job]:
        if batch_size <= 0:
            return []
        now = _utc(now) or datetime.now(UTC)
        claimed: List[Job] = []
        with self._transaction() as session:
            query = (
                select(JobModel)
                .where(
                    JobModel.status.in_(ELIGIBLE_STATES),
                    JobModel.scheduled_at <= now,
                )
                .order_by(
                    JobModel.priority.desc(),
                    JobModel.scheduled_at.asc(),
                    JobModel.created_at.asc(),
                )
                .limit(batch_size)
            )
            if self._supports_skip_locked:
                query = query.with_for_update(skip_locked=True)

            rows = session.execute(query).scalars().all()
            for row in rows:
                observed_status = row.status
                processing_state = ProcessingState(server_id, worker_id, created_at=now)
                updated = session.execute(
                    update(JobModel)
                    .where(
                        JobModel.id == row.id,
                        JobModel.status == observed_status,
                    )
                    .values(**_column_values(processing_state))
                    .execution_options(synchronize_session=False)
                )
                if updated.rowcount != 1:
                    # Another claimant got there first.
                    continue

                job = self._job_from_model(row)
                job.status = ProcessingState.NAME
                job.started_at = now
                job.updated_at = now
                self._record_history(session, job.id, processing_state)
                claimed.append(job)
        return claimed

    def set_job_state(
        self, job_id: str, state: BaseState, expected_old_state: Optional[str] = None
    ) -> bool:
        with self._transaction() as session:
            current = session.execute(
                select(JobModel.status).where(JobModel.id == job_id)
            ).scalar_one_or_none()
            if current is None:
                return False
            if expected_old_state and current != expected_old_state:
                return False
            if not can_transition(current, state.name):
                logger.warning(
                    f"Rejected transition {current} -> {state.name} for job {job_id}"
                )
                return False

            updated = session.execute(
                update(JobModel)
                .where(JobModel.id == job_id, JobModel.status == current)
                .values(**_column_values(state))
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                return False

            self._record_history(session, job_id, state)
            return True

    def get_job_data(self, job_id: str) -> Optional[Job]:
        with self._read_session() as session:
            model = session.get(JobModel, job_id)
            return self._job_from_model(model) if model else None

    def get_jobs_by_state(self, state_name: str, start: int, count: int) -> List[Job]:
        with self._read_session() as session:
            rows = (
                session.execute(
                    select(JobModel)
                    .where(JobModel.status == state_name)
                    .order_by(JobModel.created_at.desc())
                    .offset(start)
                    .limit(count)
                )
                .scalars()
                .all()
            )
            return [self._job_from_model(row) for row in rows]

    def get_state_job_count(self, state_name: str) -> int:
        with self._read_session() as session:
            result = session.execute(
                select(func.count(JobModel.id)).where(JobModel.status == state_name)
            ).scalar_one()
            return int(result or 0)

    def get_statistics(self, since: datetime) -> Dict[str, Dict[str, Any]]:
        with self._read_session() as session:
            rows = session.execute(
                select(
                    JobModel.status, JobModel.started_at, JobModel.completed_at
                ).where(JobModel.created_at > _utc(since))
            ).all()
        return summarize_statistics(
            (status, _aware(started_at), _aware(completed_at))
            for status, started_at, completed_at in rows
        )

    def get_job_history(self, job_id: str) -> List[dict]:
        with self._read_session() as session:
            rows = (
                session.execute(
                    select(JobHistoryModel)
                    .where(JobHistoryModel.job_id == job_id)
                    .order_by(JobHistoryModel.id)
                )
                .scalars()
                .all()
            )
            return [
                {
                    "state": row.state,
                    "timestamp": _aware(row.timestamp).isoformat(),
                    "data": self.serializer.deserialize_state_data(row.data),
                }
                for row in rows
            ]

    def find_stuck_jobs(self, started_before: datetime, limit: int = 100) -> List[Job]:
        with self._read_session() as session:
            rows = (
                session.execute(
                    select(JobModel)
                    .where(
                        JobModel.status == ProcessingState.NAME,
                        JobModel.started_at.is_not(None),
                        JobModel.started_at <= _utc(started_before),
                    )
                    .order_by(JobModel.started_at)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return [self._job_from_model(row) for row in rows]

    def ping(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.warning("Job store ping failed", exc_info=True)
            return False
