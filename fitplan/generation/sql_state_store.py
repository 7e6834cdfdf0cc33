"""SQLAlchemy-backed generation state store.

One ``plan_generation_status`` row per user holds the status, the JSON
accumulator and the input snapshot. Compare-and-set is a single
``UPDATE ... WHERE version = :expected AND generation_id = :generation``, so
fencing holds across processes sharing the database.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fitplan.db.models import PlanGenerationStatusRecord
from fitplan.db.session import get_session_factory, session_scope
from fitplan.generation.errors import PersistenceError
from fitplan.generation.state import AccumulatedPlanData, GenerationStatus, as_utc
from fitplan.generation.steps import GenerationStep
from fitplan.plans.models import PlanInput


def _status_columns(status: GenerationStatus) -> dict[str, Any]:
    return {
        "generation_id": status.generation_id,
        "is_generating": status.is_generating,
        "current_step": int(status.current_step),
        "step_message": status.step_message,
        "estimated_seconds_remaining": status.estimated_seconds_remaining,
        "total_steps": status.total_steps,
        "error_message": status.error_message,
        "run_state": status.run_state.value,
        "version": status.version,
        "claimed_step": int(status.claimed_step) if status.claimed_step is not None else None,
        "claimed_at": status.claimed_at,
        "started_at": status.started_at,
        "updated_at": status.updated_at,
    }


def _to_status(record: PlanGenerationStatusRecord) -> GenerationStatus:
    return GenerationStatus(
        user_id=record.user_id,
        generation_id=record.generation_id,
        is_generating=record.is_generating,
        current_step=GenerationStep(record.current_step),
        step_message=record.step_message,
        estimated_seconds_remaining=record.estimated_seconds_remaining,
        total_steps=record.total_steps,
        error_message=record.error_message,
        run_state=record.run_state,
        version=record.version,
        claimed_step=GenerationStep(record.claimed_step) if record.claimed_step is not None else None,
        claimed_at=as_utc(record.claimed_at) if record.claimed_at is not None else None,
        started_at=as_utc(record.started_at),
        updated_at=as_utc(record.updated_at),
    )


class SqlStateStore:
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        factory = self._session_factory or get_session_factory()
        try:
            with session_scope(factory) as session:
                yield session
        except SQLAlchemyError as e:
            raise PersistenceError(f"Generation state store failed: {e}") from e

    def _record(self, session: Session, user_id: str) -> PlanGenerationStatusRecord | None:
        return session.get(PlanGenerationStatusRecord, user_id)

    def get_status(self, user_id: str) -> GenerationStatus | None:
        with self._session() as session:
            record = self._record(session, user_id)
            return _to_status(record) if record is not None else None

    def set_status(self, user_id: str, status: GenerationStatus) -> None:
        with self._session() as session:
            record = self._record(session, user_id)
            if record is None:
                session.add(PlanGenerationStatusRecord(user_id=user_id, **_status_columns(status)))
                return
            for column, value in _status_columns(status).items():
                setattr(record, column, value)

    def delete_status(self, user_id: str) -> None:
        with self._session() as session:
            session.execute(delete(PlanGenerationStatusRecord).where(PlanGenerationStatusRecord.user_id == user_id))

    def get_accumulated_data(self, user_id: str) -> AccumulatedPlanData | None:
        with self._session() as session:
            record = self._record(session, user_id)
            if record is None or record.accumulated_data is None:
                return None
            return AccumulatedPlanData.model_validate(record.accumulated_data)

    def set_accumulated_data(self, user_id: str, data: AccumulatedPlanData | None) -> None:
        with self._session() as session:
            record = self._record(session, user_id)
            if record is None:
                raise PersistenceError(f"No generation record for user {user_id}")
            record.accumulated_data = data.to_json_dict() if data is not None else None

    def get_input_snapshot(self, user_id: str) -> PlanInput | None:
        with self._session() as session:
            record = self._record(session, user_id)
            if record is None or record.input_snapshot is None:
                return None
            return PlanInput.model_validate(record.input_snapshot)

    def set_input_snapshot(self, user_id: str, plan_input: PlanInput) -> None:
        with self._session() as session:
            record = self._record(session, user_id)
            if record is None:
                raise PersistenceError(f"No generation record for user {user_id}")
            record.input_snapshot = plan_input.to_json_dict()

    def compare_and_set_status(
        self,
        user_id: str,
        expected_version: int | None,
        status: GenerationStatus,
        data: AccumulatedPlanData | None = None,
    ) -> bool:
        values = _status_columns(status)
        if data is not None:
            values["accumulated_data"] = data.to_json_dict()

        if expected_version is None:
            try:
                with self._session() as session:
                    session.add(PlanGenerationStatusRecord(user_id=user_id, **values))
            except PersistenceError as e:
                if isinstance(e.__cause__, IntegrityError):
                    logger.debug("Generation record already exists, create lost", user_id=user_id)
                    return False
                raise
            return True

        with self._session() as session:
            result = session.execute(
                update(PlanGenerationStatusRecord)
                .where(
                    PlanGenerationStatusRecord.user_id == user_id,
                    PlanGenerationStatusRecord.version == expected_version,
                    PlanGenerationStatusRecord.generation_id == status.generation_id,
                )
                .values(**values)
            )
            return result.rowcount == 1

    def list_generating(self) -> list[GenerationStatus]:
        with self._session() as session:
            records = session.scalars(
                select(PlanGenerationStatusRecord).where(PlanGenerationStatusRecord.is_generating.is_(True))
            ).all()
            return [_to_status(record) for record in records]
