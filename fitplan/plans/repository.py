"""Plan and nutrition-goal repositories.

``create_plan`` deactivates the user's other active plans in the same
transaction as the insert, so a user never has two active plans.
"""

import threading
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fitplan.db.models import FitnessPlanRecord, NutritionGoalRecord
from fitplan.db.session import get_session_factory, session_scope
from fitplan.generation.errors import PersistenceError


class PlanRecord(BaseModel):
    """Plan row as written by the persister; JSON columns are camelCase dicts."""

    generation_id: str | None = None
    name: str
    preferences: dict
    workout_plan: dict
    meal_plan: dict


class NutritionGoal(BaseModel):
    calories: float
    protein: float
    carbs: float
    fat: float


class PlanRepository(Protocol):
    def create_plan(self, user_id: str, plan: PlanRecord) -> str: ...

    def deactivate_active_plans(self, user_id: str) -> int: ...

    def deactivate_plan(self, user_id: str, plan_id: str) -> bool: ...

    def find_plan_for_generation(self, user_id: str, generation_id: str) -> str | None: ...


class NutritionGoalRepository(Protocol):
    def upsert_goal(self, user_id: str, goal: NutritionGoal) -> None: ...


@contextmanager
def _repository_session(factory: sessionmaker[Session] | None, operation: str) -> Generator[Session, None, None]:
    try:
        with session_scope(factory or get_session_factory()) as session:
            yield session
    except SQLAlchemyError as e:
        raise PersistenceError(f"{operation} failed: {e}") from e


def _deactivate(session: Session, user_id: str, now: datetime) -> int:
    result = session.execute(
        update(FitnessPlanRecord)
        .where(FitnessPlanRecord.user_id == user_id, FitnessPlanRecord.is_active.is_(True))
        .values(is_active=False, deactivated_at=now)
    )
    return result.rowcount


class SqlPlanRepository:
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    def create_plan(self, user_id: str, plan: PlanRecord) -> str:
        plan_id = str(uuid.uuid4())
        with _repository_session(self._session_factory, "create_plan") as session:
            deactivated = _deactivate(session, user_id, datetime.now(timezone.utc))
            session.add(
                FitnessPlanRecord(
                    id=plan_id,
                    user_id=user_id,
                    generation_id=plan.generation_id,
                    name=plan.name,
                    preferences=plan.preferences,
                    workout_plan=plan.workout_plan,
                    meal_plan=plan.meal_plan,
                    is_active=True,
                )
            )
        logger.info("Fitness plan created", user_id=user_id, plan_id=plan_id, deactivated=deactivated)
        return plan_id

    def deactivate_active_plans(self, user_id: str) -> int:
        with _repository_session(self._session_factory, "deactivate_active_plans") as session:
            return _deactivate(session, user_id, datetime.now(timezone.utc))

    def deactivate_plan(self, user_id: str, plan_id: str) -> bool:
        with _repository_session(self._session_factory, "deactivate_plan") as session:
            result = session.execute(
                update(FitnessPlanRecord)
                .where(
                    FitnessPlanRecord.id == plan_id,
                    FitnessPlanRecord.user_id == user_id,
                    FitnessPlanRecord.is_active.is_(True),
                )
                .values(is_active=False, deactivated_at=datetime.now(timezone.utc))
            )
            return result.rowcount == 1

    def find_plan_for_generation(self, user_id: str, generation_id: str) -> str | None:
        with _repository_session(self._session_factory, "find_plan_for_generation") as session:
            return session.scalar(
                select(FitnessPlanRecord.id).where(
                    FitnessPlanRecord.user_id == user_id,
                    FitnessPlanRecord.generation_id == generation_id,
                )
            )


class SqlNutritionGoalRepository:
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    def upsert_goal(self, user_id: str, goal: NutritionGoal) -> None:
        with _repository_session(self._session_factory, "upsert_goal") as session:
            record = session.get(NutritionGoalRecord, user_id)
            if record is None:
                session.add(NutritionGoalRecord(user_id=user_id, **goal.model_dump()))
                return
            for column, value in goal.model_dump().items():
                setattr(record, column, value)
            record.updated_at = datetime.now(timezone.utc)


@dataclass
class StoredPlan:
    plan_id: str
    user_id: str
    record: PlanRecord
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryPlanRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.plans: dict[str, StoredPlan] = {}

    def create_plan(self, user_id: str, plan: PlanRecord) -> str:
        with self._lock:
            for stored in self.plans.values():
                if stored.user_id == user_id:
                    stored.is_active = False
            plan_id = str(uuid.uuid4())
            self.plans[plan_id] = StoredPlan(plan_id=plan_id, user_id=user_id, record=plan)
            return plan_id

    def deactivate_active_plans(self, user_id: str) -> int:
        with self._lock:
            active = [p for p in self.plans.values() if p.user_id == user_id and p.is_active]
            for stored in active:
                stored.is_active = False
            return len(active)

    def deactivate_plan(self, user_id: str, plan_id: str) -> bool:
        with self._lock:
            stored = self.plans.get(plan_id)
            if stored is None or stored.user_id != user_id or not stored.is_active:
                return False
            stored.is_active = False
            return True

    def find_plan_for_generation(self, user_id: str, generation_id: str) -> str | None:
        with self._lock:
            for stored in self.plans.values():
                if stored.user_id == user_id and stored.record.generation_id == generation_id:
                    return stored.plan_id
            return None

    def active_plans(self, user_id: str) -> list[StoredPlan]:
        with self._lock:
            return [p for p in self.plans.values() if p.user_id == user_id and p.is_active]


class InMemoryNutritionGoalRepository:
    def __init__(self) -> None:
        self.goals: dict[str, NutritionGoal] = {}

    def upsert_goal(self, user_id: str, goal: NutritionGoal) -> None:
        self.goals[user_id] = goal
