from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class PlanGenerationStatusRecord(Base):
    """Live plan-generation record, one row per user.

    Stores:
    - Status: current step, message, ETA, run state, error
    - Fencing: version (compare-and-set), claimed_step/claimed_at (step lease)
    - accumulated_data: JSON accumulator for the run
    - input_snapshot: JSON plan input the run was started with

    Rows are overwritten when a user starts a new run, never appended.
    """

    __tablename__ = "plan_generation_status"

    user_id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    generation_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    is_generating: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    step_message: Mapped[str] = mapped_column(String, nullable=False)
    estimated_seconds_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_state: Mapped[str] = mapped_column(String, nullable=False, default="running")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claimed_step: Mapped[int | None] = mapped_column(Integer, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accumulated_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    input_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class FitnessPlanRecord(Base):
    """Persisted fitness plan (workout, meals, shopping list).

    At most one active plan per user; creating a plan deactivates the others.
    generation_id ties the plan to the run that produced it.
    """

    __tablename__ = "fitness_plans"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    generation_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    preferences: Mapped[dict] = mapped_column(JSON, nullable=False)
    workout_plan: Mapped[dict] = mapped_column(JSON, nullable=False)
    meal_plan: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_fitness_plans_user_active", "user_id", "is_active"),)


class NutritionGoalRecord(Base):
    """Daily nutrition targets for a user, upserted from the latest plan."""

    __tablename__ = "nutrition_goals"

    user_id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    calories: Mapped[float] = mapped_column(Float, nullable=False)
    protein: Mapped[float] = mapped_column(Float, nullable=False)
    carbs: Mapped[float] = mapped_column(Float, nullable=False)
    fat: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
