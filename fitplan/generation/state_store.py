"""Durable per-user generation state.

A store holds one record per user: the live ``GenerationStatus``, the
``AccumulatedPlanData`` for the run and the original input snapshot.
``compare_and_set_status`` is the only write the orchestrator uses while a
run is in flight; it writes status and accumulator together or not at all.
"""

import threading
from typing import Protocol

from fitplan.generation.state import AccumulatedPlanData, GenerationStatus
from fitplan.plans.models import PlanInput


class GenerationStateStore(Protocol):
    def get_status(self, user_id: str) -> GenerationStatus | None: ...

    def set_status(self, user_id: str, status: GenerationStatus) -> None: ...

    def delete_status(self, user_id: str) -> None:
        """Delete the user's whole record: status, accumulated data and input."""
        ...

    def get_accumulated_data(self, user_id: str) -> AccumulatedPlanData | None: ...

    def set_accumulated_data(self, user_id: str, data: AccumulatedPlanData | None) -> None: ...

    def get_input_snapshot(self, user_id: str) -> PlanInput | None: ...

    def set_input_snapshot(self, user_id: str, plan_input: PlanInput) -> None: ...

    def compare_and_set_status(
        self,
        user_id: str,
        expected_version: int | None,
        status: GenerationStatus,
        data: AccumulatedPlanData | None = None,
    ) -> bool:
        """Write ``status`` (and ``data`` when given) if the stored version matches.

        ``expected_version=None`` means the write only succeeds when the user
        has no record at all. Otherwise the stored record must also belong to
        the same run (``generation_id``), so a writer left over from a
        cancelled run can never land on its successor.

        Returns:
            True if the write happened, False if another writer got there first
        """
        ...

    def list_generating(self) -> list[GenerationStatus]: ...


class InMemoryStateStore:
    """Process-local store, used by tests and single-process development."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._statuses: dict[str, GenerationStatus] = {}
        self._data: dict[str, AccumulatedPlanData] = {}
        self._inputs: dict[str, PlanInput] = {}

    def get_status(self, user_id: str) -> GenerationStatus | None:
        with self._lock:
            return self._statuses.get(user_id)

    def set_status(self, user_id: str, status: GenerationStatus) -> None:
        with self._lock:
            self._statuses[user_id] = status

    def delete_status(self, user_id: str) -> None:
        with self._lock:
            self._statuses.pop(user_id, None)
            self._data.pop(user_id, None)
            self._inputs.pop(user_id, None)

    def get_accumulated_data(self, user_id: str) -> AccumulatedPlanData | None:
        with self._lock:
            data = self._data.get(user_id)
            return data.model_copy(deep=True) if data is not None else None

    def set_accumulated_data(self, user_id: str, data: AccumulatedPlanData | None) -> None:
        with self._lock:
            if data is None:
                self._data.pop(user_id, None)
            else:
                self._data[user_id] = data.model_copy(deep=True)

    def get_input_snapshot(self, user_id: str) -> PlanInput | None:
        with self._lock:
            plan_input = self._inputs.get(user_id)
            return plan_input.model_copy(deep=True) if plan_input is not None else None

    def set_input_snapshot(self, user_id: str, plan_input: PlanInput) -> None:
        with self._lock:
            self._inputs[user_id] = plan_input.model_copy(deep=True)

    def compare_and_set_status(
        self,
        user_id: str,
        expected_version: int | None,
        status: GenerationStatus,
        data: AccumulatedPlanData | None = None,
    ) -> bool:
        with self._lock:
            current = self._statuses.get(user_id)
            if expected_version is None:
                if current is not None:
                    return False
            elif current is None or current.version != expected_version:
                return False
            elif current.generation_id != status.generation_id:
                return False

            self._statuses[user_id] = status
            if data is not None:
                self._data[user_id] = data.model_copy(deep=True)
            return True

    def list_generating(self) -> list[GenerationStatus]:
        with self._lock:
            return [status for status in self._statuses.values() if status.is_generating]
