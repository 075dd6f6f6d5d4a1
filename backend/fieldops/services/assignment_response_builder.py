"""Assignment response serialization with batched job/client loading."""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import InternalError
from ..schemas import JobBrief, MaterialLine, ScheduleAssignmentWithJob
from .assignment_rules import AssignmentState
from .directories import get_jobs_by_ids, list_clients_by_ids, list_job_material_allocations

logger = logging.getLogger(__name__)


class AssignmentResponseBuilder:
    """
    Joins assignments to job, client and material data.

    Everything except the job itself fails soft: a missing client renders as
    ``clientDisplayName: null`` and a failed material query as ``[]``.
    """

    def __init__(
        self,
        db: Session,
        *,
        workday_start_minutes: Optional[int] = None,
        jobs_loader: Callable = get_jobs_by_ids,
        clients_loader: Callable = list_clients_by_ids,
        materials_loader: Callable = list_job_material_allocations,
    ) -> None:
        self.db = db
        self.workday_start_minutes = (
            settings.workday_start_minutes if workday_start_minutes is None else workday_start_minutes
        )
        self._jobs_loader = jobs_loader
        self._clients_loader = clients_loader
        self._materials_loader = materials_loader

    def _slot_datetime(self, state: AssignmentState, minutes: int) -> datetime:
        return datetime.combine(state.date, time.min) + timedelta(minutes=self.workday_start_minutes + minutes)

    def _load_client_names(self, jobs: list, org_id: UUID) -> dict[UUID, str]:
        client_ids = [job.client_id for job in jobs if job.client_id]
        if not client_ids:
            return {}
        try:
            clients = self._clients_loader(self.db, client_ids, org_id)
        except SQLAlchemyError:
            logger.warning(f"Client lookup failed for org {org_id}", exc_info=True)
            return {}
        return {client_id: client.display_name for client_id, client in clients.items()}

    def _serialize(self, state: AssignmentState, job, client_names: dict[UUID, str]) -> ScheduleAssignmentWithJob:
        job_brief = JobBrief(
            id=job.id,
            title=job.title,
            status=job.status,
            crew_id=job.crew_id,
            client_id=job.client_id,
            job_type_id=job.job_type_id,
            address=job.address,
            client_display_name=client_names.get(job.client_id) if job.client_id else None,
        )
        return ScheduleAssignmentWithJob(
            id=state.id,
            job_id=state.job_id,
            job=job_brief,
            crew_id=state.crew_id,
            date=state.date,
            start_minutes=state.start_minutes,
            end_minutes=state.end_minutes,
            assignment_type=state.assignment_type,
            start_at_hq=state.start_at_hq,
            end_at_hq=state.end_at_hq,
            status=state.status,
            version=state.version,
            scheduled_start=self._slot_datetime(state, state.start_minutes),
            scheduled_end=self._slot_datetime(state, state.end_minutes),
        )

    def build_one(self, state: AssignmentState) -> ScheduleAssignmentWithJob:
        jobs = self._jobs_loader(self.db, [state.job_id], state.org_id)
        job = jobs.get(state.job_id)
        if job is None:
            # Referential integrity guarantees the job; its absence is a server fault.
            logger.error(f"Job {state.job_id} missing for schedule assignment {state.id}")
            raise InternalError("Failed to load job for schedule assignment")
        return self._serialize(state, job, self._load_client_names([job], state.org_id))

    def build_many(self, states: list[AssignmentState], org_id: UUID) -> list[ScheduleAssignmentWithJob]:
        if not states:
            return []
        jobs = self._jobs_loader(self.db, [state.job_id for state in states], org_id)
        client_names = self._load_client_names(list(jobs.values()), org_id)

        items: list[ScheduleAssignmentWithJob] = []
        for state in states:
            job = jobs.get(state.job_id)
            if job is None:
                logger.warning(f"Skipping schedule assignment {state.id}: job {state.job_id} not found")
                continue
            items.append(self._serialize(state, job, client_names))
        return items

    def load_materials(self, job_id: UUID, org_id: UUID) -> list[MaterialLine]:
        try:
            return self._materials_loader(self.db, job_id, org_id)
        except SQLAlchemyError:
            logger.warning(f"Material allocation lookup failed for job {job_id}", exc_info=True)
            return []
