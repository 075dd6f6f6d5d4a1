"""Read-only lookups over jobs, clients and material allocations (org-scoped)."""
from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import NotFoundError
from ..models import Client, Job, JobMaterialAllocation
from ..schemas import MaterialLine


def get_job_by_id(db: Session, job_id: UUID, org_id: UUID) -> Job:
    job = db.query(Job).filter(Job.id == job_id, Job.org_id == org_id).first()
    if not job:
        raise NotFoundError("Job not found", details={"jobId": str(job_id)})
    return job


def get_jobs_by_ids(db: Session, job_ids: Iterable[UUID], org_id: UUID) -> dict[UUID, Job]:
    ids = set(job_ids)
    if not ids:
        return {}
    jobs = db.query(Job).filter(Job.org_id == org_id, Job.id.in_(ids)).all()
    return {job.id: job for job in jobs}


def list_clients_by_ids(db: Session, client_ids: Iterable[UUID], org_id: UUID) -> dict[UUID, Client]:
    ids = {client_id for client_id in client_ids if client_id}
    if not ids:
        return {}
    clients = db.query(Client).filter(Client.org_id == org_id, Client.id.in_(ids)).all()
    return {client.id: client for client in clients}


def list_job_material_allocations(db: Session, job_id: UUID, org_id: UUID) -> list[MaterialLine]:
    rows = (
        db.query(JobMaterialAllocation)
        .filter(
            JobMaterialAllocation.org_id == org_id,
            JobMaterialAllocation.job_id == job_id,
        )
        .all()
    )
    return [
        MaterialLine(material_id=row.material_id, quantity=float(row.planned_quantity or 0))
        for row in rows
    ]
