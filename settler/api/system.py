"""System API — health check, scheduler status, job logs, manual pass trigger, reconciliation."""

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from settler.database import get_session
from settler.models.job_log import JobLog
from settler.api.deps import require_admin

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler", dependencies=[Depends(require_admin)])
def scheduler_status():
    """Current scheduler state with job details and the last pass summary."""
    from settler.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.post("/trigger", dependencies=[Depends(require_admin)])
async def trigger_pass():
    """Run one settlement pass now and return its summary."""
    from settler.engine.settlement_job import run_settlement_pass
    return await run_settlement_pass()


@router.get("/logs", dependencies=[Depends(require_admin)])
def job_logs(
    bot_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(JobLog).order_by(JobLog.timestamp.desc(), JobLog.id.desc())
    if bot_id is not None:
        stmt = stmt.where(JobLog.bot_id == bot_id)
    if status is not None:
        stmt = stmt.where(JobLog.status == status)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()


@router.get("/reconcile", dependencies=[Depends(require_admin)])
def reconcile_report():
    """Report settlements whose ledger credit is missing, without applying anything."""
    from settler.engine.reconcile import reconcile_settlements
    return reconcile_settlements(apply=False)


@router.post("/reconcile", dependencies=[Depends(require_admin)])
def reconcile_apply():
    """Apply missing settlement credits. Safe to repeat."""
    from settler.engine.reconcile import reconcile_settlements
    return reconcile_settlements(apply=True)
