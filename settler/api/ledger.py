"""Ledger API — balances, transaction history and consistency checks."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from settler.database import get_session
from settler.errors import AccountNotFoundError
from settler.models.ledger import LedgerTransaction, UserAccount
from settler.services import ledger
from settler.api.deps import require_admin

router = APIRouter(prefix="/api/ledger", tags=["ledger"], dependencies=[Depends(require_admin)])


@router.get("/{user_id}")
def get_account(user_id: int, session: Session = Depends(get_session)):
    account = session.get(UserAccount, user_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.get("/{user_id}/transactions")
def list_transactions(
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = (
        select(LedgerTransaction)
        .where(LedgerTransaction.user_id == user_id)
        .order_by(LedgerTransaction.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return session.exec(stmt).all()


@router.get("/{user_id}/verify")
def verify(user_id: int):
    """Check the transaction chain and cached balance for one account."""
    try:
        violations = ledger.verify_ledger(user_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"user_id": user_id, "consistent": not violations, "violations": violations}
