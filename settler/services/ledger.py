"""Ledger — atomic balance changes backed by an append-only transaction log.

Every balance change appends exactly one LedgerTransaction with
new_balance = previous_balance + amount, and updates the account's cached
balance in the same database transaction.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from settler.database import engine
from settler.errors import AccountNotFoundError, LedgerError
from settler.models.ledger import LedgerTransaction, UserAccount

logger = logging.getLogger(__name__)


def credit_balance(
    user_id: int,
    amount: float,
    description: str,
    reference: str | None = None,
) -> float:
    """Add `amount` to the user's balance and return the new balance.

    Atomic with respect to concurrent changes for the same user: the account
    row is write-locked before its balance is read. When `reference` is given
    and a transaction with that reference already exists, nothing is applied
    and the existing transaction's resulting balance is returned.

    Raises:
        AccountNotFoundError: unknown user_id.
        LedgerError: the change could not be committed.
    """
    amount = round(amount, 2)
    with Session(engine) as session:
        if reference is not None:
            existing = _find_by_reference(session, reference)
            if existing is not None:
                logger.warning(
                    f"Ledger: reference {reference} already applied "
                    f"(txn {existing.id}), skipping duplicate credit"
                )
                return existing.new_balance

        now = datetime.now(timezone.utc)
        # Take the account row's write lock before reading the balance
        locked = session.exec(
            update(UserAccount).where(UserAccount.id == user_id).values(updated_at=now)
        )
        if locked.rowcount == 0:
            raise AccountNotFoundError(f"User account {user_id} not found")

        account = session.exec(select(UserAccount).where(UserAccount.id == user_id)).one()
        previous = account.balance
        new_balance = round(previous + amount, 2)

        account.balance = new_balance
        session.add(account)
        session.add(LedgerTransaction(
            user_id=user_id,
            type="credit" if amount >= 0 else "debit",
            amount=amount,
            previous_balance=previous,
            new_balance=new_balance,
            description=description,
            reference=reference,
            created_at=now,
        ))

        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if reference is not None:
                # Lost a race with a concurrent credit carrying the same reference
                existing = _find_by_reference(session, reference)
                if existing is not None:
                    logger.warning(f"Ledger: reference {reference} applied concurrently, skipping")
                    return existing.new_balance
            raise LedgerError(f"Credit for user {user_id} failed: {e}") from e

    logger.info(f"Ledger: user {user_id} {amount:+.2f} -> {new_balance:.2f} ({description})")
    return new_balance


def get_balance(user_id: int) -> float:
    with Session(engine) as session:
        account = session.get(UserAccount, user_id)
        if account is None:
            raise AccountNotFoundError(f"User account {user_id} not found")
        return account.balance


def list_transactions(user_id: int, limit: int | None = None) -> list[LedgerTransaction]:
    """Transactions for a user, oldest first."""
    with Session(engine) as session:
        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
            .order_by(LedgerTransaction.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.exec(stmt).all())


def verify_ledger(user_id: int) -> list[str]:
    """Check the user's transaction chain. Returns violations (empty when consistent)."""
    violations: list[str] = []
    with Session(engine) as session:
        account = session.get(UserAccount, user_id)
        if account is None:
            raise AccountNotFoundError(f"User account {user_id} not found")
        txns = session.exec(
            select(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
            .order_by(LedgerTransaction.id)
        ).all()

        prev_txn = None
        for txn in txns:
            if abs(txn.previous_balance + txn.amount - txn.new_balance) > 0.005:
                violations.append(
                    f"txn {txn.id}: {txn.previous_balance:.2f} + {txn.amount:.2f} != {txn.new_balance:.2f}"
                )
            if prev_txn is not None and abs(prev_txn.new_balance - txn.previous_balance) > 0.005:
                violations.append(
                    f"txn {txn.id}: previous_balance {txn.previous_balance:.2f} does not follow "
                    f"txn {prev_txn.id} new_balance {prev_txn.new_balance:.2f}"
                )
            prev_txn = txn

        if prev_txn is not None and abs(prev_txn.new_balance - account.balance) > 0.005:
            violations.append(
                f"account balance {account.balance:.2f} != latest txn {prev_txn.id} "
                f"new_balance {prev_txn.new_balance:.2f}"
            )

    for v in violations:
        logger.error(f"Ledger inconsistency for user {user_id}: {v}")
    return violations


def _find_by_reference(session: Session, reference: str) -> LedgerTransaction | None:
    return session.exec(
        select(LedgerTransaction).where(LedgerTransaction.reference == reference)
    ).first()
