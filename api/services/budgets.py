"""
Budget ledger service functions.

A posting is one conditional UPDATE of the budget's balance columns whose
WHERE clause carries the posting's guard (enough remaining, not locked, no
locked or closed ancestor, ...), followed by the append of the ledger entry
in the same transaction. Two concurrent deductions can therefore never both
pass the ``remaining >= amount`` check.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
import logging
import uuid

from sqlalchemy import select, update, func, or_, true
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from api.services.notifications import enqueue_budget_alerts
from core.config import settings
from core.exceptions import (
    AllocationExceeded,
    BudgetExceeded,
    BudgetLocked,
    InvalidTransaction,
    NotFound,
)
from core.utils.datetime import now, days_between
from core.utils.formatting import ZERO, round_money, to_decimal, utilization_percentage
from database.engine import AsyncSessionLocal, commit_or_fail, get_scoped
from database.models.jobs import Job
from database.models.budgets import (
    Budget,
    BudgetAllocation,
    BudgetTransaction,
    BudgetAlert,
    BudgetStatus,
    BudgetLevel,
    TransactionType,
    TransactionSource,
    AllocationTarget,
    AlertSeverity,
)

logger = logging.getLogger(__name__)


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def serialize_budget(budget: Budget) -> dict[str, Any]:
    return {
        "id": budget.id,
        "parent_id": budget.parent_id,
        "level": budget.level.value,
        "depth": budget.depth,
        "path": budget.path,
        "name": budget.name,
        "company_id": budget.company_id,
        "agreement_id": budget.agreement_id,
        "currency": budget.currency,
        "total_amount": _money(budget.total_amount),
        "allocated_amount": _money(budget.allocated_amount),
        "spent_amount": _money(budget.spent_amount),
        "remaining_amount": _money(budget.remaining_amount),
        "period_start": budget.period_start.isoformat(),
        "period_end": budget.period_end.isoformat(),
        "status": budget.status.value,
        "is_locked": budget.is_locked,
        "lock_reason": budget.lock_reason,
        "version": budget.version,
    }


def serialize_transaction(transaction: BudgetTransaction) -> dict[str, Any]:
    return {
        "id": transaction.id,
        "budget_id": transaction.budget_id,
        "sequence": transaction.sequence,
        "transaction_type": transaction.transaction_type.value,
        "amount": _money(transaction.amount),
        "balance_after": _money(transaction.balance_after),
        "spent_after": _money(transaction.spent_after),
        "total_after": _money(transaction.total_after),
        "source_type": transaction.source_type.value,
        "source_reference": transaction.source_reference,
        "allocation_id": transaction.allocation_id,
        "transfer_group": transaction.transfer_group,
        "counterparty_budget_id": transaction.counterparty_budget_id,
        "description": transaction.description,
        "created_by": transaction.created_by,
        "created_at": transaction.created_at.isoformat(),
    }


def serialize_allocation(allocation: BudgetAllocation) -> dict[str, Any]:
    return {
        "id": allocation.id,
        "budget_id": allocation.budget_id,
        "target_type": allocation.target_type.value,
        "target_id": allocation.target_id,
        "allocated_amount": _money(allocation.allocated_amount),
        "spent_amount": _money(allocation.spent_amount),
        "remaining_amount": _money(allocation.remaining_amount),
        "is_active": allocation.is_active,
    }


def serialize_alert(alert: BudgetAlert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "budget_id": alert.budget_id,
        "threshold_percentage": _money(alert.threshold_percentage),
        "threshold_amount": _money(alert.threshold_amount),
        "severity": alert.severity.value,
        "is_triggered": alert.is_triggered,
        "triggered_at": alert.triggered_at.isoformat() if alert.triggered_at else None,
        "resolved_at": alert.resolved_at.isoformat() if alert.resolved_at else None,
        "last_notified_status": alert.last_notified_status,
        "message": alert.message,
    }


# ==================== Budgets ===================== #


async def create_budget(
    tenant_id: str,
    name: str,
    total_amount: Decimal,
    period_start: date,
    period_end: date,
    parent_id: Optional[int] = None,
    level: Optional[BudgetLevel] = None,
    currency: Optional[str] = None,
    company_id: Optional[int] = None,
    agreement_id: Optional[int] = None,
    status: BudgetStatus = BudgetStatus.ACTIVE,
    created_by: Optional[str] = None,
) -> dict[str, Any]:
    """
    Create a budget node and open its ledger.

    The opening balance is posted as an ADJUSTMENT so that the log alone
    reproduces the balance columns.
    """
    total_amount = to_decimal(total_amount)
    if total_amount is None or total_amount < ZERO:
        raise InvalidTransaction("total_amount must be zero or positive")
    if period_end < period_start:
        raise InvalidTransaction("period_end must not be before period_start")
    if status not in (BudgetStatus.DRAFT, BudgetStatus.ACTIVE):
        raise InvalidTransaction("A new budget is either DRAFT or ACTIVE", status=status)

    async with AsyncSessionLocal() as session:
        parent = None
        if parent_id is not None:
            parent = await get_scoped(session, Budget, parent_id, tenant_id)
            if parent.status == BudgetStatus.CLOSED:
                raise BudgetLocked(parent_id)
        currency = (currency or (parent.currency if parent else settings.default_currency)).upper()
        if round_money(total_amount, currency) != total_amount:
            raise InvalidTransaction(f"total_amount has more precision than {currency} allows")

        budget = Budget(
            tenant_id=tenant_id,
            parent_id=parent_id,
            level=level or (BudgetLevel.COMPANY if parent is None else BudgetLevel.DEPARTMENT),
            depth=parent.depth + 1 if parent else 0,
            name=name,
            company_id=company_id if company_id is not None else (parent.company_id if parent else None),
            agreement_id=agreement_id,
            currency=currency,
            total_amount=total_amount,
            allocated_amount=ZERO,
            spent_amount=ZERO,
            remaining_amount=total_amount,
            period_start=period_start,
            period_end=period_end,
            status=status,
            version=1,
        )
        session.add(budget)
        await session.flush()
        budget.path = f"{parent.path if parent else '/'}{budget.id}/"
        if status == BudgetStatus.ACTIVE and total_amount == ZERO:
            budget.status = BudgetStatus.DEPLETED

        session.add(
            BudgetTransaction(
                tenant_id=tenant_id,
                budget_id=budget.id,
                sequence=1,
                transaction_type=TransactionType.ADJUSTMENT,
                amount=total_amount,
                balance_after=total_amount,
                spent_after=ZERO,
                total_after=total_amount,
                source_type=TransactionSource.MANUAL,
                description="Opening balance",
                created_by=created_by,
            )
        )
        await commit_or_fail(session, "budget creation")
        logger.info(f"Created budget {budget.id} '{name}' ({total_amount} {currency})")
        return serialize_budget(budget)


async def get_budget(tenant_id: str, budget_id: int) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        budget = await get_scoped(session, Budget, budget_id, tenant_id)
        return serialize_budget(budget)


async def list_budgets(
    tenant_id: str,
    company_id: Optional[int] = None,
    status: Optional[BudgetStatus] = None,
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        query = select(Budget).where(Budget.tenant_id == tenant_id)
        if company_id is not None:
            query = query.where(Budget.company_id == company_id)
        if status is not None:
            query = query.where(Budget.status == status)
        result = await session.execute(query.order_by(Budget.path))
        return [serialize_budget(b) for b in result.scalars().all()]


async def get_budget_tree(tenant_id: str, budget_id: int) -> dict[str, Any]:
    """The budget with all of its descendants nested under ``children``."""
    async with AsyncSessionLocal() as session:
        root = await get_scoped(session, Budget, budget_id, tenant_id)
        result = await session.execute(
            select(Budget)
            .where(Budget.tenant_id == tenant_id, Budget.path.startswith(root.path))
            .order_by(Budget.depth, Budget.id)
        )
        nodes = {b.id: {**serialize_budget(b), "children": []} for b in result.scalars().all()}

    for node in nodes.values():
        if node["id"] != budget_id and node["parent_id"] in nodes:
            nodes[node["parent_id"]]["children"].append(node)
    return nodes[budget_id]


async def get_budget_summary(tenant_id: str, budget_id: int) -> dict[str, Any]:
    """
    Dashboard view of one budget node.

    Descendant figures are read through the materialized path, so the whole
    subtree is aggregated by a single query.
    """
    async with AsyncSessionLocal() as session:
        budget = await get_scoped(session, Budget, budget_id, tenant_id)
        result = await session.execute(
            select(
                func.count(Budget.id),
                func.coalesce(func.sum(Budget.spent_amount), 0),
            ).where(
                Budget.tenant_id == tenant_id,
                Budget.path.startswith(budget.path),
                Budget.id != budget.id,
            )
        )
        descendant_count, descendant_spend = result.one()
        result = await session.execute(
            select(func.count(Budget.id)).where(
                Budget.tenant_id == tenant_id, Budget.parent_id == budget.id
            )
        )
        children_count = result.scalar_one()

    return {
        "budget": serialize_budget(budget),
        "utilization": await get_budget_utilization(tenant_id, budget_id),
        "recent_transactions": await list_transactions(tenant_id, budget_id, limit=5),
        "active_alerts": await list_budget_alerts(tenant_id, budget_id, triggered_only=True),
        "children_count": children_count,
        "descendant_count": descendant_count,
        "total_descendant_spend": str(
            round_money(to_decimal(descendant_spend) or ZERO, budget.currency)
        ),
    }


async def get_consolidated_budgets(
    tenant_id: str, company_id: Optional[int] = None
) -> list[dict[str, Any]]:
    """
    Tenant-wide totals grouped by currency, tree level and status.

    Levels are never mixed in one group, so a parent's total is not added to
    the totals of the budgets carved out of it.
    """
    async with AsyncSessionLocal() as session:
        query = (
            select(
                Budget.currency,
                Budget.level,
                Budget.status,
                func.count(Budget.id),
                func.sum(Budget.total_amount),
                func.sum(Budget.allocated_amount),
                func.sum(Budget.spent_amount),
                func.sum(Budget.remaining_amount),
                func.min(Budget.period_start),
                func.max(Budget.period_end),
            )
            .where(Budget.tenant_id == tenant_id)
            .group_by(Budget.currency, Budget.level, Budget.status)
            .order_by(Budget.currency, Budget.level, Budget.status)
        )
        if company_id is not None:
            query = query.where(Budget.company_id == company_id)
        rows = (await session.execute(query)).all()

    groups = []
    for currency, level, status, count, total, allocated, spent, remaining, start, end in rows:
        total, allocated, spent, remaining = (
            round_money(to_decimal(value) or ZERO, currency)
            for value in (total, allocated, spent, remaining)
        )
        groups.append(
            {
                "currency": currency,
                "level": level.value,
                "status": status.value,
                "budget_count": count,
                "total_amount": str(total),
                "allocated_amount": str(allocated),
                "spent_amount": str(spent),
                "remaining_amount": str(remaining),
                "utilization_percentage": str(utilization_percentage(spent, total)),
                "earliest_start": start.isoformat(),
                "latest_end": end.isoformat(),
            }
        )
    return groups


async def get_budget_for_job(tenant_id: str, job_id: int) -> dict[str, Any]:
    """
    Whether agencies may submit to a job as far as its budget is concerned.

    Only the remaining amount is disclosed, never the budget's total.
    """
    async with AsyncSessionLocal() as session:
        job = await get_scoped(session, Job, job_id, tenant_id)
        if job.budget_id is None:
            return {
                "job_id": job.id,
                "has_budget": False,
                "budget_remaining": None,
                "can_submit_candidates": True,
                "message": None,
            }
        budget = await get_scoped(session, Budget, job.budget_id, tenant_id)
        blocking_ancestor = await _blocking_ancestor(session, budget)

    message = None
    if budget.status != BudgetStatus.ACTIVE:
        message = f"Budget is {budget.status.value}"
    elif budget.is_locked:
        message = "Budget is locked"
    elif blocking_ancestor is not None:
        message = f"Parent budget {blocking_ancestor} is locked or closed"
    elif budget.remaining_amount <= ZERO:
        message = "Budget is exhausted"

    return {
        "job_id": job.id,
        "has_budget": True,
        "budget_remaining": str(budget.remaining_amount),
        "can_submit_candidates": message is None,
        "message": message,
    }


# ==================== Posting ===================== #


def _no_blocked_ancestor(budget: Budget):
    ancestor_ids = [i for i in budget.ancestor_ids() if i != budget.id]
    if not ancestor_ids:
        return true()
    ancestor = aliased(Budget)
    return ~(
        select(ancestor.id)
        .where(
            ancestor.id.in_(ancestor_ids),
            or_(ancestor.is_locked.is_(True), ancestor.status == BudgetStatus.CLOSED),
        )
        .exists()
    )


async def _blocking_ancestor(session: AsyncSession, budget: Budget) -> Optional[int]:
    ancestor_ids = [i for i in budget.ancestor_ids() if i != budget.id]
    if not ancestor_ids:
        return None
    result = await session.execute(
        select(Budget.id)
        .where(
            Budget.id.in_(ancestor_ids),
            or_(Budget.is_locked.is_(True), Budget.status == BudgetStatus.CLOSED),
        )
        .order_by(Budget.depth)
        .limit(1)
    )
    return result.scalar_one_or_none()


def _posting_effect(
    budget: Budget,
    transaction_type: TransactionType,
    amount: Decimal,
    allocation_id: Optional[int],
) -> tuple[dict[str, Decimal], list]:
    """Balance deltas and UPDATE guards of one posting."""
    deltas = {"total": ZERO, "spent": ZERO, "allocated": ZERO}
    outgoing = transaction_type == TransactionType.DEDUCTION or (
        transaction_type == TransactionType.TRANSFER and amount < ZERO
    )

    if outgoing:
        charge = abs(amount)
        guards = [
            Budget.status == BudgetStatus.ACTIVE,
            Budget.is_locked.is_(False),
            Budget.remaining_amount >= charge,
            _no_blocked_ancestor(budget),
        ]
    elif transaction_type == TransactionType.TRANSFER:
        guards = [Budget.status != BudgetStatus.CLOSED, Budget.is_locked.is_(False)]
    else:
        guards = [Budget.status != BudgetStatus.CLOSED]

    if transaction_type == TransactionType.DEDUCTION:
        deltas["spent"] = amount
    elif transaction_type == TransactionType.REFUND:
        deltas["spent"] = -amount
        guards.append(Budget.spent_amount >= amount)
    elif transaction_type in (TransactionType.ADJUSTMENT, TransactionType.TRANSFER):
        deltas["total"] = amount
        if transaction_type == TransactionType.ADJUSTMENT:
            guards.append(Budget.remaining_amount + amount >= 0)
    elif transaction_type == TransactionType.ALLOCATION:
        deltas["allocated"] = amount
        guards.append(Budget.remaining_amount - Budget.allocated_amount >= amount)

    if allocation_id is not None and transaction_type in (
        TransactionType.DEDUCTION,
        TransactionType.REFUND,
    ):
        deltas["allocated"] = -deltas["spent"]
    return deltas, guards


async def _raise_refusal(
    session: AsyncSession,
    budget: Budget,
    transaction_type: TransactionType,
    amount: Decimal,
) -> None:
    """Work out why a guarded posting matched no row and raise accordingly."""
    await session.refresh(budget)
    outgoing = transaction_type == TransactionType.DEDUCTION or (
        transaction_type == TransactionType.TRANSFER and amount < ZERO
    )
    if budget.status == BudgetStatus.CLOSED:
        raise BudgetLocked(budget.id)
    if outgoing or transaction_type == TransactionType.TRANSFER:
        if budget.is_locked:
            raise BudgetLocked(budget.id)
    if outgoing:
        blocking = await _blocking_ancestor(session, budget)
        if blocking is not None:
            raise BudgetLocked(budget.id, blocking)
        if budget.remaining_amount < abs(amount):
            raise BudgetExceeded(budget.id, abs(amount), budget.remaining_amount)
        raise InvalidTransaction(
            f"Budget {budget.id} is {budget.status.value} and cannot be charged",
            budget_id=budget.id,
            status=budget.status,
        )
    if transaction_type == TransactionType.ALLOCATION:
        raise AllocationExceeded(
            budget.id,
            amount,
            budget.remaining_amount - budget.allocated_amount,
            "Allocation exceeds the budget's unallocated remaining amount",
        )
    if transaction_type == TransactionType.REFUND:
        raise InvalidTransaction(
            "Refund exceeds the spent amount",
            budget_id=budget.id,
            requested=amount,
            spent=budget.spent_amount,
        )
    raise BudgetExceeded(
        budget.id,
        -amount,
        budget.remaining_amount,
        "Adjustment would make the remaining amount negative",
    )


async def _apply_to_allocation(
    session: AsyncSession,
    budget_id: int,
    allocation_id: int,
    transaction_type: TransactionType,
    amount: Decimal,
) -> None:
    if transaction_type == TransactionType.DEDUCTION:
        guard = BudgetAllocation.remaining_amount >= amount
        spent_delta = amount
    else:
        guard = BudgetAllocation.spent_amount >= amount
        spent_delta = -amount

    result = await session.execute(
        update(BudgetAllocation)
        .where(
            BudgetAllocation.id == allocation_id,
            BudgetAllocation.budget_id == budget_id,
            BudgetAllocation.is_active.is_(True),
            guard,
        )
        .values(
            spent_amount=BudgetAllocation.spent_amount + spent_delta,
            remaining_amount=BudgetAllocation.remaining_amount - spent_delta,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    allocation = await session.get(BudgetAllocation, allocation_id)
    if allocation is None or allocation.budget_id != budget_id:
        raise NotFound("BudgetAllocation", allocation_id)
    await session.refresh(allocation)
    if not allocation.is_active:
        raise InvalidTransaction("Allocation is no longer active", allocation_id=allocation_id)
    if transaction_type == TransactionType.DEDUCTION:
        raise AllocationExceeded(
            budget_id,
            amount,
            allocation.remaining_amount,
            "Amount exceeds the allocation's remaining amount",
        )
    raise InvalidTransaction(
        "Refund exceeds the allocation's spent amount",
        allocation_id=allocation_id,
        requested=amount,
    )


def _threshold_reached(alert: BudgetAlert, spent: Decimal, total: Decimal) -> bool:
    if alert.threshold_percentage is not None:
        if utilization_percentage(spent, total) >= alert.threshold_percentage:
            return True
    if alert.threshold_amount is not None and spent >= alert.threshold_amount:
        return True
    return False


def _alert_payload(alert: BudgetAlert, budget: Budget) -> dict[str, Any]:
    return {
        "alert_id": alert.id,
        "budget_id": budget.id,
        "budget_name": budget.name,
        "severity": alert.severity.value,
        "utilization_percentage": str(
            utilization_percentage(budget.spent_amount, budget.total_amount)
        ),
        "spent_amount": str(budget.spent_amount),
        "total_amount": str(budget.total_amount),
        "currency": budget.currency,
        "message": alert.message,
    }


async def _trigger_alert(
    session: AsyncSession, alert: BudgetAlert, budget: Budget, at: datetime
) -> Optional[dict[str, Any]]:
    """Flip an alert to triggered unless a concurrent posting already did."""
    utilization = utilization_percentage(budget.spent_amount, budget.total_amount)
    message = (
        f"Budget '{budget.name}' is at {utilization}% utilization "
        f"({budget.spent_amount} of {budget.total_amount} {budget.currency} spent)"
    )
    result = await session.execute(
        update(BudgetAlert)
        .where(BudgetAlert.id == alert.id, BudgetAlert.is_triggered.is_(False))
        .values(
            is_triggered=True,
            triggered_at=at,
            resolved_at=None,
            message=message,
            last_notified_status="PENDING",
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    await session.refresh(alert)
    logger.warning(f"Budget alert {alert.id} triggered: {message}")
    return _alert_payload(alert, budget)


async def _evaluate_alerts(
    session: AsyncSession,
    budget: Budget,
    spent_before: Decimal,
    total_before: Decimal,
    at: datetime,
) -> list[dict[str, Any]]:
    """Trigger the alerts whose threshold this posting crossed going upward."""
    result = await session.execute(
        select(BudgetAlert).where(
            BudgetAlert.budget_id == budget.id, BudgetAlert.is_triggered.is_(False)
        )
    )
    triggered = []
    for alert in result.scalars().all():
        if not _threshold_reached(alert, budget.spent_amount, budget.total_amount):
            continue
        if _threshold_reached(alert, spent_before, total_before):
            continue
        payload = await _trigger_alert(session, alert, budget, at)
        if payload is not None:
            triggered.append(payload)
    return triggered


async def post_in_session(
    session: AsyncSession,
    tenant_id: str,
    budget_id: int,
    transaction_type: TransactionType,
    amount: Decimal,
    source_type: TransactionSource = TransactionSource.MANUAL,
    source_reference: Optional[str] = None,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
    allocation_id: Optional[int] = None,
    transfer_group: Optional[str] = None,
    counterparty_budget_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> tuple[BudgetTransaction, list[dict[str, Any]]]:
    """
    Apply one posting inside the caller's transaction.

    Nothing is committed here; the caller commits the posting together with
    whatever else belongs to the same unit of work. Returns the ledger entry
    and the payloads of alerts it triggered.

    Raises:
        BudgetExceeded: A charge exceeds the remaining amount
        BudgetLocked: The budget or an ancestor is locked or CLOSED
        AllocationExceeded: An allocation does not fit
        InvalidTransaction: The amount or budget state does not allow the posting
    """
    at = at or now()
    amount = to_decimal(amount)
    signed = transaction_type in (TransactionType.ADJUSTMENT, TransactionType.TRANSFER)
    if amount is None or amount == ZERO or (amount < ZERO and not signed):
        raise InvalidTransaction(
            f"Invalid {transaction_type.value} amount", amount=amount
        )

    budget = await get_scoped(session, Budget, budget_id, tenant_id)
    if round_money(amount, budget.currency) != amount:
        raise InvalidTransaction(
            f"Amount has more precision than {budget.currency} allows", amount=amount
        )
    spent_before, total_before = budget.spent_amount, budget.total_amount

    deltas, guards = _posting_effect(budget, transaction_type, amount, allocation_id)
    values: dict[str, Any] = {"version": Budget.version + 1, "updated_at": at}
    if deltas["total"]:
        values["total_amount"] = Budget.total_amount + deltas["total"]
    if deltas["spent"]:
        values["spent_amount"] = Budget.spent_amount + deltas["spent"]
    if deltas["total"] - deltas["spent"]:
        values["remaining_amount"] = Budget.remaining_amount + (deltas["total"] - deltas["spent"])
    if deltas["allocated"]:
        values["allocated_amount"] = Budget.allocated_amount + deltas["allocated"]

    result = await session.execute(
        update(Budget)
        .where(Budget.id == budget_id, Budget.tenant_id == tenant_id, *guards)
        .values(**values)
        .returning(Budget.version, Budget.remaining_amount, Budget.status)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        await _raise_refusal(session, budget, transaction_type, amount)
    sequence, remaining, status = row

    if remaining == ZERO and status == BudgetStatus.ACTIVE:
        await session.execute(
            update(Budget)
            .where(Budget.id == budget_id)
            .values(status=BudgetStatus.DEPLETED)
            .execution_options(synchronize_session=False)
        )
    elif remaining > ZERO and status == BudgetStatus.DEPLETED:
        await session.execute(
            update(Budget)
            .where(Budget.id == budget_id)
            .values(status=BudgetStatus.ACTIVE)
            .execution_options(synchronize_session=False)
        )

    if allocation_id is not None and transaction_type in (
        TransactionType.DEDUCTION,
        TransactionType.REFUND,
    ):
        await _apply_to_allocation(session, budget_id, allocation_id, transaction_type, amount)

    await session.refresh(budget)
    transaction = BudgetTransaction(
        tenant_id=tenant_id,
        budget_id=budget_id,
        sequence=sequence,
        transaction_type=transaction_type,
        amount=amount,
        balance_after=budget.remaining_amount,
        spent_after=budget.spent_amount,
        total_after=budget.total_amount,
        source_type=source_type,
        source_reference=source_reference,
        allocation_id=allocation_id,
        transfer_group=transfer_group,
        counterparty_budget_id=counterparty_budget_id,
        description=description,
        created_by=created_by,
        created_at=at,
    )
    session.add(transaction)
    await session.flush()

    triggered = await _evaluate_alerts(session, budget, spent_before, total_before, at)
    logger.info(
        f"Budget {budget_id} #{sequence}: {transaction_type.value} {amount} "
        f"-> remaining {budget.remaining_amount}"
    )
    return transaction, triggered


async def post_budget_transaction(
    tenant_id: str,
    budget_id: int,
    transaction_type: TransactionType,
    amount: Decimal,
    source_type: TransactionSource = TransactionSource.MANUAL,
    source_reference: Optional[str] = None,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
    allocation_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Post a DEDUCTION, REFUND or ADJUSTMENT.

    Transfers and allocations have their own operations because they touch
    more than one ledger row.
    """
    if transaction_type in (TransactionType.TRANSFER, TransactionType.ALLOCATION):
        raise InvalidTransaction(
            f"Use the {transaction_type.value.lower()} operation for this posting"
        )

    async with AsyncSessionLocal() as session:
        transaction, triggered = await post_in_session(
            session,
            tenant_id,
            budget_id,
            transaction_type,
            amount,
            source_type=source_type,
            source_reference=source_reference,
            description=description,
            created_by=created_by,
            allocation_id=allocation_id,
            at=at,
        )
        await commit_or_fail(session, f"budget {transaction_type.value.lower()}")
        data = serialize_transaction(transaction)

    enqueue_budget_alerts(tenant_id, triggered)
    return data


async def transfer(
    tenant_id: str,
    from_budget_id: int,
    to_budget_id: int,
    amount: Decimal,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
    at: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Move budget from one node to another as one atomic pair of postings.

    The outgoing side is guarded like a deduction; either both entries are
    written or neither is.
    """
    amount = to_decimal(amount)
    if amount is None or amount <= ZERO:
        raise InvalidTransaction("Transfer amount must be positive", amount=amount)
    if from_budget_id == to_budget_id:
        raise InvalidTransaction("Cannot transfer a budget to itself")

    group = str(uuid.uuid4())
    async with AsyncSessionLocal() as session:
        source = await get_scoped(session, Budget, from_budget_id, tenant_id)
        target = await get_scoped(session, Budget, to_budget_id, tenant_id)
        if source.currency != target.currency:
            raise InvalidTransaction(
                "Transfers between budgets in different currencies are not supported",
                from_currency=source.currency,
                to_currency=target.currency,
            )

        sides = {
            from_budget_id: (-amount, to_budget_id),
            to_budget_id: (amount, from_budget_id),
        }
        entries, triggered = {}, []
        # Lower id first so opposing transfers take row locks in the same order
        for budget_id in sorted(sides):
            signed, counterparty = sides[budget_id]
            entries[budget_id], fired = await post_in_session(
                session,
                tenant_id,
                budget_id,
                TransactionType.TRANSFER,
                signed,
                source_type=TransactionSource.TRANSFER,
                source_reference=f"transfer:{group}",
                description=description,
                created_by=created_by,
                transfer_group=group,
                counterparty_budget_id=counterparty,
                at=at,
            )
            triggered.extend(fired)

        await commit_or_fail(session, "budget transfer")
        result = {
            "transfer_group": group,
            "amount": str(amount),
            "debit": serialize_transaction(entries[from_budget_id]),
            "credit": serialize_transaction(entries[to_budget_id]),
        }

    enqueue_budget_alerts(tenant_id, triggered)
    logger.info(f"Transferred {amount} from budget {from_budget_id} to {to_budget_id}")
    return result


async def list_transactions(
    tenant_id: str,
    budget_id: int,
    transaction_type: Optional[TransactionType] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Budget, budget_id, tenant_id)
        query = select(BudgetTransaction).where(BudgetTransaction.budget_id == budget_id)
        if transaction_type is not None:
            query = query.where(BudgetTransaction.transaction_type == transaction_type)
        result = await session.execute(
            query.order_by(BudgetTransaction.sequence.desc()).limit(limit).offset(offset)
        )
        return [serialize_transaction(t) for t in result.scalars().all()]


# ==================== Allocations ===================== #


async def create_allocation(
    tenant_id: str,
    budget_id: int,
    target_type: AllocationTarget,
    target_id: int,
    amount: Decimal,
    created_by: Optional[str] = None,
) -> dict[str, Any]:
    """
    Earmark part of a budget for a target.

    Checked once, against the budget's unallocated remaining amount at
    creation; later deductions on the budget do not re-check allocations.
    """
    amount = to_decimal(amount)
    if amount is None or amount <= ZERO:
        raise InvalidTransaction("Allocation amount must be positive", amount=amount)

    async with AsyncSessionLocal() as session:
        await get_scoped(session, Budget, budget_id, tenant_id)
        allocation = BudgetAllocation(
            tenant_id=tenant_id,
            budget_id=budget_id,
            target_type=target_type,
            target_id=target_id,
            allocated_amount=amount,
            spent_amount=ZERO,
            remaining_amount=amount,
        )
        try:
            async with session.begin_nested():
                session.add(allocation)
                await session.flush()
        except IntegrityError:
            raise InvalidTransaction(
                "Budget already has an allocation for this target",
                budget_id=budget_id,
                target_type=target_type,
                target_id=target_id,
            )

        await post_in_session(
            session,
            tenant_id,
            budget_id,
            TransactionType.ALLOCATION,
            amount,
            source_type=TransactionSource.ALLOCATION,
            source_reference=f"{target_type.value.lower()}:{target_id}",
            created_by=created_by,
            allocation_id=allocation.id,
        )
        await commit_or_fail(session, "budget allocation")
        logger.info(
            f"Allocated {amount} of budget {budget_id} to {target_type.value} {target_id}"
        )
        return serialize_allocation(allocation)


async def list_allocations(tenant_id: str, budget_id: int) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Budget, budget_id, tenant_id)
        result = await session.execute(
            select(BudgetAllocation)
            .where(BudgetAllocation.budget_id == budget_id)
            .order_by(BudgetAllocation.id)
        )
        return [serialize_allocation(a) for a in result.scalars().all()]


# ==================== Alerts ===================== #


async def create_budget_alert(
    tenant_id: str,
    budget_id: int,
    threshold_percentage: Optional[Decimal] = None,
    threshold_amount: Optional[Decimal] = None,
    severity: AlertSeverity = AlertSeverity.WARNING,
) -> dict[str, Any]:
    """
    Add a threshold alert to a budget.

    A budget that is already past the threshold triggers the alert at once.
    """
    if threshold_percentage is None and threshold_amount is None:
        raise InvalidTransaction("An alert needs a percentage or an amount threshold")

    at = now()
    async with AsyncSessionLocal() as session:
        budget = await get_scoped(session, Budget, budget_id, tenant_id)
        alert = BudgetAlert(
            tenant_id=tenant_id,
            budget_id=budget_id,
            threshold_percentage=to_decimal(threshold_percentage),
            threshold_amount=to_decimal(threshold_amount),
            severity=severity,
        )
        session.add(alert)
        await session.flush()

        triggered = []
        if _threshold_reached(alert, budget.spent_amount, budget.total_amount):
            payload = await _trigger_alert(session, alert, budget, at)
            if payload is not None:
                triggered.append(payload)
        await commit_or_fail(session, "budget alert creation")
        data = serialize_alert(alert)

    enqueue_budget_alerts(tenant_id, triggered)
    return data


async def list_budget_alerts(
    tenant_id: str, budget_id: int, triggered_only: bool = False
) -> list[dict[str, Any]]:
    async with AsyncSessionLocal() as session:
        await get_scoped(session, Budget, budget_id, tenant_id)
        query = select(BudgetAlert).where(BudgetAlert.budget_id == budget_id)
        if triggered_only:
            query = query.where(BudgetAlert.is_triggered.is_(True))
        result = await session.execute(query.order_by(BudgetAlert.id))
        return [serialize_alert(a) for a in result.scalars().all()]


async def resolve_budget_alert(tenant_id: str, alert_id: int) -> dict[str, Any]:
    """Reset a triggered alert; it fires again only on a new upward crossing."""
    async with AsyncSessionLocal() as session:
        alert = await get_scoped(session, BudgetAlert, alert_id, tenant_id)
        result = await session.execute(
            update(BudgetAlert)
            .where(BudgetAlert.id == alert_id, BudgetAlert.is_triggered.is_(True))
            .values(is_triggered=False, resolved_at=now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransaction("Alert is not triggered", alert_id=alert_id)
        await commit_or_fail(session, "budget alert resolution")
        await session.refresh(alert)
        return serialize_alert(alert)


async def mark_alert_notified(alert_id: int, delivery_status: str) -> None:
    """Record the outcome of handing a triggered alert to the notifier."""
    async with AsyncSessionLocal() as session:
        await session.execute(
            update(BudgetAlert)
            .where(BudgetAlert.id == alert_id)
            .values(last_notified_status=delivery_status)
            .execution_options(synchronize_session=False)
        )
        await commit_or_fail(session, "budget alert notification status")


# ==================== Status & Locking ===================== #


async def _set_state(
    tenant_id: str,
    budget_id: int,
    action: str,
    guards: list,
    values: dict[str, Any],
) -> dict[str, Any]:
    async with AsyncSessionLocal() as session:
        budget = await get_scoped(session, Budget, budget_id, tenant_id)
        result = await session.execute(
            update(Budget)
            .where(Budget.id == budget_id, *guards)
            .values(**values, updated_at=now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransaction(
                f"Cannot {action} budget {budget_id} in status {budget.status.value}",
                budget_id=budget_id,
                status=budget.status,
                is_locked=budget.is_locked,
            )
        await commit_or_fail(session, f"budget {action}")
        await session.refresh(budget)
        logger.info(f"Budget {budget_id}: {action}")
        return serialize_budget(budget)


async def lock_budget(
    tenant_id: str, budget_id: int, reason: Optional[str] = None
) -> dict[str, Any]:
    """Stop deductions on the budget and every budget below it."""
    return await _set_state(
        tenant_id,
        budget_id,
        "lock",
        [Budget.is_locked.is_(False)],
        {"is_locked": True, "locked_at": now(), "lock_reason": reason},
    )


async def unlock_budget(tenant_id: str, budget_id: int) -> dict[str, Any]:
    return await _set_state(
        tenant_id,
        budget_id,
        "unlock",
        [Budget.is_locked.is_(True)],
        {"is_locked": False, "locked_at": None, "lock_reason": None},
    )


async def activate_budget(tenant_id: str, budget_id: int) -> dict[str, Any]:
    return await _set_state(
        tenant_id,
        budget_id,
        "activate",
        [
            Budget.status.in_([BudgetStatus.DRAFT, BudgetStatus.PAUSED]),
            Budget.remaining_amount > ZERO,
        ],
        {"status": BudgetStatus.ACTIVE},
    )


async def pause_budget(tenant_id: str, budget_id: int) -> dict[str, Any]:
    return await _set_state(
        tenant_id,
        budget_id,
        "pause",
        [Budget.status == BudgetStatus.ACTIVE],
        {"status": BudgetStatus.PAUSED},
    )


async def close_budget(tenant_id: str, budget_id: int) -> dict[str, Any]:
    """Close a budget for good; its descendants can no longer be charged."""
    return await _set_state(
        tenant_id,
        budget_id,
        "close",
        [Budget.status != BudgetStatus.CLOSED],
        {"status": BudgetStatus.CLOSED},
    )


# ==================== Reporting ===================== #


async def get_budget_utilization(
    tenant_id: str, budget_id: int, as_of: Optional[date] = None
) -> dict[str, Any]:
    """
    Utilization figures of a budget.

    The burn rate is net spend (deductions less refunds) per elapsed day of
    the budget period; ``days_remaining`` extrapolates it over the remaining
    amount and is None while nothing has been spent.
    """
    as_of = as_of or now().date()
    async with AsyncSessionLocal() as session:
        budget = await get_scoped(session, Budget, budget_id, tenant_id)
        result = await session.execute(
            select(
                func.count(BudgetTransaction.id),
                func.max(BudgetTransaction.created_at),
            ).where(
                BudgetTransaction.budget_id == budget_id,
                BudgetTransaction.transaction_type == TransactionType.DEDUCTION,
            )
        )
        deduction_count, last_deduction_at = result.one()

    elapsed_days = max(1, days_between(budget.period_start, min(as_of, budget.period_end)) + 1)
    burn_rate = round_money(budget.spent_amount / Decimal(elapsed_days), budget.currency)
    days_remaining = None
    if burn_rate > ZERO:
        days_remaining = int(budget.remaining_amount / burn_rate)

    return {
        "budget_id": budget.id,
        "currency": budget.currency,
        "total_amount": str(budget.total_amount),
        "allocated_amount": str(budget.allocated_amount),
        "spent_amount": str(budget.spent_amount),
        "remaining_amount": str(budget.remaining_amount),
        "percentage": str(utilization_percentage(budget.spent_amount, budget.total_amount)),
        "is_over_budget": budget.total_amount > ZERO and budget.spent_amount >= budget.total_amount,
        "burn_rate": str(burn_rate),
        "days_remaining": days_remaining,
        "deduction_count": deduction_count,
        "last_deduction_at": last_deduction_at.isoformat() if last_deduction_at else None,
        "status": budget.status.value,
    }


def replay(transactions: list[BudgetTransaction]) -> dict[str, Decimal]:
    """Balances implied by a budget's ledger, oldest entry first."""
    total = spent = allocated = ZERO
    for t in transactions:
        if t.transaction_type in (TransactionType.ADJUSTMENT, TransactionType.TRANSFER):
            total += t.amount
        elif t.transaction_type == TransactionType.DEDUCTION:
            spent += t.amount
            if t.allocation_id is not None:
                allocated -= t.amount
        elif t.transaction_type == TransactionType.REFUND:
            spent -= t.amount
            if t.allocation_id is not None:
                allocated += t.amount
        elif t.transaction_type == TransactionType.ALLOCATION:
            allocated += t.amount
    return {
        "total_amount": total,
        "spent_amount": spent,
        "remaining_amount": total - spent,
        "allocated_amount": allocated,
    }


async def reconcile_budget(tenant_id: str, budget_id: int) -> dict[str, Any]:
    """Rebuild the balances from the ledger and compare them with the budget row."""
    async with AsyncSessionLocal() as session:
        budget = await get_scoped(session, Budget, budget_id, tenant_id)
        result = await session.execute(
            select(BudgetTransaction)
            .where(BudgetTransaction.budget_id == budget_id)
            .order_by(BudgetTransaction.sequence)
        )
        transactions = list(result.scalars().all())

    expected = replay(transactions)
    actual = {field: getattr(budget, field) for field in expected}
    mismatches = [f for f in expected if expected[f] != actual[f]]
    sequences = [t.sequence for t in transactions]
    gapless = sequences == list(range(1, len(sequences) + 1))
    if sequences and sequences[-1] != budget.version:
        mismatches.append("version")
    if mismatches or not gapless:
        logger.error(f"Budget {budget_id} does not reconcile with its ledger: {mismatches}")

    return {
        "budget_id": budget_id,
        "consistent": not mismatches and gapless,
        "transactions": len(transactions),
        "gapless": gapless,
        "mismatches": mismatches,
        "expected": {k: str(v) for k, v in expected.items()},
        "actual": {k: str(v) for k, v in actual.items()},
    }
