# SPDX-License-Identifier: Apache-2.0

"""
Loan repayment ledger.

Tracks repayments against a disbursed loan with the same record-then-validate
pattern as cotisations: recorded repayments wait in `pending` and only
validated ones reduce the outstanding balance. Installment k of a loan is due
k installment periods after disbursement.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from ..models.entities import Association, DomainEvent, ExpenseRequest, Member, Repayment, Section
from ..models.enums import EventType, ExpenseStatus, RepaymentStatus
from ..models.requests import RecordRepaymentPayload
from .organization import authority_tier, find_member
from .results import OperationResult


INSTALLMENT_PERIOD_DAYS = 30

ZERO = Decimal("0")
CENT = Decimal("0.01")
RATIO = Decimal("0.0001")


@dataclass
class LedgerSummary:
    """Balance of one loan."""
    total_due: Decimal
    accrued_interest: Decimal
    total_repaid: Decimal
    pending_total: Decimal
    outstanding: Decimal
    progress: Decimal
    validated_count: int = 0
    pending_count: int = 0
    penalties_paid: Decimal = ZERO

    @property
    def is_settled(self) -> bool:
        return self.outstanding <= 0


@dataclass
class LedgerUpdate:
    """Write set of a ledger operation."""
    repayment: Repayment
    ledger: List[Repayment]
    summary: LedgerSummary


@dataclass
class ScheduledInstallment:
    """One expected installment of a loan."""
    number: int
    due_date: date
    amount: Decimal
    principal: Decimal
    interest: Decimal


@dataclass
class LoanLateness:
    """Lateness of a loan against its schedule."""
    days_late: int = 0
    next_installment: Optional[int] = None
    next_due_date: Optional[date] = None
    overdue_installments: int = 0

    @property
    def is_late(self) -> bool:
        return self.days_late > 0


@dataclass
class PortfolioSummary:
    """Loan dashboard indicators."""
    loans_count: int = 0
    active_loans: int = 0
    settled_loans: int = 0
    late_loans: int = 0
    total_lent: Decimal = ZERO
    total_due: Decimal = ZERO
    total_repaid: Decimal = ZERO
    total_outstanding: Decimal = ZERO
    loan_ids_late: List[str] = field(default_factory=list)

    @property
    def repayment_rate(self) -> Decimal:
        if self.total_due <= 0:
            return ZERO
        return (self.total_repaid * 100 / self.total_due).quantize(CENT, rounding=ROUND_HALF_UP)


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _today(now: Union[date, datetime]) -> date:
    return now.date() if isinstance(now, datetime) else now


def _loan_entries(loan: ExpenseRequest, ledger: Iterable[Repayment]) -> List[Repayment]:
    return [r for r in ledger if r.expense_request_id == loan.id]


# ============================================================
# LOAN ARITHMETIC
# ============================================================

def accrued_interest(loan: ExpenseRequest) -> Decimal:
    """
    Simple interest over the full term of a loan.

    amount x annual rate x duration in years. Zero when the loan carries no
    rate or no duration.
    """
    terms = loan.loan_terms
    if not loan.is_loan or terms is None or not terms.interest_rate or not terms.duration_months:
        return ZERO
    return _money(loan.amount_requested * terms.interest_rate / 100 * Decimal(terms.duration_months) / 12)


def compute_monthly_payment(amount: Decimal, duration_months: int, interest_rate: Decimal = ZERO) -> Decimal:
    """
    Installment amount repaying principal and simple interest in equal parts.

    Args:
        amount: Principal lent
        duration_months: Number of monthly installments
        interest_rate: Annual rate in percent

    Returns:
        Installment rounded to the cent, zero for a non-positive duration
    """
    if duration_months <= 0:
        return ZERO
    interest = amount * Decimal(interest_rate) / 100 * Decimal(duration_months) / 12
    return _money((amount + interest) / duration_months)


def origination_date(loan: ExpenseRequest) -> Optional[date]:
    """Disbursement date of a loan, None while it is not paid out."""
    return loan.paid_at.date() if loan.paid_at else None


def installment_due_date(loan: ExpenseRequest, installment_number: int,
                         period_days: int = INSTALLMENT_PERIOD_DAYS) -> Optional[date]:
    origin = origination_date(loan)
    if origin is None:
        return None
    return origin + timedelta(days=installment_number * period_days)


def build_repayment_schedule(loan: ExpenseRequest,
                             period_days: int = INSTALLMENT_PERIOD_DAYS) -> List[ScheduledInstallment]:
    """
    Expected installments of a disbursed loan.

    The total due is split in equal parts; the last installment absorbs the
    rounding difference so the schedule sums exactly to the total due.
    """
    terms = loan.loan_terms
    origin = origination_date(loan)
    if not loan.is_loan or terms is None or not terms.duration_months or origin is None:
        return []

    count = terms.duration_months
    interest_total = accrued_interest(loan)
    principal_part = _money(loan.amount_requested / count)
    interest_part = _money(interest_total / count)

    schedule = []
    for number in range(1, count + 1):
        if number == count:
            principal = loan.amount_requested - principal_part * (count - 1)
            interest = interest_total - interest_part * (count - 1)
        else:
            principal, interest = principal_part, interest_part
        schedule.append(ScheduledInstallment(
            number=number,
            due_date=origin + timedelta(days=number * period_days),
            amount=principal + interest,
            principal=principal,
            interest=interest
        ))
    return schedule


def compute_outstanding(loan: ExpenseRequest, ledger: Iterable[Repayment]) -> LedgerSummary:
    """
    Compute the balance of a loan.

    Only validated repayments count as repaid; pending ones are reported
    apart. Penalties are tracked separately and never reduce the balance.

    Args:
        loan: Loan request
        ledger: Repayments recorded so far

    Returns:
        LedgerSummary with outstanding balance and progress in [0, 1]
    """
    interest = accrued_interest(loan)
    total_due = loan.amount_requested + interest

    summary = LedgerSummary(
        total_due=total_due,
        accrued_interest=interest,
        total_repaid=ZERO,
        pending_total=ZERO,
        outstanding=total_due,
        progress=ZERO
    )
    for repayment in _loan_entries(loan, ledger):
        if repayment.status == RepaymentStatus.VALIDATED:
            summary.total_repaid += repayment.amount
            summary.penalties_paid += repayment.penalty_amount
            summary.validated_count += 1
        elif repayment.status == RepaymentStatus.PENDING:
            summary.pending_total += repayment.amount
            summary.pending_count += 1

    summary.outstanding = max(ZERO, total_due - summary.total_repaid)
    if total_due > 0:
        ratio = summary.total_repaid / total_due
        summary.progress = min(Decimal(1), max(ZERO, ratio)).quantize(RATIO, rounding=ROUND_HALF_UP)
    return summary


def compute_loan_lateness(loan: ExpenseRequest, ledger: Iterable[Repayment], now: Union[date, datetime],
                          period_days: int = INSTALLMENT_PERIOD_DAYS) -> LoanLateness:
    """
    Days late of the earliest installment not covered by validated repayments.

    Validated repayments cover installments in order, whatever installment
    number they were recorded against.
    """
    schedule = build_repayment_schedule(loan, period_days)
    if not schedule:
        return LoanLateness()

    today = _today(now)
    covered = compute_outstanding(loan, ledger).total_repaid
    lateness = LoanLateness()
    cumulative = ZERO
    for installment in schedule:
        cumulative += installment.amount
        if cumulative <= covered:
            continue
        if lateness.next_installment is None:
            lateness.next_installment = installment.number
            lateness.next_due_date = installment.due_date
            lateness.days_late = max(0, (today - installment.due_date).days)
        if installment.due_date < today:
            lateness.overdue_installments += 1
    return lateness


# ============================================================
# TWO-PHASE REPAYMENTS
# ============================================================

def _split(loan: ExpenseRequest, payload: RecordRepaymentPayload) -> Tuple[Decimal, Decimal]:
    """Principal and interest shares of a repayment."""
    if payload.principal_amount is not None and payload.interest_amount is not None:
        return payload.principal_amount, payload.interest_amount
    if payload.principal_amount is not None:
        return payload.principal_amount, payload.amount - payload.principal_amount
    if payload.interest_amount is not None:
        return payload.amount - payload.interest_amount, payload.interest_amount

    interest_total = accrued_interest(loan)
    total_due = loan.amount_requested + interest_total
    interest = _money(payload.amount * interest_total / total_due) if total_due > 0 else ZERO
    return payload.amount - interest, interest


def record_repayment(loan: ExpenseRequest, ledger: Iterable[Repayment], payload: RecordRepaymentPayload,
                     recorder: Member, now: datetime,
                     period_days: int = INSTALLMENT_PERIOD_DAYS) -> OperationResult:
    """
    Record a repayment against a disbursed loan (phase 1).

    Args:
        loan: Loan request, must be paid out
        ledger: Repayments recorded so far
        payload: Repayment data
        recorder: Member recording the repayment
        now: Injected engine time
        period_days: Days between installments

    Returns:
        OperationResult with a LedgerUpdate and a repayment_recorded event
    """
    ledger = _loan_entries(loan, ledger)

    if not loan.is_loan:
        return OperationResult.violation("Repayments can only be recorded against a loan")
    if loan.status != ExpenseStatus.PAID:
        return OperationResult.violation("Loan has not been disbursed")
    if recorder.association_id != loan.association_id or not recorder.is_active():
        return OperationResult.forbidden("Only active members of the association can record repayments")

    reference = payload.manual_reference.strip()
    errors = []
    if payload.amount <= 0:
        errors.append("Amount must be greater than 0")
    if payload.penalty_amount < 0:
        errors.append("Penalty amount cannot be negative")
    if not reference:
        errors.append("Manual reference is required")
    elif any(r.manual_reference.lower() == reference.lower() for r in ledger):
        errors.append(f"Manual reference '{reference}' is already used for this loan")
    if errors:
        return OperationResult.invalid("Invalid repayment", errors)

    summary = compute_outstanding(loan, ledger)
    if payload.amount > summary.outstanding:
        return OperationResult.invalid(
            "Repayment exceeds the outstanding balance",
            [f"outstanding: {summary.outstanding}", f"amount: {payload.amount}"]
        )

    installment = payload.installment_number
    if installment is None:
        installment = sum(1 for r in ledger if r.status != RepaymentStatus.REJECTED) + 1
    due_date = installment_due_date(loan, installment, period_days)
    principal, interest = _split(loan, payload)

    try:
        repayment = Repayment(
            association_id=loan.association_id,
            expense_request_id=loan.id,
            amount=payload.amount,
            principal_amount=principal,
            interest_amount=interest,
            penalty_amount=payload.penalty_amount,
            payment_date=payload.payment_date,
            due_date=due_date,
            installment_number=installment,
            days_late=max(0, (payload.payment_date - due_date).days),
            payment_method=payload.payment_method,
            manual_reference=reference,
            recorded_by=recorder.id,
            notes=payload.notes,
            created_at=now,
            updated_at=now
        )
    except PydanticValidationError as e:
        return OperationResult.from_pydantic(e, "Invalid repayment")

    updated_ledger = [*ledger, repayment]
    event = DomainEvent(
        type=EventType.REPAYMENT_RECORDED,
        association_id=loan.association_id,
        aggregate_id=repayment.id,
        occurred_at=now,
        payload={
            "loan_id": loan.id,
            "amount": repayment.amount,
            "installment_number": installment,
            "days_late": repayment.days_late,
            "recorded_by": recorder.id,
        }
    )
    update = LedgerUpdate(
        repayment=repayment,
        ledger=updated_ledger,
        summary=compute_outstanding(loan, updated_ledger)
    )
    return OperationResult.ok(update, [event])


def validate_repayment(loan: ExpenseRequest, ledger: Iterable[Repayment], repayment_id: str,
                       association: Association, roster: Iterable[Member], validator: Member,
                       approve: bool, reason: Optional[str], now: datetime,
                       section: Optional[Section] = None) -> OperationResult:
    """
    Confirm or reject a pending repayment (phase 2).

    The outstanding bound is checked again against the current ledger, so two
    repayments recorded concurrently cannot together overpay the loan. The
    validator needs approval authority over the loan's scope and must differ
    from the recorder.
    """
    ledger = _loan_entries(loan, ledger)
    repayment = next((r for r in ledger if r.id == repayment_id), None)
    if repayment is None:
        return OperationResult.violation(f"Repayment '{repayment_id}' is not part of this loan")
    if repayment.status != RepaymentStatus.PENDING:
        return OperationResult.violation(f"Repayment is already {repayment.status.value}")
    if loan.association_id != association.id:
        return OperationResult.violation("Loan belongs to another association")

    current = find_member(roster, validator.id)
    if current is None or authority_tier(current, association, loan.section_id, section) is None:
        return OperationResult.forbidden("Validator has no authority over this loan")
    if current.id == repayment.recorded_by:
        return OperationResult.forbidden("A repayment cannot be validated by the member who recorded it")

    if not approve:
        if not reason or not reason.strip():
            return OperationResult.invalid("A reason is required to reject a repayment")
        rejected = repayment.evolve(
            now,
            status=RepaymentStatus.REJECTED,
            validator_id=current.id,
            rejection_reason=reason.strip()
        )
        updated_ledger = [rejected if r.id == repayment.id else r for r in ledger]
        event = DomainEvent(
            type=EventType.REPAYMENT_REJECTED,
            association_id=association.id,
            aggregate_id=repayment.id,
            occurred_at=now,
            payload={"loan_id": loan.id, "amount": repayment.amount, "reason": reason.strip()}
        )
        return OperationResult.ok(
            LedgerUpdate(rejected, updated_ledger, compute_outstanding(loan, updated_ledger)),
            [event]
        )

    before = compute_outstanding(loan, ledger)
    if repayment.amount > before.outstanding:
        return OperationResult.violation(
            "Repayment exceeds the outstanding balance",
            [f"outstanding: {before.outstanding}", f"amount: {repayment.amount}"]
        )

    validated = repayment.evolve(now, status=RepaymentStatus.VALIDATED, validator_id=current.id)
    updated_ledger = [validated if r.id == repayment.id else r for r in ledger]
    after = compute_outstanding(loan, updated_ledger)

    events = [DomainEvent(
        type=EventType.REPAYMENT_VALIDATED,
        association_id=association.id,
        aggregate_id=repayment.id,
        occurred_at=now,
        payload={
            "loan_id": loan.id,
            "amount": repayment.amount,
            "penalty_amount": repayment.penalty_amount,
            "outstanding": after.outstanding,
            "validator_id": current.id,
        }
    )]
    if after.is_settled:
        events.append(DomainEvent(
            type=EventType.LOAN_SETTLED,
            association_id=association.id,
            aggregate_id=loan.id,
            occurred_at=now,
            payload={"total_repaid": after.total_repaid, "penalties_paid": after.penalties_paid}
        ))
    return OperationResult.ok(LedgerUpdate(validated, updated_ledger, after), events)


def summarize_loan_portfolio(loans_with_ledgers: Iterable[Tuple[ExpenseRequest, Iterable[Repayment]]],
                             now: Union[date, datetime],
                             period_days: int = INSTALLMENT_PERIOD_DAYS) -> PortfolioSummary:
    """Aggregate indicators over disbursed loans."""
    portfolio = PortfolioSummary()
    for loan, ledger in loans_with_ledgers:
        if not loan.is_loan or loan.status != ExpenseStatus.PAID:
            continue
        ledger = list(ledger)
        summary = compute_outstanding(loan, ledger)
        portfolio.loans_count += 1
        portfolio.total_lent += loan.amount_requested
        portfolio.total_due += summary.total_due
        portfolio.total_repaid += summary.total_repaid
        portfolio.total_outstanding += summary.outstanding

        if summary.is_settled:
            portfolio.settled_loans += 1
            continue
        portfolio.active_loans += 1
        if compute_loan_lateness(loan, ledger, now, period_days).is_late:
            portfolio.late_loans += 1
            portfolio.loan_ids_late.append(loan.id)
    return portfolio
