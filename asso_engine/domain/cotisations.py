# SPDX-License-Identifier: Apache-2.0

"""
Cotisation status engine.

Single source of truth for dues status: per-period status from the amount
paid, due day and grace period, the member-level aggregate, and the
two-phase (record, then validate) handling of manual payments.

Time is always injected. `now` may be a date or a datetime in the
association's local time; statuses only depend on its calendar day.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from ..models.entities import (
    Association, CotisationRecord, CotisationSettings, DomainEvent, Member, Section
)
from ..models.enums import CotisationStatus, EventType, MemberCotisationStatus, Permission
from ..models.requests import RecordCotisationPayload
from .organization import authority_tier, member_type_exists
from .permissions import check_permission
from .results import OperationResult


VERY_LATE_AFTER_DAYS = 30
DEFAULT_STATUS_WINDOW_MONTHS = 12

ZERO = Decimal("0")
CENT = Decimal("0.01")

Moment = Union[date, datetime]

_SEVERITY = {
    MemberCotisationStatus.UPTODATE: 0,
    MemberCotisationStatus.LATE: 1,
    MemberCotisationStatus.VERY_LATE: 2,
}


@dataclass
class CotisationStatusResult:
    """Derived status of one cotisation period."""
    status: CotisationStatus
    days_since_deadline: int
    deadline: date
    outstanding_amount: Decimal
    late_fee: Decimal = ZERO


@dataclass
class MemberCotisationSummary:
    """Aggregate dues status of a member over recent periods."""
    status: MemberCotisationStatus
    periods_considered: int = 0
    paid_periods: int = 0
    pending_periods: int = 0
    late_periods: int = 0
    very_late_periods: int = 0
    total_expected: Decimal = ZERO
    total_paid: Decimal = ZERO
    arrears: Decimal = ZERO
    worst_period: Optional[Tuple[int, int]] = None


@dataclass
class CotisationValidation:
    """Write set of a cotisation validation."""
    record: CotisationRecord
    member: Member


@dataclass
class BreakdownStats:
    """Collection statistics for one slice of the roster."""
    members_count: int = 0
    expected_amount: Decimal = ZERO
    collected_amount: Decimal = ZERO

    @property
    def collection_rate(self) -> Decimal:
        return _rate(self.collected_amount, self.expected_amount)


@dataclass
class CotisationKPIs:
    """Dashboard indicators for one period."""
    total_expected: Decimal = ZERO
    total_collected: Decimal = ZERO
    total_pending: Decimal = ZERO
    members_count: int = 0
    status_counts: Dict[CotisationStatus, int] = field(
        default_factory=lambda: {status: 0 for status in CotisationStatus}
    )
    by_section: Dict[Optional[str], BreakdownStats] = field(default_factory=dict)
    by_member_type: Dict[str, BreakdownStats] = field(default_factory=dict)

    @property
    def collection_rate(self) -> Decimal:
        return _rate(self.total_collected, self.total_expected)


def _rate(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO
    return (part * 100 / whole).quantize(CENT, rounding=ROUND_HALF_UP)


def _as_datetime(moment: Moment) -> datetime:
    if isinstance(moment, datetime):
        return moment.replace(tzinfo=None) if moment.tzinfo is not None else moment
    return datetime.combine(moment, time.min)


def _as_date(moment: Moment) -> date:
    return moment.date() if isinstance(moment, datetime) else moment


# ============================================================
# PERIOD STATUS
# ============================================================

def due_date_for_period(month: int, year: int, settings: CotisationSettings) -> date:
    """
    Due date of a period.

    A due day past the end of a short month falls on its last day.
    """
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(settings.due_day, last_day))


def compute_deadline(month: int, year: int, settings: CotisationSettings) -> date:
    """
    Last calendar day a period is still on time.

    The due day and the grace days that follow it are payable in full, and
    lateness starts on the second day after the last grace day. Status is
    evaluated per calendar day, so the time of day never matters.
    """
    due = due_date_for_period(month, year, settings)
    return due + timedelta(days=settings.grace_period_days + 1)


def compute_cotisation_status(record: CotisationRecord, settings: CotisationSettings, now: Moment,
                              very_late_after_days: int = VERY_LATE_AFTER_DAYS) -> CotisationStatusResult:
    """
    Compute the status of one cotisation period.

    Rules, evaluated in order: fully paid is `paid` whatever the date; up to
    the deadline it is `pending`; up to `very_late_after_days` past the
    deadline it is `late`; beyond that `very_late`. Only validated amounts
    count as paid.

    Args:
        record: Cotisation record of the period
        settings: Association dues calendar
        now: Injected current time
        very_late_after_days: Days after the deadline before a period is very late

    Returns:
        CotisationStatusResult with status, days since deadline and late fee
    """
    deadline = compute_deadline(record.month, record.year, settings)
    today = _as_date(now)
    outstanding = max(ZERO, record.expected_amount - record.paid_amount)

    if record.paid_amount >= record.expected_amount:
        status = CotisationStatus.PAID
    elif today <= deadline:
        status = CotisationStatus.PENDING
    elif today <= deadline + timedelta(days=very_late_after_days):
        status = CotisationStatus.LATE
    else:
        status = CotisationStatus.VERY_LATE

    late_fee = ZERO
    if settings.late_fees_enabled and status in (CotisationStatus.LATE, CotisationStatus.VERY_LATE):
        late_fee = settings.late_fees_amount

    return CotisationStatusResult(
        status=status,
        days_since_deadline=max(0, (today - deadline).days),
        deadline=deadline,
        outstanding_amount=outstanding,
        late_fee=late_fee
    )


def to_member_status(status: CotisationStatus) -> MemberCotisationStatus:
    """Map a period status onto the member-level scale."""
    if status == CotisationStatus.VERY_LATE:
        return MemberCotisationStatus.VERY_LATE
    if status == CotisationStatus.LATE:
        return MemberCotisationStatus.LATE
    return MemberCotisationStatus.UPTODATE


def aggregate_member_status(records: Iterable[CotisationRecord], settings: CotisationSettings, now: Moment,
                            join_date: Optional[date] = None,
                            periods: int = DEFAULT_STATUS_WINDOW_MONTHS,
                            very_late_after_days: int = VERY_LATE_AFTER_DAYS) -> MemberCotisationSummary:
    """
    Aggregate a member's status over their last relevant periods.

    Periods before the join month are not relevant. The worst status wins:
    very_late over late over uptodate; paid and pending periods count as
    uptodate.

    Args:
        records: Cotisation records of one member
        settings: Association dues calendar
        now: Injected current time
        join_date: Member join date
        periods: Number of most recent relevant periods to consider

    Returns:
        MemberCotisationSummary
    """
    relevant = [
        r for r in records
        if join_date is None or r.period >= (join_date.year, join_date.month)
    ]
    relevant.sort(key=lambda r: r.period, reverse=True)
    window = relevant[:max(periods, 0)]

    summary = MemberCotisationSummary(status=MemberCotisationStatus.UPTODATE, periods_considered=len(window))
    for record in window:
        result = compute_cotisation_status(record, settings, now, very_late_after_days)
        summary.total_expected += record.expected_amount
        summary.total_paid += record.paid_amount

        if result.status == CotisationStatus.PAID:
            summary.paid_periods += 1
        elif result.status == CotisationStatus.PENDING:
            summary.pending_periods += 1
        elif result.status == CotisationStatus.LATE:
            summary.late_periods += 1
            summary.arrears += result.outstanding_amount
        else:
            summary.very_late_periods += 1
            summary.arrears += result.outstanding_amount

        member_status = to_member_status(result.status)
        if _SEVERITY[member_status] > _SEVERITY[summary.status]:
            summary.status = member_status
            summary.worst_period = record.period
        elif summary.worst_period is None and member_status != MemberCotisationStatus.UPTODATE:
            summary.worst_period = record.period

    return summary


def _previous_period(year: int, month: int) -> Tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def is_member_inactive(records: Iterable[CotisationRecord], settings: CotisationSettings, now: Moment,
                       join_date: Optional[date] = None) -> bool:
    """
    Check if a member paid nothing over the inactivity threshold.

    Only periods whose deadline has passed are considered; members who joined
    too recently to have that many closed periods are never inactive.
    """
    today = _as_date(now)
    by_period = {r.period: r for r in records}
    threshold = settings.inactivity_threshold_months
    floor = (join_date.year, join_date.month) if join_date else None

    closed = []
    year, month = today.year, today.month
    while len(closed) < threshold:
        if floor is not None and (year, month) < floor:
            break
        if compute_deadline(month, year, settings) < today:
            closed.append((year, month))
        year, month = _previous_period(year, month)

    if len(closed) < threshold:
        return False

    return not any(
        by_period[period].paid_amount > 0
        for period in closed
        if period in by_period
    )


# ============================================================
# TWO-PHASE PAYMENTS
# ============================================================

def open_period(member: Member, association: Association, month: int, year: int, now: datetime) -> OperationResult:
    """
    Open the cotisation record of a period for a member.

    The expected amount is the member's cotisation snapshot, not the current
    catalog amount.
    """
    if member.association_id != association.id:
        return OperationResult.violation("Member belongs to another association")
    if not member_type_exists(association, member.member_type):
        return OperationResult.violation(f"Unknown member type '{member.member_type}'")

    try:
        record = CotisationRecord(
            association_id=association.id,
            member_id=member.id,
            month=month,
            year=year,
            expected_amount=member.cotisation_amount,
            created_at=now,
            updated_at=now
        )
    except PydanticValidationError as e:
        return OperationResult.from_pydantic(e, "Invalid cotisation period")

    return OperationResult.ok(record)


def record_cotisation_payment(record: Optional[CotisationRecord], member: Member, association: Association,
                              payload: RecordCotisationPayload, recorder: Member, now: datetime) -> OperationResult:
    """
    Record a manual payment provisionally (phase 1).

    The amount lands in `pending_amount` and does not count as paid until a
    second member validates it. Only one payment may await validation per
    record.

    Args:
        record: Existing record of the period, or None to open it
        member: Paying member
        association: Association the member belongs to
        payload: Payment data
        recorder: Member recording the payment
        now: Injected engine time

    Returns:
        OperationResult with the updated record and a cotisation_recorded event
    """
    authorization = check_permission(recorder, association, Permission.CREATE_INCOME)
    if recorder.association_id != association.id or not authorization.allowed:
        return OperationResult.from_authorization(authorization)

    if payload.member_id != member.id or member.association_id != association.id:
        return OperationResult.violation("Payment does not belong to this member")
    if payload.amount <= 0:
        return OperationResult.invalid("Amount must be greater than 0")

    if record is None:
        opened = open_period(member, association, payload.month, payload.year, now)
        if not opened.success:
            return opened
        record = opened.value
    elif (record.member_id, record.month, record.year) != (member.id, payload.month, payload.year):
        return OperationResult.violation("Cotisation record does not match the payment period")

    if record.has_pending_validation():
        return OperationResult.conflict(
            "A payment already awaits validation for this period",
            ["Validate or reject the pending payment before recording another one"]
        )

    try:
        updated = record.evolve(
            now,
            pending_amount=payload.amount,
            payment_method=payload.payment_method,
            payment_date=payload.payment_date or _as_datetime(now).date(),
            source=payload.source,
            recorded_by=recorder.id
        )
    except PydanticValidationError as e:
        return OperationResult.from_pydantic(e, "Invalid cotisation payment")

    event = DomainEvent(
        type=EventType.COTISATION_RECORDED,
        association_id=association.id,
        aggregate_id=updated.id,
        occurred_at=now,
        payload={
            "member_id": member.id,
            "month": updated.month,
            "year": updated.year,
            "amount": payload.amount,
            "recorded_by": recorder.id,
        }
    )
    return OperationResult.ok(updated, [event])


def validate_cotisation_payment(record: CotisationRecord, member: Member, association: Association,
                                validator: Member, approve: bool, now: datetime,
                                section: Optional[Section] = None, reason: Optional[str] = None) -> OperationResult:
    """
    Confirm or discard a recorded payment (phase 2).

    Confirmation is the only step that moves money into `paid_amount` and the
    member's `total_contributed`. The validator needs approval authority over
    the member's section and must differ from the recorder.
    """
    if record.member_id != member.id or record.association_id != association.id:
        return OperationResult.violation("Cotisation record does not belong to this member")
    if not record.has_pending_validation():
        return OperationResult.violation("No payment awaits validation for this period")

    authority = authority_tier(validator, association, member.section_id, section)
    if authority is None:
        return OperationResult.forbidden("Validator lacks authority over this member's section")
    if validator.id == record.recorded_by:
        return OperationResult.forbidden("A payment cannot be validated by the member who recorded it")

    amount = record.pending_amount

    if not approve:
        if not reason or not reason.strip():
            return OperationResult.invalid("A reason is required to reject a payment")
        discarded = record.evolve(now, pending_amount=ZERO, recorded_by=None)
        return OperationResult.ok(CotisationValidation(record=discarded, member=member))

    updated_record = record.evolve(
        now,
        paid_amount=record.paid_amount + amount,
        pending_amount=ZERO,
        validator_id=validator.id
    )
    updated_member = member.evolve(now, total_contributed=member.total_contributed + amount)

    event = DomainEvent(
        type=EventType.COTISATION_VALIDATED,
        association_id=association.id,
        aggregate_id=record.id,
        occurred_at=now,
        payload={
            "member_id": member.id,
            "month": record.month,
            "year": record.year,
            "amount": amount,
            "validator_id": validator.id,
            "validator_role": authority.role,
        }
    )
    return OperationResult.ok(CotisationValidation(record=updated_record, member=updated_member), [event])


# ============================================================
# REPORTING
# ============================================================

def collect_reminders(entries: Iterable[Tuple[Member, CotisationRecord]], settings: CotisationSettings,
                      now: datetime, very_late_after_days: int = VERY_LATE_AFTER_DAYS) -> List[DomainEvent]:
    """Build a send_reminder event for every late period of an active member."""
    events = []
    for member, record in entries:
        if not member.is_active():
            continue
        result = compute_cotisation_status(record, settings, now, very_late_after_days)
        if result.status not in (CotisationStatus.LATE, CotisationStatus.VERY_LATE):
            continue
        events.append(DomainEvent(
            type=EventType.SEND_REMINDER,
            association_id=record.association_id,
            aggregate_id=record.id,
            occurred_at=_as_datetime(now),
            payload={
                "member_id": member.id,
                "month": record.month,
                "year": record.year,
                "status": result.status.value,
                "days_since_deadline": result.days_since_deadline,
                "outstanding_amount": result.outstanding_amount,
                "late_fee": result.late_fee,
            }
        ))
    return events


def compute_cotisation_kpis(entries: Iterable[Tuple[Member, CotisationRecord]], settings: CotisationSettings,
                            now: Moment, very_late_after_days: int = VERY_LATE_AFTER_DAYS) -> CotisationKPIs:
    """
    Compute dashboard indicators for a set of (member, record) pairs.

    Args:
        entries: One record per member for the period being reported
        settings: Association dues calendar
        now: Injected current time

    Returns:
        CotisationKPIs with totals, status counts and breakdowns
    """
    kpis = CotisationKPIs()
    for member, record in entries:
        result = compute_cotisation_status(record, settings, now, very_late_after_days)
        kpis.members_count += 1
        kpis.total_expected += record.expected_amount
        kpis.total_collected += record.paid_amount
        kpis.total_pending += record.pending_amount
        kpis.status_counts[result.status] += 1

        for bucket in (
            kpis.by_section.setdefault(member.section_id, BreakdownStats()),
            kpis.by_member_type.setdefault(member.member_type, BreakdownStats()),
        ):
            bucket.members_count += 1
            bucket.expected_amount += record.expected_amount
            bucket.collected_amount += record.paid_amount

    return kpis
