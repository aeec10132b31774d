# SPDX-License-Identifier: Apache-2.0

"""
Approval workflow for expense and loan requests.

This module drives an ExpenseRequest through its state machine:

    pending -> under_review -> approved -> paid
                            -> rejected
                            -> additional_info_needed -> under_review

and resolves who may decide on it given the section structure, the approval
ceiling and the validator's permissions. A central validator keeps veto
authority over a request approved by the section tier alone, which is the
only way out of `approved` other than `paid`.

Every operation returns an OperationResult whose value is the new request
along with the events it emitted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..models.entities import (
    Association, DomainEvent, ExpenseRequest, Member, Section, ValidationEntry
)
from ..models.enums import AuthorityTier, EventType, ExpenseStatus, ValidationDecision
from ..models.requests import CreateExpensePayload
from .organization import Authority, authority_tier, find_member
from .results import OperationResult, ValidationResult


VALID_TRANSITIONS: Dict[ExpenseStatus, Set[ExpenseStatus]] = {
    ExpenseStatus.PENDING: {ExpenseStatus.UNDER_REVIEW, ExpenseStatus.CANCELLED},
    ExpenseStatus.UNDER_REVIEW: {
        ExpenseStatus.APPROVED,
        ExpenseStatus.REJECTED,
        ExpenseStatus.ADDITIONAL_INFO_NEEDED,
        ExpenseStatus.CANCELLED,
    },
    ExpenseStatus.ADDITIONAL_INFO_NEEDED: {ExpenseStatus.UNDER_REVIEW, ExpenseStatus.CANCELLED},
    # rejected only through a central veto of a section approval
    ExpenseStatus.APPROVED: {ExpenseStatus.PAID, ExpenseStatus.REJECTED},
    ExpenseStatus.REJECTED: set(),
    ExpenseStatus.PAID: set(),
    ExpenseStatus.CANCELLED: set(),
}

DECISION_TARGETS = {
    ValidationDecision.APPROVED: ExpenseStatus.APPROVED,
    ValidationDecision.REJECTED: ExpenseStatus.REJECTED,
    ValidationDecision.INFO_REQUESTED: ExpenseStatus.ADDITIONAL_INFO_NEEDED,
}

CANCELLABLE_STATUSES = (
    ExpenseStatus.PENDING,
    ExpenseStatus.UNDER_REVIEW,
    ExpenseStatus.ADDITIONAL_INFO_NEEDED,
)


def validate_status_transition(current_status: ExpenseStatus, new_status: ExpenseStatus) -> ValidationResult:
    """
    Validate request status transition.

    Args:
        current_status: Current request status
        new_status: Desired new status

    Returns:
        ValidationResult indicating if transition is valid
    """
    if current_status == new_status:
        return ValidationResult(is_valid=True, errors=[], warnings=["Status unchanged"])

    if new_status not in VALID_TRANSITIONS.get(current_status, set()):
        return ValidationResult(
            is_valid=False,
            errors=[f"Cannot transition from {current_status.value} to {new_status.value}"]
        )

    return ValidationResult(is_valid=True, errors=[])


def requires_central_approval(request: ExpenseRequest, association: Association,
                              default_ceiling: Optional[Decimal] = None) -> bool:
    """
    Check if only central roles may decide on a request.

    True for single-section associations, for requests without a section,
    and for amounts strictly above the approval ceiling.
    """
    if not association.is_multi_section or request.section_id is None:
        return True
    ceiling = association.approval_ceiling if association.approval_ceiling is not None else default_ceiling
    return ceiling is not None and request.amount_requested > ceiling


def _check_version(request: ExpenseRequest, expected_version: Optional[int]) -> Optional[OperationResult]:
    if expected_version is not None and expected_version != request.version:
        return OperationResult.conflict(
            "Request was modified concurrently",
            [f"expected version {expected_version}, current version {request.version}"]
        )
    return None


def _loan_terms_error(request: ExpenseRequest) -> Optional[OperationResult]:
    if not request.is_loan:
        return None
    if request.loan_terms is None or not request.loan_terms.is_complete():
        missing = request.loan_terms.missing_fields() if request.loan_terms else ["loan_terms"]
        return OperationResult.invalid(
            "Loan terms must be complete before review",
            [f"missing: {name}" for name in missing]
        )
    return None


def _status_event(request: ExpenseRequest, previous: ExpenseStatus, actor_id: str, now: datetime,
                  **extra) -> DomainEvent:
    return DomainEvent(
        type=EventType.REQUEST_STATUS_CHANGED,
        association_id=request.association_id,
        aggregate_id=request.id,
        occurred_at=now,
        payload={
            "previous_status": previous.value,
            "new_status": request.status.value,
            "actor_id": actor_id,
            **extra,
        }
    )


def _schedule_event(request: ExpenseRequest, now: datetime) -> DomainEvent:
    terms = request.loan_terms
    return DomainEvent(
        type=EventType.SCHEDULE_REPAYMENTS,
        association_id=request.association_id,
        aggregate_id=request.id,
        occurred_at=now,
        payload={
            "beneficiary_member_id": request.beneficiary_member_id,
            "installments": terms.duration_months,
            "monthly_payment": terms.monthly_payment,
            "interest_rate": terms.interest_rate,
            "total_scheduled": terms.monthly_payment * terms.duration_months,
            "currency": request.currency,
        }
    )


def _resolve_authority(request: ExpenseRequest, association: Association, roster: Iterable[Member],
                       actor: Member, section: Optional[Section],
                       default_ceiling: Optional[Decimal]) -> Tuple[Optional[Member], Optional[Authority]]:
    """Re-read the actor from the roster snapshot and resolve their authority."""
    current = find_member(roster, actor.id)
    if current is None:
        return None, None
    central_only = requires_central_approval(request, association, default_ceiling)
    return current, authority_tier(current, association, request.section_id, section, central_only)


# ============================================================
# CREATION
# ============================================================

def create_expense_request(payload: CreateExpensePayload, association: Association, requester: Member,
                           roster: Iterable[Member], now: datetime,
                           sections: Iterable[Section] = ()) -> OperationResult:
    """
    Create a new expense or loan request in `pending`.

    Args:
        payload: Request data
        association: Owning association
        requester: Member submitting the request
        roster: Current members of the association
        now: Injected engine time
        sections: Sections of the association, to check section ownership

    Returns:
        OperationResult with the new ExpenseRequest
    """
    roster = list(roster)
    if requester.association_id != association.id or not requester.is_active():
        return OperationResult.forbidden("Only active members of the association can submit requests")

    errors = []
    if payload.amount_requested <= 0:
        errors.append("Amount must be greater than 0")
    if payload.beneficiary_member_id and payload.beneficiary_external:
        errors.append("Beneficiary must be either a member or external, not both")
    if payload.loan_terms is not None and not payload.is_loan:
        errors.append("Loan terms are only allowed on loan requests")
    if errors:
        return OperationResult.invalid("Invalid expense request", errors)

    beneficiary_member_id = payload.beneficiary_member_id
    if beneficiary_member_id is not None:
        beneficiary = find_member(roster, beneficiary_member_id)
        if beneficiary is None or beneficiary.association_id != association.id:
            return OperationResult.invalid(f"Unknown beneficiary member '{beneficiary_member_id}'")
    elif payload.beneficiary_external is None and payload.is_loan:
        beneficiary_member_id = requester.id

    if payload.section_id is not None:
        if not association.is_multi_section:
            return OperationResult.invalid("Association has no sections")
        section = next((s for s in sections if s.id == payload.section_id), None)
        if section is None or section.association_id != association.id:
            return OperationResult.violation("Section does not belong to this association")

    try:
        request = ExpenseRequest(
            association_id=association.id,
            section_id=payload.section_id,
            requester_id=requester.id,
            beneficiary_member_id=beneficiary_member_id,
            beneficiary_external=payload.beneficiary_external,
            expense_type=payload.expense_type,
            title=payload.title,
            description=payload.description,
            amount_requested=payload.amount_requested,
            currency=payload.currency or association.primary_currency,
            urgency_level=payload.urgency_level,
            is_loan=payload.is_loan,
            loan_terms=payload.loan_terms,
            created_at=now,
            updated_at=now
        )
    except PydanticValidationError as e:
        return OperationResult.from_pydantic(e, "Invalid expense request")

    return OperationResult.ok(request)


# ============================================================
# REVIEW
# ============================================================

def begin_review(request: ExpenseRequest, association: Association, roster: Iterable[Member], actor: Member,
                 now: datetime, section: Optional[Section] = None, expected_version: Optional[int] = None,
                 default_ceiling: Optional[Decimal] = None) -> OperationResult:
    """Move a pending request to `under_review`."""
    stale = _check_version(request, expected_version)
    if stale:
        return stale
    if request.status != ExpenseStatus.PENDING:
        return OperationResult.violation(f"Cannot start review of a {request.status.value} request")

    _, authority = _resolve_authority(request, association, roster, actor, section, default_ceiling)
    if authority is None:
        return OperationResult.forbidden("Actor has no approval authority over this request")

    terms_error = _loan_terms_error(request)
    if terms_error:
        return terms_error

    updated = request.evolve(now, status=ExpenseStatus.UNDER_REVIEW, version=request.version + 1)
    return OperationResult.ok(updated, [_status_event(updated, request.status, actor.id, now)])


def record_approval_decision(request: ExpenseRequest, association: Association, roster: Iterable[Member],
                             validator: Member, decision: ValidationDecision, comment: str, now: datetime,
                             expected_version: Optional[int] = None, section: Optional[Section] = None,
                             default_ceiling: Optional[Decimal] = None) -> OperationResult:
    """
    Record a validator's decision on a request.

    One approving decision from either authority tier moves the request to
    `approved`. Pending requests go through `begin_review` first. On a
    request the section tier already approved, a central validator may still
    confirm or veto it once.

    Args:
        request: Request snapshot the decision is based on
        association: Owning association
        roster: Current members, the validator is re-read from it
        validator: Member deciding
        decision: approved, rejected or info_requested
        comment: Rationale, required for rejections and info requests
        now: Injected engine time
        expected_version: Version the validator read, None to skip the check
        section: Section record of the request, for its bureau
        default_ceiling: Ceiling used when the association has none

    Returns:
        OperationResult with the updated request and emitted events
    """
    stale = _check_version(request, expected_version)
    if stale:
        return stale
    if request.association_id != association.id:
        return OperationResult.violation("Request belongs to another association")

    if decision != ValidationDecision.APPROVED and not (comment or "").strip():
        return OperationResult.invalid(f"A comment is required to record a {decision.value} decision")

    if validator.id == request.requester_id:
        return OperationResult.forbidden("Requesters cannot decide on their own requests")

    current, authority = _resolve_authority(request, association, roster, validator, section, default_ceiling)
    if current is None:
        return OperationResult.forbidden("Validator is not part of the association roster")
    if authority is None:
        return OperationResult.forbidden("Validator has no approval authority over this request")

    if request.is_terminal():
        return OperationResult.violation(f"Request is already {request.status.value}")
    if request.status == ExpenseStatus.PENDING:
        return OperationResult.violation("Review must start before a decision is recorded")
    if request.status == ExpenseStatus.ADDITIONAL_INFO_NEEDED:
        return OperationResult.violation("Request awaits additional information from the requester")
    if request.has_decided(current.id):
        return OperationResult.violation("Validator already decided during this review cycle")

    if request.status == ExpenseStatus.APPROVED:
        return _escalate(request, current, authority, decision, comment, now)

    entry = ValidationEntry(
        validator_id=current.id,
        role=authority.role,
        tier=authority.tier,
        decision=decision,
        comment=(comment or "").strip(),
        timestamp=now,
        review_cycle=request.review_cycle
    )
    target = DECISION_TARGETS[decision]
    changes = {
        "status": target,
        "validation_history": [*request.validation_history, entry],
        "version": request.version + 1,
    }
    if target == ExpenseStatus.APPROVED:
        changes["approved_at"] = now
    elif target == ExpenseStatus.REJECTED:
        changes["rejected_at"] = now
        changes["rejection_reason"] = entry.comment

    try:
        updated = request.evolve(now, **changes)
    except PydanticValidationError as e:
        return OperationResult.from_pydantic(e, "Invalid approval decision")

    events = [_status_event(updated, request.status, current.id, now, decision=decision.value, tier=authority.tier.value)]
    if target == ExpenseStatus.APPROVED and updated.is_loan:
        events.append(_schedule_event(updated, now))
    return OperationResult.ok(updated, events)


def _escalate(request: ExpenseRequest, validator: Member, authority: Authority,
              decision: ValidationDecision, comment: str, now: datetime) -> OperationResult:
    """Central confirmation or veto of a request the section tier approved."""
    if authority.tier != AuthorityTier.CENTRAL:
        return OperationResult.violation("Request is already approved")
    if any(e.tier == AuthorityTier.CENTRAL for e in request.current_cycle_entries()):
        return OperationResult.violation("Request already carries a central decision")
    if decision == ValidationDecision.INFO_REQUESTED:
        return OperationResult.violation("Information cannot be requested on an approved request")

    entry = ValidationEntry(
        validator_id=validator.id,
        role=authority.role,
        tier=authority.tier,
        decision=decision,
        comment=(comment or "").strip(),
        timestamp=now,
        review_cycle=request.review_cycle
    )
    history = [*request.validation_history, entry]

    if decision == ValidationDecision.APPROVED:
        updated = request.evolve(now, validation_history=history, version=request.version + 1)
        return OperationResult.ok(updated)

    updated = request.evolve(
        now,
        status=ExpenseStatus.REJECTED,
        validation_history=history,
        version=request.version + 1,
        rejected_at=now,
        rejection_reason=entry.comment
    )
    event = _status_event(
        updated, request.status, validator.id, now,
        decision=decision.value,
        tier=authority.tier.value,
        veto=True,
        cancel_repayment_schedule=updated.is_loan
    )
    return OperationResult.ok(updated, [event])


def provide_additional_info(request: ExpenseRequest, requester: Member, comment: str, now: datetime,
                            expected_version: Optional[int] = None) -> OperationResult:
    """
    Answer an information request and send the request back to review.

    Opens a new review cycle, so validators who decided before may decide
    again.
    """
    stale = _check_version(request, expected_version)
    if stale:
        return stale
    if requester.id != request.requester_id:
        return OperationResult.forbidden("Only the requester can provide additional information")
    if request.status != ExpenseStatus.ADDITIONAL_INFO_NEEDED:
        return OperationResult.violation("No additional information was requested")
    if not (comment or "").strip():
        return OperationResult.invalid("Additional information cannot be empty")

    description = f"{request.description}\n\n{comment.strip()}" if request.description else comment.strip()
    try:
        updated = request.evolve(
            now,
            status=ExpenseStatus.UNDER_REVIEW,
            description=description,
            review_cycle=request.review_cycle + 1,
            version=request.version + 1
        )
    except PydanticValidationError as e:
        return OperationResult.from_pydantic(e, "Invalid additional information")

    return OperationResult.ok(updated, [_status_event(updated, request.status, requester.id, now)])


# ============================================================
# DISBURSEMENT AND CANCELLATION
# ============================================================

def transition_to_paid(request: ExpenseRequest, association: Association, roster: Iterable[Member],
                       actor: Member, now: datetime, expected_version: Optional[int] = None,
                       section: Optional[Section] = None,
                       default_ceiling: Optional[Decimal] = None) -> OperationResult:
    """
    Mark an approved request as paid out.

    Args:
        request: Request snapshot
        association: Owning association
        roster: Current members, the actor is re-read from it
        actor: Member disbursing the funds
        now: Injected engine time
        expected_version: Version the actor read, None to skip the check

    Returns:
        OperationResult with the paid request and a debit_association_balance event
    """
    stale = _check_version(request, expected_version)
    if stale:
        return stale

    transition = validate_status_transition(request.status, ExpenseStatus.PAID)
    if not transition.is_valid or request.status == ExpenseStatus.PAID:
        return OperationResult.violation("Only approved requests can be paid", transition.errors)

    _, authority = _resolve_authority(request, association, roster, actor, section, default_ceiling)
    if authority is None:
        return OperationResult.forbidden("Actor has no authority to disburse this request")

    updated = request.evolve(now, status=ExpenseStatus.PAID, paid_at=now, version=request.version + 1)
    debit = DomainEvent(
        type=EventType.DEBIT_ASSOCIATION_BALANCE,
        association_id=association.id,
        aggregate_id=request.id,
        occurred_at=now,
        payload={
            "amount": request.amount_requested,
            "currency": request.currency,
            "expense_type": request.expense_type.value,
            "is_loan": request.is_loan,
            "section_id": request.section_id,
            "beneficiary_member_id": request.beneficiary_member_id,
            "disbursed_by": actor.id,
        }
    )
    return OperationResult.ok(updated, [_status_event(updated, request.status, actor.id, now), debit])


def cancel_expense_request(request: ExpenseRequest, actor: Member, now: datetime,
                           expected_version: Optional[int] = None) -> OperationResult:
    """Withdraw a request before any final decision. Requester only."""
    stale = _check_version(request, expected_version)
    if stale:
        return stale
    if actor.id != request.requester_id:
        return OperationResult.forbidden("Only the requester can cancel a request")
    if request.status not in CANCELLABLE_STATUSES:
        return OperationResult.violation(f"Cannot cancel a {request.status.value} request")

    updated = request.evolve(now, status=ExpenseStatus.CANCELLED, cancelled_at=now, version=request.version + 1)
    return OperationResult.ok(updated, [_status_event(updated, request.status, actor.id, now)])


def resolve_validators(request: ExpenseRequest, association: Association, roster: Iterable[Member],
                       section: Optional[Section] = None,
                       default_ceiling: Optional[Decimal] = None) -> List[Member]:
    """
    Members currently allowed to decide on a request.

    Excludes the requester and validators who already decided this cycle.
    On an approved request, only central validators remain, and none once a
    central decision exists.
    """
    if request.is_terminal() or request.status == ExpenseStatus.ADDITIONAL_INFO_NEEDED:
        return []

    central_only = requires_central_approval(request, association, default_ceiling)
    if request.status == ExpenseStatus.APPROVED:
        if any(e.tier == AuthorityTier.CENTRAL for e in request.current_cycle_entries()):
            return []
        central_only = True

    validators = []
    for member in roster:
        if member.id == request.requester_id or request.has_decided(member.id):
            continue
        if authority_tier(member, association, request.section_id, section, central_only) is not None:
            validators.append(member)
    return validators
