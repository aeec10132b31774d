# SPDX-License-Identifier: Apache-2.0

"""
Governance engine façade.

Wraps the pure domain functions with configuration, tracing, logging and
event publication. Every command runs in its own `governance.<operation>`
span and hands its events to the sink as soon as the domain function
succeeded. The caller persists the returned write set afterwards, so sinks
that depend on the commit buffer events until then.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from opentelemetry import trace

from ..config import EngineConfig, load_engine_config
from ..domain import approvals, cotisations, organization, permissions, repayments
from ..domain.results import OperationResult
from ..models.entities import (
    Association, CotisationRecord, CotisationSettings, ExpenseRequest, Member, Repayment, Section
)
from ..models.enums import Permission, ValidationDecision
from ..models.requests import CreateExpensePayload, RecordCotisationPayload, RecordRepaymentPayload
from .events import EventPublisher, EventSink, PublishResult


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class GovernanceEngine:
    """
    Entry point for hosts driving the association workflows.

    Args:
        config: Engine thresholds, loaded from the environment when omitted
        sink: Callable receiving every emitted DomainEvent
        publisher: Pre-built publisher, takes precedence over sink
    """

    def __init__(self, config: Optional[EngineConfig] = None, sink: Optional[EventSink] = None,
                 publisher: Optional[EventPublisher] = None):
        self.config = config or load_engine_config()
        self.publisher = publisher or EventPublisher(sink)

    def _execute(self, operation: str, attributes: Dict[str, Any],
                 command: Callable[[], OperationResult]) -> OperationResult:
        """Run one command inside a span, log its outcome and publish its events."""
        with tracer.start_as_current_span(f"governance.{operation}") as span:
            span.set_attributes({k: v for k, v in attributes.items() if v is not None})

            result = command()
            span.set_attribute("governance.success", result.success)
            log_fields = {"operation": operation, **attributes}

            if not result.success:
                span.set_attribute("governance.error_kind", result.error.kind.value)
                logger.warning(
                    f"Command {operation} refused: {result.error.message}",
                    extra={
                        "extra_fields": {
                            **log_fields,
                            "error_kind": result.error.kind.value,
                            "details": result.error.details
                        }
                    }
                )
                return result

            span.set_attribute("governance.events", len(result.events))
            logger.info(
                f"Command {operation} succeeded",
                extra={"extra_fields": {**log_fields, "events": [e.type.value for e in result.events]}}
            )

            if result.events:
                published = self.publisher.publish_all(result.events)
                if not published.success:
                    span.set_attribute("governance.events_failed", len(published.failed))

            return result

    # ============================================================
    # PERMISSIONS AND ORGANIZATION
    # ============================================================

    def resolve_permissions(self, member: Member, association: Association) -> FrozenSet[Permission]:
        return permissions.resolve_permissions(member, association)

    def has_permission(self, member: Member, association: Association,
                       permission: Union[Permission, str]) -> bool:
        return permissions.has_permission(member, association, permission)

    def can_access_feature(self, member: Optional[Member], association: Association, feature: str) -> bool:
        return organization.can_access_feature(member, association, feature)

    def assign_member_type(self, member: Member, association: Association, member_type: str,
                           now: datetime) -> OperationResult:
        return self._execute(
            "assign_member_type",
            {"association.id": association.id, "member.id": member.id, "member.type": member_type},
            lambda: organization.assign_member_type(member, association, member_type, now)
        )

    def assign_role(self, member: Member, association: Association, role_id: str, actor: Member,
                    now: datetime) -> OperationResult:
        return self._execute(
            "assign_role",
            {"association.id": association.id, "member.id": member.id, "role.id": role_id, "actor.id": actor.id},
            lambda: organization.assign_role(member, association, role_id, actor, now)
        )

    def remove_role(self, member: Member, association: Association, role_id: str, actor: Member,
                    roster: Iterable[Member], now: datetime) -> OperationResult:
        return self._execute(
            "remove_role",
            {"association.id": association.id, "member.id": member.id, "role.id": role_id, "actor.id": actor.id},
            lambda: organization.remove_role(member, association, role_id, actor, roster, now)
        )

    def transfer_admin(self, current_admin: Member, new_admin: Member, association: Association,
                       reason: str, now: datetime) -> OperationResult:
        return self._execute(
            "transfer_admin",
            {"association.id": association.id, "actor.id": current_admin.id, "member.id": new_admin.id},
            lambda: organization.transfer_admin(current_admin, new_admin, association, reason, now)
        )

    def delete_role(self, association: Association, role_id: str, actor: Member,
                    roster: Iterable[Member], now: datetime) -> OperationResult:
        return self._execute(
            "delete_role",
            {"association.id": association.id, "role.id": role_id, "actor.id": actor.id},
            lambda: organization.delete_role(association, role_id, actor, roster, now)
        )

    def add_section(self, association: Association, section: Section, actor: Member,
                    existing_sections: Iterable[Section] = ()) -> OperationResult:
        return self._execute(
            "add_section",
            {"association.id": association.id, "section.id": section.id, "actor.id": actor.id},
            lambda: organization.add_section(association, section, actor, existing_sections)
        )

    def delete_section(self, association: Association, section: Section, actor: Member,
                       roster: Iterable[Member], now: datetime) -> OperationResult:
        return self._execute(
            "delete_section",
            {"association.id": association.id, "section.id": section.id, "actor.id": actor.id},
            lambda: organization.delete_section(association, section, actor, roster, now)
        )

    # ============================================================
    # COTISATIONS
    # ============================================================

    def compute_cotisation_status(self, record: CotisationRecord, settings: CotisationSettings,
                                  now: Union[date, datetime]) -> cotisations.CotisationStatusResult:
        return cotisations.compute_cotisation_status(
            record, settings, now, very_late_after_days=self.config.very_late_after_days
        )

    def aggregate_member_status(self, records: Iterable[CotisationRecord], settings: CotisationSettings,
                                now: Union[date, datetime],
                                join_date: Optional[date] = None) -> cotisations.MemberCotisationSummary:
        return cotisations.aggregate_member_status(
            records, settings, now,
            join_date=join_date,
            periods=self.config.status_window_months,
            very_late_after_days=self.config.very_late_after_days
        )

    def record_cotisation_payment(self, record: Optional[CotisationRecord], member: Member,
                                  association: Association, payload: RecordCotisationPayload,
                                  recorder: Member, now: datetime) -> OperationResult:
        return self._execute(
            "record_cotisation_payment",
            {
                "association.id": association.id,
                "member.id": member.id,
                "cotisation.period": f"{payload.year}-{payload.month:02d}",
                "actor.id": recorder.id
            },
            lambda: cotisations.record_cotisation_payment(record, member, association, payload, recorder, now)
        )

    def validate_cotisation_payment(self, record: CotisationRecord, member: Member, association: Association,
                                    validator: Member, approve: bool, now: datetime,
                                    section: Optional[Section] = None,
                                    reason: Optional[str] = None) -> OperationResult:
        return self._execute(
            "validate_cotisation_payment",
            {
                "association.id": association.id,
                "member.id": member.id,
                "cotisation.id": record.id,
                "actor.id": validator.id,
                "approve": approve
            },
            lambda: cotisations.validate_cotisation_payment(
                record, member, association, validator, approve, now, section=section, reason=reason
            )
        )

    def send_cotisation_reminders(self, entries: Iterable[Tuple[Member, CotisationRecord]],
                                  association: Association, now: datetime) -> OperationResult:
        """Emit a send_reminder event for every late period of an active member."""
        return self._execute(
            "send_cotisation_reminders",
            {"association.id": association.id},
            lambda: OperationResult.ok(None, cotisations.collect_reminders(
                entries, association.cotisation_settings, now,
                very_late_after_days=self.config.very_late_after_days
            ))
        )

    def compute_cotisation_kpis(self, entries: Iterable[Tuple[Member, CotisationRecord]],
                                settings: CotisationSettings,
                                now: Union[date, datetime]) -> cotisations.CotisationKPIs:
        return cotisations.compute_cotisation_kpis(
            entries, settings, now, very_late_after_days=self.config.very_late_after_days
        )

    # ============================================================
    # APPROVAL WORKFLOW
    # ============================================================

    def create_expense_request(self, payload: CreateExpensePayload, association: Association,
                               requester: Member, roster: Iterable[Member], now: datetime,
                               sections: Iterable[Section] = ()) -> OperationResult:
        return self._execute(
            "create_expense_request",
            {"association.id": association.id, "actor.id": requester.id, "request.is_loan": payload.is_loan},
            lambda: approvals.create_expense_request(payload, association, requester, roster, now, sections)
        )

    def begin_review(self, request: ExpenseRequest, association: Association, roster: Iterable[Member],
                     actor: Member, now: datetime, section: Optional[Section] = None,
                     expected_version: Optional[int] = None) -> OperationResult:
        return self._execute(
            "begin_review",
            {"association.id": association.id, "request.id": request.id, "actor.id": actor.id},
            lambda: approvals.begin_review(
                request, association, roster, actor, now,
                section=section,
                expected_version=expected_version,
                default_ceiling=self.config.default_approval_ceiling
            )
        )

    def record_approval_decision(self, request: ExpenseRequest, association: Association,
                                 roster: Iterable[Member], validator: Member, decision: ValidationDecision,
                                 comment: str, now: datetime, expected_version: Optional[int] = None,
                                 section: Optional[Section] = None) -> OperationResult:
        return self._execute(
            "record_approval_decision",
            {
                "association.id": association.id,
                "request.id": request.id,
                "request.status": request.status.value,
                "actor.id": validator.id,
                "decision": decision.value
            },
            lambda: approvals.record_approval_decision(
                request, association, roster, validator, decision, comment, now,
                expected_version=expected_version,
                section=section,
                default_ceiling=self.config.default_approval_ceiling
            )
        )

    def provide_additional_info(self, request: ExpenseRequest, requester: Member, comment: str,
                                now: datetime, expected_version: Optional[int] = None) -> OperationResult:
        return self._execute(
            "provide_additional_info",
            {"association.id": request.association_id, "request.id": request.id, "actor.id": requester.id},
            lambda: approvals.provide_additional_info(request, requester, comment, now, expected_version)
        )

    def transition_to_paid(self, request: ExpenseRequest, association: Association, roster: Iterable[Member],
                           actor: Member, now: datetime, expected_version: Optional[int] = None,
                           section: Optional[Section] = None) -> OperationResult:
        return self._execute(
            "transition_to_paid",
            {"association.id": association.id, "request.id": request.id, "actor.id": actor.id},
            lambda: approvals.transition_to_paid(
                request, association, roster, actor, now,
                expected_version=expected_version,
                section=section,
                default_ceiling=self.config.default_approval_ceiling
            )
        )

    def cancel_expense_request(self, request: ExpenseRequest, actor: Member, now: datetime,
                               expected_version: Optional[int] = None) -> OperationResult:
        return self._execute(
            "cancel_expense_request",
            {"association.id": request.association_id, "request.id": request.id, "actor.id": actor.id},
            lambda: approvals.cancel_expense_request(request, actor, now, expected_version)
        )

    def resolve_validators(self, request: ExpenseRequest, association: Association, roster: Iterable[Member],
                           section: Optional[Section] = None) -> List[Member]:
        return approvals.resolve_validators(
            request, association, roster, section, default_ceiling=self.config.default_approval_ceiling
        )

    # ============================================================
    # REPAYMENTS
    # ============================================================

    def record_repayment(self, loan: ExpenseRequest, ledger: Iterable[Repayment], payload: RecordRepaymentPayload,
                         recorder: Member, now: datetime) -> OperationResult:
        return self._execute(
            "record_repayment",
            {"association.id": loan.association_id, "loan.id": loan.id, "actor.id": recorder.id},
            lambda: repayments.record_repayment(
                loan, ledger, payload, recorder, now, period_days=self.config.installment_period_days
            )
        )

    def validate_repayment(self, loan: ExpenseRequest, ledger: Iterable[Repayment], repayment_id: str,
                           association: Association, roster: Iterable[Member], validator: Member,
                           approve: bool, reason: Optional[str], now: datetime,
                           section: Optional[Section] = None) -> OperationResult:
        return self._execute(
            "validate_repayment",
            {
                "association.id": association.id,
                "loan.id": loan.id,
                "repayment.id": repayment_id,
                "actor.id": validator.id,
                "approve": approve
            },
            lambda: repayments.validate_repayment(
                loan, ledger, repayment_id, association, roster, validator, approve, reason, now, section
            )
        )

    def compute_outstanding(self, loan: ExpenseRequest, ledger: Iterable[Repayment]) -> repayments.LedgerSummary:
        return repayments.compute_outstanding(loan, ledger)

    def compute_loan_lateness(self, loan: ExpenseRequest, ledger: Iterable[Repayment],
                              now: Union[date, datetime]) -> repayments.LoanLateness:
        return repayments.compute_loan_lateness(loan, ledger, now, period_days=self.config.installment_period_days)

    def summarize_loan_portfolio(self, loans_with_ledgers: Iterable[Tuple[ExpenseRequest, Iterable[Repayment]]],
                                 now: Union[date, datetime]) -> repayments.PortfolioSummary:
        return repayments.summarize_loan_portfolio(
            loans_with_ledgers, now, period_days=self.config.installment_period_days
        )

    def publish(self, result: OperationResult) -> PublishResult:
        """Re-publish the events of a result, e.g. after a failed sink delivery."""
        return self.publisher.publish_all(result.events)


def create_governance_engine(sink: Optional[EventSink] = None) -> GovernanceEngine:
    """
    Factory function to create the governance engine with configuration from environment.

    Returns:
        GovernanceEngine: Configured engine instance
    """
    return GovernanceEngine(config=load_engine_config(), sink=sink)
