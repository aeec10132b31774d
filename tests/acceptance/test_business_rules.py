# SPDX-License-Identifier: Apache-2.0

"""
Business rule enforcement acceptance tests.

Drives the governance engine the way a host application would: snapshots in,
write sets and events out. Covers dues calendars, the approval workflow with
section escalation, the loan ledger bound and the admin lock-out guard.
"""

import itertools
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest
from bson import ObjectId

from asso_engine.config import EngineConfig
from asso_engine.domain.results import ErrorKind
from asso_engine.models.entities import (
    Association, CotisationRecord, CotisationSettings, LoanTerms, Member, MemberTypeConfig,
    PermissionOverrides, Section
)
from asso_engine.models.enums import (
    CotisationStatus, EventType, ExpenseStatus, Permission, SystemRole, ValidationDecision
)
from asso_engine.models.requests import CreateExpensePayload, RecordCotisationPayload, RecordRepaymentPayload
from asso_engine.services.governance import GovernanceEngine


STATUS_RANK = {
    CotisationStatus.PENDING: 0,
    CotisationStatus.LATE: 1,
    CotisationStatus.VERY_LATE: 2,
}


def build_association(multi_section=False, due_day=5, grace=3, **kwargs):
    return Association(
        name="Association des Ressortissants",
        domiciliation_country="FR",
        primary_currency="EUR",
        is_multi_section=multi_section,
        member_types={"standard": MemberTypeConfig(name="standard", cotisation_amount=Decimal("20"))},
        cotisation_settings=CotisationSettings(due_day=due_day, grace_period_days=grace),
        **kwargs
    )


def build_member(association, roles=(), section_id=None, **kwargs):
    return Member(
        association_id=association.id,
        user_id=str(ObjectId()),
        section_id=section_id,
        member_type="standard",
        join_date=date(2022, 9, 1),
        roles=set(roles),
        cotisation_amount=Decimal("20"),
        **kwargs
    )


class TestCotisationCalendarRules:
    """Dues status follows the association calendar."""

    @pytest.fixture(autouse=True)
    def setup_calendar(self):
        self.engine = GovernanceEngine(config=EngineConfig(environment="test"))
        self.association = build_association()
        self.member = build_member(self.association)
        self.record = CotisationRecord(
            association_id=self.association.id,
            member_id=self.member.id,
            month=3,
            year=2024,
            expected_amount=Decimal("20")
        )

    def status_on(self, moment, record=None, settings=None):
        return self.engine.compute_cotisation_status(
            record or self.record, settings or self.association.cotisation_settings, moment
        ).status

    def test_march_calendar(self):
        """Due day 5 with 3 days of grace: pending on the 9th, late on the 10th, very late in April."""
        assert self.status_on(date(2024, 3, 9)) == CotisationStatus.PENDING
        assert self.status_on(date(2024, 3, 10)) == CotisationStatus.LATE
        assert self.status_on(date(2024, 4, 10)) == CotisationStatus.VERY_LATE

    @pytest.mark.parametrize("due_day", [1, 5, 15, 28, 31])
    @pytest.mark.parametrize("grace", [0, 3, 10])
    def test_status_never_regresses(self, due_day, grace):
        settings = CotisationSettings(due_day=due_day, grace_period_days=grace)
        record = self.record.model_copy(update={"month": 2})

        previous = 0
        moment = datetime(2024, 1, 20)
        while moment < datetime(2024, 6, 1):
            rank = STATUS_RANK[self.status_on(moment, record, settings)]
            assert rank >= previous, moment
            previous = rank
            moment += timedelta(hours=7)

        assert previous == STATUS_RANK[CotisationStatus.VERY_LATE]

    @pytest.mark.parametrize("paid", ["20", "20.00", "35"])
    def test_full_payment_is_paid_whatever_the_date(self, paid):
        record = self.record.model_copy(update={"paid_amount": Decimal(paid)})

        for moment in (date(2024, 2, 1), date(2024, 3, 10), date(2025, 3, 10)):
            assert self.status_on(moment, record) == CotisationStatus.PAID

    def test_manual_payment_counts_once_validated(self):
        recorder = build_member(self.association, roles={"tresorier"})
        validator = build_member(self.association, roles={"president"})
        now = datetime(2024, 3, 12, 9, 0)

        payload = RecordCotisationPayload(member_id=self.member.id, amount="20", month=3, year=2024)
        recorded = self.engine.record_cotisation_payment(
            self.record, self.member, self.association, payload, recorder, now
        )
        assert recorded.success
        assert self.status_on(now, recorded.value) == CotisationStatus.LATE

        validated = self.engine.validate_cotisation_payment(
            recorded.value, self.member, self.association, validator, True, now
        )
        assert validated.success
        assert self.status_on(now, validated.value.record) == CotisationStatus.PAID
        assert validated.value.member.total_contributed == Decimal("20")


class TestPermissionRules:
    """Effective permissions are deterministic and revokes always win."""

    @pytest.fixture(autouse=True)
    def setup_permissions(self):
        self.engine = GovernanceEngine(config=EngineConfig(environment="test"))
        self.association = build_association()

    def test_resolution_is_idempotent(self):
        member = build_member(self.association, roles={"tresorier", "secretaire"})

        first = self.engine.resolve_permissions(member, self.association)
        second = self.engine.resolve_permissions(member, self.association)
        assert first == second

    @pytest.mark.parametrize("permission", [Permission.VALIDATE_EXPENSES, Permission.VIEW_MEMBERS])
    def test_revoke_wins_in_any_role_order(self, permission):
        roles = ["tresorier", "tresorier_section", "secretaire", "president"]
        for ordering in itertools.permutations(roles):
            member = build_member(
                self.association,
                roles=ordering,
                permission_overrides=PermissionOverrides(grant={permission}, revoke={permission})
            )
            assert not self.engine.has_permission(member, self.association, permission)


class TestApprovalRules:
    """Approval workflow on single and multi-section associations."""

    @pytest.fixture(autouse=True)
    def setup_workflow(self):
        self.sink = Mock()
        self.engine = GovernanceEngine(config=EngineConfig(environment="test"), sink=self.sink)
        self.now = datetime(2024, 3, 20, 10, 0)

        self.association = build_association()
        self.president = build_member(self.association, roles={"president"})
        self.tresorier = build_member(self.association, roles={"tresorier"})
        self.requester = build_member(self.association)
        self.roster = [
            build_member(self.association, roles={"admin_association"}),
            self.president, self.tresorier, self.requester,
        ]

    def submit(self, association, requester, roster, sections=(), **kwargs):
        data = {
            "expense_type": "depense_operationnelle",
            "title": "Location de salle",
            "amount_requested": Decimal("800"),
        }
        data.update(kwargs)
        result = self.engine.create_expense_request(
            CreateExpensePayload(**data), association, requester, roster, self.now, sections
        )
        assert result.success, result.error
        return result.value

    def review(self, request, association, roster, reviewer, section=None):
        result = self.engine.begin_review(request, association, roster, reviewer, self.now, section=section)
        assert result.success, result.error
        return result.value

    def test_section_approval_then_central_escalation(self):
        association = build_association(multi_section=True, approval_ceiling=Decimal("5000"))
        section = Section(id="7", association_id=association.id, name="Section Lyon", country="FR")
        section_tresorier = build_member(association, roles={"tresorier_section"}, section_id="7")
        president = build_member(association, roles={"president"})
        requester = build_member(association, section_id="7")
        roster = [section_tresorier, president, requester]

        request = self.submit(association, requester, roster, section_id="7", sections=[section])
        request = self.review(request, association, roster, section_tresorier, section)

        approved = self.engine.record_approval_decision(
            request, association, roster, section_tresorier, ValidationDecision.APPROVED, "", self.now,
            expected_version=request.version, section=section
        )
        assert approved.success
        assert approved.value.status == ExpenseStatus.APPROVED

        escalated = self.engine.record_approval_decision(
            approved.value, association, roster, president, ValidationDecision.APPROVED, "Confirmé", self.now,
            expected_version=approved.value.version, section=section
        )
        assert escalated.success
        assert escalated.value.status == ExpenseStatus.APPROVED
        assert [e.tier.value for e in escalated.value.validation_history] == ["section", "central"]

    def test_central_veto_of_section_approval(self):
        association = build_association(multi_section=True, approval_ceiling=Decimal("5000"))
        section = Section(id="7", association_id=association.id, name="Section Lyon", country="FR")
        section_tresorier = build_member(association, roles={"tresorier_section"}, section_id="7")
        president = build_member(association, roles={"president"})
        requester = build_member(association, section_id="7")
        roster = [section_tresorier, president, requester]

        request = self.submit(association, requester, roster, section_id="7", sections=[section])
        request = self.review(request, association, roster, section_tresorier, section)
        approved = self.engine.record_approval_decision(
            request, association, roster, section_tresorier, ValidationDecision.APPROVED, "", self.now,
            section=section
        ).value
        self.sink.reset_mock()

        vetoed = self.engine.record_approval_decision(
            approved, association, roster, president, ValidationDecision.REJECTED, "Budget gelé", self.now,
            section=section
        )

        assert vetoed.value.status == ExpenseStatus.REJECTED
        event = self.sink.call_args[0][0]
        assert event.type == EventType.REQUEST_STATUS_CHANGED
        assert event.payload["veto"] is True

    def test_empty_rejection_comment_leaves_history_unchanged(self):
        request = self.submit(self.association, self.requester, self.roster)

        for comment in ("", "   ", None):
            result = self.engine.record_approval_decision(
                request, self.association, self.roster, self.tresorier, ValidationDecision.REJECTED,
                comment, self.now
            )
            assert result.error_kind == ErrorKind.VALIDATION
            assert result.value is None

        assert request.validation_history == []
        assert request.status == ExpenseStatus.PENDING
        self.sink.assert_not_called()

    def test_decision_before_review_is_refused(self):
        request = self.submit(self.association, self.requester, self.roster)

        result = self.engine.record_approval_decision(
            request, self.association, self.roster, self.tresorier, ValidationDecision.APPROVED, "", self.now
        )

        assert result.error_kind == ErrorKind.INVARIANT
        assert request.status == ExpenseStatus.PENDING
        self.sink.assert_not_called()

        reviewed = self.review(request, self.association, self.roster, self.president)
        approved = self.engine.record_approval_decision(
            reviewed, self.association, self.roster, self.tresorier, ValidationDecision.APPROVED, "", self.now
        )
        assert approved.value.status == ExpenseStatus.APPROVED

    @pytest.mark.parametrize("status", [
        ExpenseStatus.PENDING,
        ExpenseStatus.UNDER_REVIEW,
        ExpenseStatus.ADDITIONAL_INFO_NEEDED,
    ])
    def test_paid_only_from_approved(self, status):
        request = self.submit(self.association, self.requester, self.roster).model_copy(update={"status": status})

        result = self.engine.transition_to_paid(request, self.association, self.roster, self.president, self.now)

        assert result.error_kind == ErrorKind.INVARIANT

    def test_paid_after_approval(self):
        request = self.submit(self.association, self.requester, self.roster)
        request = self.review(request, self.association, self.roster, self.president)
        approved = self.engine.record_approval_decision(
            request, self.association, self.roster, self.tresorier, ValidationDecision.APPROVED, "", self.now
        ).value

        paid = self.engine.transition_to_paid(approved, self.association, self.roster, self.president, self.now)

        assert paid.value.status == ExpenseStatus.PAID
        assert paid.value.paid_at == self.now
        assert EventType.DEBIT_ASSOCIATION_BALANCE in [e.type for e in paid.events]


class TestLoanLedgerRules:
    """Loan lifecycle from request to settlement."""

    @pytest.fixture(autouse=True)
    def setup_loan(self):
        self.sink = Mock()
        self.engine = GovernanceEngine(config=EngineConfig(environment="test"), sink=self.sink)
        self.now = datetime(2024, 1, 1, 10, 0)

        self.association = build_association()
        self.president = build_member(self.association, roles={"president"})
        self.tresorier = build_member(self.association, roles={"tresorier"})
        self.borrower = build_member(self.association)
        self.roster = [self.president, self.tresorier, self.borrower]

        payload = CreateExpensePayload(
            expense_type="aide_membre",
            title="Prêt solidaire",
            amount_requested=Decimal("1200"),
            is_loan=True,
            loan_terms=LoanTerms(duration_months=12, interest_rate=Decimal("0"), monthly_payment=Decimal("100"))
        )
        request = self.engine.create_expense_request(
            payload, self.association, self.borrower, self.roster, self.now
        ).value
        request = self.engine.begin_review(
            request, self.association, self.roster, self.president, self.now
        ).value
        approved = self.engine.record_approval_decision(
            request, self.association, self.roster, self.tresorier, ValidationDecision.APPROVED, "", self.now
        ).value
        self.loan = self.engine.transition_to_paid(
            approved, self.association, self.roster, self.president, self.now
        ).value
        self.ledger = []

    def repay(self, amount, reference, payment_date=date(2024, 2, 1)):
        payload = RecordRepaymentPayload(amount=amount, payment_date=payment_date, manual_reference=reference)
        return self.engine.record_repayment(self.loan, self.ledger, payload, self.tresorier, self.now)

    def validate(self, repayment_id):
        return self.engine.validate_repayment(
            self.loan, self.ledger, repayment_id, self.association, self.roster, self.president,
            True, None, self.now
        )

    def test_approval_schedules_repayments(self):
        emitted = [call[0][0].type for call in self.sink.call_args_list]
        assert EventType.SCHEDULE_REPAYMENTS in emitted
        assert self.loan.status == ExpenseStatus.PAID

    def test_five_repayments_then_overshoot(self):
        for k in range(1, 6):
            recorded = self.repay(Decimal("100"), f"VIR-{k:03d}", date(2024, 1, 1) + timedelta(days=30 * k))
            self.ledger = recorded.value.ledger
            validated = self.validate(recorded.value.repayment.id)
            self.ledger = validated.value.ledger

        assert self.engine.compute_outstanding(self.loan, self.ledger).outstanding == Decimal("700")

        overshoot = self.repay(Decimal("750"), "VIR-006")
        assert overshoot.error_kind == ErrorKind.VALIDATION
        assert overshoot.value is None

    def test_validated_total_never_exceeds_amount_due(self):
        attempts = ["400", "450", "500", "300", "200", "50", "1"]
        for index, amount in enumerate(attempts):
            recorded = self.repay(Decimal(amount), f"REF-{index}")
            if recorded.success:
                self.ledger = recorded.value.ledger
                validated = self.validate(recorded.value.repayment.id)
                if validated.success:
                    self.ledger = validated.value.ledger

            summary = self.engine.compute_outstanding(self.loan, self.ledger)
            assert summary.total_repaid <= summary.total_due

        assert self.engine.compute_outstanding(self.loan, self.ledger).is_settled

    def test_concurrent_pending_repayments_cannot_overshoot(self):
        first = self.repay(Decimal("800"), "A")
        second = self.repay(Decimal("800"), "B")
        self.ledger = [first.value.repayment, second.value.repayment]

        validated = self.validate(first.value.repayment.id)
        assert validated.success
        self.ledger = validated.value.ledger

        result = self.validate(second.value.repayment.id)
        assert result.error_kind == ErrorKind.INVARIANT
        assert self.engine.compute_outstanding(self.loan, self.ledger).total_repaid == Decimal("800")


class TestAdminLockoutRules:
    """An association always keeps an administrator."""

    @pytest.fixture(autouse=True)
    def setup_admins(self):
        self.engine = GovernanceEngine(config=EngineConfig(environment="test"))
        self.association = build_association()
        self.admin = build_member(self.association, roles={SystemRole.ADMIN_ASSOCIATION.value})
        self.now = datetime(2024, 3, 20, 10, 0)

    def test_sole_admin_cannot_be_removed(self):
        result = self.engine.remove_role(
            self.admin, self.association, "admin_association", self.admin, [self.admin], self.now
        )
        assert result.error_kind == ErrorKind.INVARIANT

    def test_removal_allowed_with_second_admin(self):
        second = build_member(self.association, roles={"admin_association"})
        result = self.engine.remove_role(
            self.admin, self.association, "admin_association", second, [self.admin, second], self.now
        )
        assert result.success
        assert "admin_association" not in result.value.roles
