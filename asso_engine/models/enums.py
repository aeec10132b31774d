# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the association governance engine.
"""

from enum import Enum


class MemberStatus(str, Enum):
    """Membership status enumeration."""
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class Permission(str, Enum):
    """Closed catalog of permissions an association can hand out."""
    # Finances
    VIEW_TREASURY = "finances.view_treasury"
    MANAGE_BUDGETS = "finances.manage_budgets"
    VALIDATE_EXPENSES = "finances.validate_expenses"
    CREATE_INCOME = "finances.create_income"
    EXPORT_FINANCIAL_DATA = "finances.export_data"
    # Members
    VIEW_MEMBERS = "membres.view_list"
    MANAGE_MEMBERS = "membres.manage_members"
    APPROVE_MEMBERS = "membres.approve_members"
    VIEW_MEMBER_DETAILS = "membres.view_details"
    EXPORT_MEMBERS = "membres.export_data"
    # Administration
    MANAGE_ROLES = "administration.manage_roles"
    MODIFY_SETTINGS = "administration.modify_settings"
    VIEW_REPORTS = "administration.view_reports"
    MANAGE_SECTIONS = "administration.manage_sections"
    # Documents
    UPLOAD_DOCUMENTS = "documents.upload"
    MANAGE_DOCUMENTS = "documents.manage"
    VALIDATE_DOCUMENTS = "documents.validate"
    # Events
    CREATE_EVENTS = "evenements.create"
    MANAGE_EVENTS = "evenements.manage"
    VIEW_ATTENDANCE = "evenements.view_attendance"

    @property
    def category(self) -> str:
        """Permission category (prefix before the dot)."""
        return self.value.split(".", 1)[0]


class SystemRole(str, Enum):
    """Built-in roles. These can be customised but never deleted."""
    PRESIDENT = "president"
    SECRETAIRE = "secretaire"
    TRESORIER = "tresorier"
    ADMIN_ASSOCIATION = "admin_association"
    RESPONSABLE_SECTION = "responsable_section"
    SECRETAIRE_SECTION = "secretaire_section"
    TRESORIER_SECTION = "tresorier_section"


class VisibilityLevel(int, Enum):
    """Minimum visibility required to access a feature, ordered."""
    PUBLIC = 0
    MEMBERS = 1
    BUREAU = 2
    ADMIN = 3


class AuthorityTier(str, Enum):
    """Which level of the association an approval authority comes from."""
    CENTRAL = "central"
    SECTION = "section"


class CotisationStatus(str, Enum):
    """Status of a single cotisation period."""
    PAID = "paid"
    PENDING = "pending"
    LATE = "late"
    VERY_LATE = "very_late"


class MemberCotisationStatus(str, Enum):
    """Aggregate dues status of a member."""
    UPTODATE = "uptodate"
    LATE = "late"
    VERY_LATE = "very_late"


class CotisationSource(str, Enum):
    """Origin of a cotisation payment."""
    MANUAL = "manual"
    TRANSFER = "transfer"
    CARD = "card"
    IMPORT = "import"


class PaymentMethod(str, Enum):
    """Payment methods accepted for cotisations and repayments."""
    BANK_TRANSFER = "bank_transfer"
    CARD_PAYMENT = "card_payment"
    CASH = "cash"
    CHECK = "check"
    MOBILE_MONEY = "mobile_money"


class ExpenseType(str, Enum):
    """Expense request categories."""
    AIDE_MEMBRE = "aide_membre"
    DEPENSE_OPERATIONNELLE = "depense_operationnelle"
    PRET_PARTENARIAT = "pret_partenariat"
    PROJET_SPECIAL = "projet_special"
    URGENCE_COMMUNAUTAIRE = "urgence_communautaire"


class ExpenseStatus(str, Enum):
    """Expense request workflow status."""
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    ADDITIONAL_INFO_NEEDED = "additional_info_needed"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"


class UrgencyLevel(str, Enum):
    """Urgency of an expense request."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class ValidationDecision(str, Enum):
    """Decision a validator can record on an expense request."""
    APPROVED = "approved"
    REJECTED = "rejected"
    INFO_REQUESTED = "info_requested"


class RepaymentStatus(str, Enum):
    """Repayment dual-control status."""
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


class EventType(str, Enum):
    """Domain events emitted by the engine for external collaborators."""
    SCHEDULE_REPAYMENTS = "schedule_repayments"
    DEBIT_ASSOCIATION_BALANCE = "debit_association_balance"
    REQUEST_STATUS_CHANGED = "request_status_changed"
    REPAYMENT_RECORDED = "repayment_recorded"
    REPAYMENT_VALIDATED = "repayment_validated"
    REPAYMENT_REJECTED = "repayment_rejected"
    LOAN_SETTLED = "loan_settled"
    COTISATION_RECORDED = "cotisation_recorded"
    COTISATION_VALIDATED = "cotisation_validated"
    SEND_REMINDER = "send_reminder"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"
    ADMIN_TRANSFERRED = "admin_transferred"
    MEMBER_SECTION_REASSIGNED = "member_section_reassigned"
