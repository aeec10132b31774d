# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the association governance engine.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Dict, Any, Set
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, ScopedEntity, generate_object_id
from .enums import (
    MemberStatus,
    Permission,
    SystemRole,
    VisibilityLevel,
    AuthorityTier,
    CotisationSource,
    PaymentMethod,
    ExpenseType,
    ExpenseStatus,
    UrgencyLevel,
    ValidationDecision,
    RepaymentStatus,
    EventType
)


class MemberTypeConfig(BaseModel):
    """Member type catalog entry with its fixed monthly cotisation."""

    name: str = Field(..., min_length=1, max_length=100, description="Member type name")
    description: Optional[str] = Field(None, max_length=500, description="Member type description")
    cotisation_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Monthly cotisation amount")
    permissions: Set[Permission] = Field(default_factory=set, description="Permissions granted by the type")
    requires_approval: bool = Field(default=False, description="Whether membership requires approval")
    default_roles: List[str] = Field(default_factory=list, description="Roles given on assignment")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate member type name."""
        if not v.strip():
            raise ValueError('Member type name cannot be empty')
        return v.strip()


class CotisationSettings(BaseModel):
    """Dues calendar of an association."""

    due_day: int = Field(default=5, ge=1, le=31, description="Day of month cotisations are due")
    grace_period_days: int = Field(default=0, ge=0, description="Days of tolerance after the due day")
    late_fees_enabled: bool = Field(default=False, description="Whether late fees apply")
    late_fees_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Flat late fee amount")
    inactivity_threshold_months: int = Field(default=3, ge=1, description="Unpaid months before inactivity")


class PermissionOverrides(BaseModel):
    """Per-member grants and revokes layered on top of role permissions."""

    grant: Set[Permission] = Field(default_factory=set, description="Explicitly granted permissions")
    revoke: Set[Permission] = Field(default_factory=set, description="Explicitly revoked permissions")


class Role(BaseModel):
    """Named permission bundle scoped to an association."""

    id: str = Field(..., min_length=1, description="Role identifier")
    name: str = Field(..., min_length=1, max_length=100, description="Role name")
    description: Optional[str] = Field(None, max_length=500, description="Role description")
    color: str = Field(default="#6B7280", description="UI color code")
    permissions: Set[Permission] = Field(default_factory=set, description="Permissions of the role")
    is_system: bool = Field(default=False, description="Whether this is a built-in role")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate role name."""
        if not v.strip():
            raise ValueError('Role name cannot be empty')
        return v.strip()

    @field_validator('color')
    @classmethod
    def validate_color(cls, v):
        """Validate color format."""
        if not re.match(r'^#[0-9A-Fa-f]{6}$', v):
            raise ValueError('Color must be a valid hex color code')
        return v

    @model_validator(mode='after')
    def validate_system_flag(self):
        """System roles must use a built-in identifier."""
        system_ids = {role.value for role in SystemRole}
        if self.is_system and self.id not in system_ids:
            raise ValueError(f'Unknown system role: {self.id}')
        if not self.is_system and self.id in system_ids:
            raise ValueError(f'Role id {self.id} is reserved for system roles')
        return self


class Association(BaseEntity):
    """Root aggregate: the community organization."""

    name: str = Field(..., min_length=1, max_length=200, description="Association name")
    legal_status: Optional[str] = Field(None, max_length=100, description="Legal status")
    domiciliation_country: str = Field(..., description="ISO 3166 country code")
    primary_currency: str = Field(default="EUR", description="ISO 4217 currency code")
    is_multi_section: bool = Field(default=False, description="Whether the association has sections")
    member_types: Dict[str, MemberTypeConfig] = Field(default_factory=dict, description="Member type catalog")
    cotisation_settings: CotisationSettings = Field(default_factory=CotisationSettings)
    access_rights: Dict[str, VisibilityLevel] = Field(default_factory=dict, description="Feature visibility")
    roles: List[Role] = Field(default_factory=list, description="Role catalog")
    approval_ceiling: Optional[Decimal] = Field(None, ge=0, description="Amount above which central approval is required")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate association name."""
        if not v.strip():
            raise ValueError('Association name cannot be empty')
        return v.strip()

    @field_validator('domiciliation_country')
    @classmethod
    def validate_country(cls, v):
        """Validate country code format."""
        if not re.match(r'^[A-Za-z]{2}$', v):
            raise ValueError('Country must be a 2-letter ISO code')
        return v.upper()

    @field_validator('primary_currency')
    @classmethod
    def validate_currency(cls, v):
        """Validate currency code format."""
        if not re.match(r'^[A-Za-z]{3}$', v):
            raise ValueError('Currency must be a 3-letter ISO code')
        return v.upper()

    @model_validator(mode='after')
    def validate_catalogs(self):
        """Validate role and member type catalogs."""
        role_ids = [role.id for role in self.roles]
        if len(role_ids) != len(set(role_ids)):
            raise ValueError('Duplicate role id in role catalog')

        for key, config in self.member_types.items():
            if key != config.name:
                raise ValueError(f'Member type key "{key}" does not match its name "{config.name}"')

        return self

    def get_role(self, role_id: str) -> Optional[Role]:
        """Look up a role in the association's catalog."""
        for role in self.roles:
            if role.id == role_id:
                return role
        return None

    def get_member_type(self, name: str) -> Optional[MemberTypeConfig]:
        """Look up a member type in the catalog."""
        return self.member_types.get(name)


class SectionBureau(BaseModel):
    """Section officers, each an optional member reference."""

    responsable_id: Optional[str] = None
    secretaire_id: Optional[str] = None
    tresorier_id: Optional[str] = None

    def member_ids(self) -> Set[str]:
        """Members sitting on the bureau."""
        return {mid for mid in (self.responsable_id, self.secretaire_id, self.tresorier_id) if mid}


class Section(ScopedEntity):
    """Geographic subdivision of a multi-section association."""

    name: str = Field(..., min_length=1, max_length=200, description="Section name")
    country: str = Field(..., description="ISO 3166 country code")
    city: Optional[str] = Field(None, max_length=200, description="Section city")
    currency: str = Field(default="EUR", description="Section currency")
    language: str = Field(default="fr", description="Main language")
    bureau: SectionBureau = Field(default_factory=SectionBureau)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate section name."""
        if not v.strip():
            raise ValueError('Section name cannot be empty')
        return v.strip()

    @field_validator('country')
    @classmethod
    def validate_country(cls, v):
        """Validate country code format."""
        if not re.match(r'^[A-Za-z]{2}$', v):
            raise ValueError('Country must be a 2-letter ISO code')
        return v.upper()


class Member(ScopedEntity):
    """Membership of a user in an association."""

    user_id: str = Field(..., description="User identifier")
    section_id: Optional[str] = Field(None, description="Section, None for the central body")
    member_type: str = Field(..., min_length=1, description="Key into the member type catalog")
    status: MemberStatus = Field(default=MemberStatus.ACTIVE, description="Membership status")
    join_date: date = Field(..., description="Date the member joined")
    roles: Set[str] = Field(default_factory=set, description="Assigned role identifiers")
    cotisation_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Cotisation snapshot")
    total_contributed: Decimal = Field(default=Decimal("0"), ge=0, description="Running sum of validated dues")
    permission_overrides: PermissionOverrides = Field(default_factory=PermissionOverrides)

    def is_active(self) -> bool:
        """Check if membership is active."""
        return self.status == MemberStatus.ACTIVE

    def has_role(self, role_id: str) -> bool:
        """Check if the member holds a role."""
        return role_id in self.roles


class ExternalBeneficiary(BaseModel):
    """Beneficiary outside the association."""

    name: str = Field(..., min_length=1, max_length=200)
    contact: Optional[str] = Field(None, max_length=200)
    organization: Optional[str] = Field(None, max_length=200)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate beneficiary name."""
        if not v.strip():
            raise ValueError('Beneficiary name cannot be empty')
        return v.strip()


class LoanTerms(BaseModel):
    """Loan terms; all three values must be set before review."""

    duration_months: Optional[int] = Field(None, gt=0, description="Number of monthly installments")
    interest_rate: Optional[Decimal] = Field(None, ge=0, description="Annual interest rate in percent")
    monthly_payment: Optional[Decimal] = Field(None, gt=0, description="Installment amount")

    def is_complete(self) -> bool:
        """Check if all loan terms are populated."""
        return (
            self.duration_months is not None
            and self.interest_rate is not None
            and self.monthly_payment is not None
        )

    def missing_fields(self) -> List[str]:
        """Names of the terms still missing."""
        return [
            name for name in ('duration_months', 'interest_rate', 'monthly_payment')
            if getattr(self, name) is None
        ]


class ValidationEntry(BaseModel):
    """One validator decision in an expense request history."""

    validator_id: str = Field(..., description="Member who decided")
    role: str = Field(..., description="Role the decision was taken under")
    tier: AuthorityTier = Field(..., description="Authority tier of the validator")
    decision: ValidationDecision = Field(..., description="Decision taken")
    comment: str = Field(default="", max_length=2000, description="Decision rationale")
    timestamp: datetime = Field(..., description="When the decision was recorded")
    review_cycle: int = Field(default=1, ge=1, description="Review cycle the decision belongs to")


class ExpenseRequest(ScopedEntity):
    """Funds disbursement request subject to approval."""

    section_id: Optional[str] = Field(None, description="Section narrowing the request scope")
    requester_id: str = Field(..., description="Requesting member")
    beneficiary_member_id: Optional[str] = Field(None, description="Internal beneficiary")
    beneficiary_external: Optional[ExternalBeneficiary] = Field(None, description="External beneficiary")
    expense_type: ExpenseType = Field(..., description="Expense category")
    title: str = Field(..., min_length=1, max_length=200, description="Request title")
    description: str = Field(default="", max_length=5000, description="Request description")
    amount_requested: Decimal = Field(..., gt=0, description="Requested amount")
    currency: str = Field(default="EUR", description="Currency of the amount")
    urgency_level: UrgencyLevel = Field(default=UrgencyLevel.NORMAL, description="Urgency")
    is_loan: bool = Field(default=False, description="Whether the request is a loan")
    loan_terms: Optional[LoanTerms] = Field(None, description="Loan terms when is_loan")
    status: ExpenseStatus = Field(default=ExpenseStatus.PENDING, description="Workflow status")
    validation_history: List[ValidationEntry] = Field(default_factory=list)
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")
    review_cycle: int = Field(default=1, ge=1, description="Current review cycle")
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        """Validate request title."""
        if not v.strip():
            raise ValueError('Request title cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def validate_beneficiary_and_terms(self):
        """Validate beneficiary exclusivity and loan terms presence."""
        if self.beneficiary_member_id and self.beneficiary_external:
            raise ValueError('Beneficiary must be either a member or external, not both')

        if self.loan_terms is not None and not self.is_loan:
            raise ValueError('Loan terms are only allowed on loan requests')

        if self.status == ExpenseStatus.REJECTED and not self.rejection_reason:
            raise ValueError('Rejection reason is required when status is rejected')

        return self

    def current_cycle_entries(self) -> List[ValidationEntry]:
        """Decisions recorded during the current review cycle."""
        return [e for e in self.validation_history if e.review_cycle == self.review_cycle]

    def has_decided(self, validator_id: str) -> bool:
        """Check if a validator already decided in the current review cycle."""
        return any(e.validator_id == validator_id for e in self.current_cycle_entries())

    def is_terminal(self) -> bool:
        """Check if the request reached a terminal status."""
        return self.status in (ExpenseStatus.REJECTED, ExpenseStatus.PAID, ExpenseStatus.CANCELLED)


class CotisationRecord(ScopedEntity):
    """Dues of one member for one (month, year) period."""

    member_id: str = Field(..., description="Member owing the cotisation")
    month: int = Field(..., ge=1, le=12, description="Period month")
    year: int = Field(..., ge=1900, le=2999, description="Period year")
    expected_amount: Decimal = Field(..., ge=0, description="Amount due for the period")
    paid_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Validated amount paid")
    pending_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Recorded, awaiting validation")
    payment_method: Optional[PaymentMethod] = Field(None, description="Last payment method")
    payment_date: Optional[date] = Field(None, description="Last payment date")
    source: CotisationSource = Field(default=CotisationSource.MANUAL, description="Payment origin")
    validator_id: Optional[str] = Field(None, description="Member who confirmed the payment")
    recorded_by: Optional[str] = Field(None, description="Member who recorded the pending payment")

    @property
    def period(self) -> tuple:
        """Sortable (year, month) key."""
        return (self.year, self.month)

    def has_pending_validation(self) -> bool:
        """Check if a recorded payment awaits validation."""
        return self.pending_amount > 0


class Repayment(ScopedEntity):
    """Installment paid against a loan."""

    expense_request_id: str = Field(..., description="Loan being repaid")
    amount: Decimal = Field(..., gt=0, description="Amount counted against the balance")
    principal_amount: Decimal = Field(default=Decimal("0"), ge=0)
    interest_amount: Decimal = Field(default=Decimal("0"), ge=0)
    penalty_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Explicit late penalty")
    payment_date: date = Field(..., description="Date the payment was made")
    due_date: date = Field(..., description="Due date of the installment")
    installment_number: int = Field(..., ge=1, description="Installment index, starting at 1")
    days_late: int = Field(default=0, ge=0, description="Days between due date and payment date")
    payment_method: PaymentMethod = Field(default=PaymentMethod.BANK_TRANSFER)
    manual_reference: str = Field(..., min_length=1, max_length=100, description="Reference unique per loan")
    status: RepaymentStatus = Field(default=RepaymentStatus.PENDING)
    validator_id: Optional[str] = None
    recorded_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('manual_reference')
    @classmethod
    def validate_reference(cls, v):
        """Validate manual reference."""
        if not v.strip():
            raise ValueError('Manual reference cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def validate_split(self):
        """Principal and interest must add up to the amount."""
        if self.principal_amount + self.interest_amount != self.amount:
            raise ValueError('Principal and interest must add up to the repayment amount')
        return self


class DomainEvent(BaseModel):
    """Event emitted by the engine for external collaborators to act on."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_object_id, description="Event identifier")
    type: EventType = Field(..., description="Event type")
    association_id: str = Field(..., description="Association scope")
    aggregate_id: str = Field(..., description="Entity the event is about")
    occurred_at: datetime = Field(..., description="Injected engine time")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event data")
