# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Command payload models submitted to the engine by the application layer.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .entities import ExternalBeneficiary, LoanTerms
from .enums import ExpenseType, UrgencyLevel, PaymentMethod, CotisationSource


class CreateExpensePayload(BaseModel):
    """Payload for creating an expense or loan request."""

    model_config = ConfigDict(validate_assignment=True)

    expense_type: ExpenseType = Field(..., description="Expense category")
    title: str = Field(..., min_length=1, max_length=200, description="Request title")
    description: str = Field(default="", max_length=5000, description="Request description")
    amount_requested: Decimal = Field(..., description="Requested amount")
    currency: Optional[str] = Field(None, description="Defaults to the association currency")
    urgency_level: UrgencyLevel = Field(default=UrgencyLevel.NORMAL)
    section_id: Optional[str] = Field(None, description="Section scope of the request")
    beneficiary_member_id: Optional[str] = Field(None)
    beneficiary_external: Optional[ExternalBeneficiary] = Field(None)
    is_loan: bool = Field(default=False)
    loan_terms: Optional[LoanTerms] = Field(None)

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        """Validate request title."""
        if not v.strip():
            raise ValueError('Request title cannot be empty')
        return v.strip()


class RecordRepaymentPayload(BaseModel):
    """Payload for recording a loan repayment (phase 1)."""

    amount: Decimal = Field(..., description="Amount counted against the balance")
    payment_date: date = Field(..., description="Date the payment was made")
    manual_reference: str = Field(default="", max_length=100, description="Reference unique per loan")
    payment_method: PaymentMethod = Field(default=PaymentMethod.BANK_TRANSFER)
    penalty_amount: Decimal = Field(default=Decimal("0"), description="Explicit late penalty")
    principal_amount: Optional[Decimal] = Field(None, description="Principal share, derived when omitted")
    interest_amount: Optional[Decimal] = Field(None, description="Interest share, derived when omitted")
    installment_number: Optional[int] = Field(None, description="Installment index, next one when omitted")
    notes: Optional[str] = Field(None, max_length=1000)


class RecordCotisationPayload(BaseModel):
    """Payload for recording a manual cotisation payment (phase 1)."""

    member_id: str = Field(..., description="Member paying")
    amount: Decimal = Field(..., description="Amount received")
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=2999)
    payment_method: PaymentMethod = Field(default=PaymentMethod.CASH)
    payment_date: Optional[date] = Field(None, description="Defaults to the engine date")
    source: CotisationSource = Field(default=CotisationSource.MANUAL)
    reason: Optional[str] = Field(None, max_length=500)
