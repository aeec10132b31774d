# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas for the association governance engine.
"""

# Base models
from .base import BaseEntity, ScopedEntity, generate_object_id

# Enumerations
from .enums import (
    MemberStatus,
    Permission,
    SystemRole,
    VisibilityLevel,
    AuthorityTier,
    CotisationStatus,
    MemberCotisationStatus,
    CotisationSource,
    PaymentMethod,
    ExpenseType,
    ExpenseStatus,
    UrgencyLevel,
    ValidationDecision,
    RepaymentStatus,
    EventType
)

# Core entities
from .entities import (
    MemberTypeConfig,
    CotisationSettings,
    PermissionOverrides,
    Role,
    Association,
    SectionBureau,
    Section,
    Member,
    ExternalBeneficiary,
    LoanTerms,
    ValidationEntry,
    ExpenseRequest,
    CotisationRecord,
    Repayment,
    DomainEvent
)

# Command payloads
from .requests import (
    CreateExpensePayload,
    RecordRepaymentPayload,
    RecordCotisationPayload
)

__all__ = [
    # Base models
    "BaseEntity",
    "ScopedEntity",
    "generate_object_id",

    # Enumerations
    "MemberStatus",
    "Permission",
    "SystemRole",
    "VisibilityLevel",
    "AuthorityTier",
    "CotisationStatus",
    "MemberCotisationStatus",
    "CotisationSource",
    "PaymentMethod",
    "ExpenseType",
    "ExpenseStatus",
    "UrgencyLevel",
    "ValidationDecision",
    "RepaymentStatus",
    "EventType",

    # Core entities
    "MemberTypeConfig",
    "CotisationSettings",
    "PermissionOverrides",
    "Role",
    "Association",
    "SectionBureau",
    "Section",
    "Member",
    "ExternalBeneficiary",
    "LoanTerms",
    "ValidationEntry",
    "ExpenseRequest",
    "CotisationRecord",
    "Repayment",
    "DomainEvent",

    # Command payloads
    "CreateExpensePayload",
    "RecordRepaymentPayload",
    "RecordCotisationPayload"
]
