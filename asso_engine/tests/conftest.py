# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from datetime import date, datetime
from decimal import Decimal
from bson import ObjectId

from asso_engine.models.entities import (
    Association, CotisationSettings, ExpenseRequest, LoanTerms, Member, MemberTypeConfig, Section
)
from asso_engine.models.enums import ExpenseStatus, ExpenseType, MemberStatus, Permission

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'


@pytest.fixture
def now():
    """Fixed engine time."""
    return datetime(2024, 3, 20, 12, 0, 0)


@pytest.fixture
def member_types():
    """Member type catalog shared by test associations."""
    return {
        "standard": MemberTypeConfig(
            name="standard",
            cotisation_amount=Decimal("25"),
            permissions={Permission.VIEW_MEMBERS}
        ),
        "etudiant": MemberTypeConfig(name="etudiant", cotisation_amount=Decimal("10")),
    }


@pytest.fixture
def association(member_types):
    """Single-section association."""
    return Association(
        name="Diaspora Solidarité",
        domiciliation_country="fr",
        primary_currency="eur",
        member_types=member_types,
        cotisation_settings=CotisationSettings(due_day=5, grace_period_days=3)
    )


@pytest.fixture
def multi_section_association(member_types):
    """Multi-section association with an approval ceiling."""
    return Association(
        name="Union des Ressortissants",
        domiciliation_country="FR",
        primary_currency="EUR",
        is_multi_section=True,
        member_types=member_types,
        cotisation_settings=CotisationSettings(due_day=5, grace_period_days=3),
        approval_ceiling=Decimal("5000")
    )


@pytest.fixture
def make_member():
    """Factory building members of an association."""
    def _make(association, roles=(), section_id=None, status=MemberStatus.ACTIVE,
              member_type="standard", join_date=date(2023, 1, 1), **kwargs):
        return Member(
            association_id=association.id,
            user_id=str(ObjectId()),
            section_id=section_id,
            member_type=member_type,
            status=status,
            join_date=join_date,
            roles=set(roles),
            cotisation_amount=association.member_types[member_type].cotisation_amount,
            **kwargs
        )
    return _make


@pytest.fixture
def team(association, make_member):
    """Bureau and members of the single-section association."""
    return {
        "admin": make_member(association, roles={"admin_association"}),
        "president": make_member(association, roles={"president"}),
        "tresorier": make_member(association, roles={"tresorier"}),
        "secretaire": make_member(association, roles={"secretaire"}),
        "member": make_member(association),
        "other_member": make_member(association, member_type="etudiant"),
    }


@pytest.fixture
def roster(team):
    """Roster snapshot of the single-section association."""
    return list(team.values())


@pytest.fixture
def section(multi_section_association):
    """Section 7 of the multi-section association."""
    return Section(
        id="section_7",
        association_id=multi_section_association.id,
        name="Section Lyon",
        country="FR",
        city="Lyon"
    )


@pytest.fixture
def other_section(multi_section_association):
    """Section 9 of the multi-section association."""
    return Section(
        id="section_9",
        association_id=multi_section_association.id,
        name="Section Bruxelles",
        country="BE",
        city="Bruxelles"
    )


@pytest.fixture
def section_team(multi_section_association, make_member, section, other_section):
    """Central bureau, section 7 officers and members of the multi-section association."""
    asso = multi_section_association
    return {
        "admin": make_member(asso, roles={"admin_association"}),
        "president": make_member(asso, roles={"president"}),
        "tresorier": make_member(asso, roles={"tresorier"}),
        "tresorier_section": make_member(asso, roles={"tresorier_section"}, section_id=section.id),
        "responsable_section": make_member(asso, roles={"responsable_section"}, section_id=section.id),
        "tresorier_other_section": make_member(asso, roles={"tresorier_section"}, section_id=other_section.id),
        "member": make_member(asso, section_id=section.id),
    }


@pytest.fixture
def section_roster(section_team):
    """Roster snapshot of the multi-section association."""
    return list(section_team.values())


@pytest.fixture
def make_loan():
    """Factory building disbursed loans."""
    def _make(association, requester, amount=Decimal("1200"), duration=12, rate=Decimal("0"),
              monthly=None, status=ExpenseStatus.PAID, paid_at=datetime(2024, 1, 1, 10, 0), **kwargs):
        monthly = monthly if monthly is not None else (amount / duration).quantize(Decimal("0.01"))
        return ExpenseRequest(
            association_id=association.id,
            requester_id=requester.id,
            beneficiary_member_id=requester.id,
            expense_type=ExpenseType.AIDE_MEMBRE,
            title="Prêt solidaire",
            amount_requested=amount,
            is_loan=True,
            loan_terms=LoanTerms(duration_months=duration, interest_rate=rate, monthly_payment=monthly),
            status=status,
            paid_at=paid_at if status == ExpenseStatus.PAID else None,
            **kwargs
        )
    return _make
