# SPDX-License-Identifier: Apache-2.0

"""
Engine configuration loaded from the environment.
"""

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from .domain.cotisations import DEFAULT_STATUS_WINDOW_MONTHS, VERY_LATE_AFTER_DAYS
from .domain.repayments import INSTALLMENT_PERIOD_DAYS


logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Tunable thresholds of the governance engine."""
    environment: str = "development"
    very_late_after_days: int = VERY_LATE_AFTER_DAYS
    status_window_months: int = DEFAULT_STATUS_WINDOW_MONTHS
    installment_period_days: int = INSTALLMENT_PERIOD_DAYS
    default_approval_ceiling: Optional[Decimal] = None
    otel_enabled: bool = True

    def __post_init__(self):
        if self.very_late_after_days < 0:
            raise ValueError("very_late_after_days cannot be negative")
        if self.status_window_months < 1:
            raise ValueError("status_window_months must be at least 1")
        if self.installment_period_days < 1:
            raise ValueError("installment_period_days must be at least 1")
        if self.default_approval_ceiling is not None and self.default_approval_ceiling <= 0:
            raise ValueError("default_approval_ceiling must be positive")


def _parse_ceiling(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None or not raw.strip():
        return None
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"ASSO_DEFAULT_APPROVAL_CEILING is not a number: {raw!r}")


def load_engine_config() -> EngineConfig:
    """
    Factory function to create the engine configuration from environment.

    Returns:
        EngineConfig: Configuration with defaults for unset variables
    """
    config = EngineConfig(
        environment=os.getenv('ENVIRONMENT', 'development'),
        very_late_after_days=int(os.getenv('ASSO_VERY_LATE_AFTER_DAYS', str(VERY_LATE_AFTER_DAYS))),
        status_window_months=int(os.getenv('ASSO_STATUS_WINDOW_MONTHS', str(DEFAULT_STATUS_WINDOW_MONTHS))),
        installment_period_days=int(os.getenv('ASSO_INSTALLMENT_PERIOD_DAYS', str(INSTALLMENT_PERIOD_DAYS))),
        default_approval_ceiling=_parse_ceiling(os.getenv('ASSO_DEFAULT_APPROVAL_CEILING')),
        otel_enabled=os.getenv('OTEL_ENABLED', 'true').lower() == 'true'
    )

    logger.debug(
        "Engine configuration loaded",
        extra={
            "extra_fields": {
                "environment": config.environment,
                "very_late_after_days": config.very_late_after_days,
                "status_window_months": config.status_window_months,
                "installment_period_days": config.installment_period_days,
            }
        }
    )
    return config
