# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Engine façade and event publication.
"""

from .events import EventPublisher, EventSink, PublishResult
from .governance import GovernanceEngine, create_governance_engine

__all__ = [
    "EventPublisher",
    "EventSink",
    "PublishResult",
    "GovernanceEngine",
    "create_governance_engine"
]
