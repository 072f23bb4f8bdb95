"""
Execution Module
================

Post-decision order sizing (primary + correlated shadow legs).
Order placement itself is an external collaborator.
"""
from .shadow_splitter import (
    SHADOW_MAPS,
    MAX_SHADOW_LEGS,
    ShadowLeg,
    ShadowSplitPlan,
    ShadowOrderSplitter,
)

__all__ = [
    'SHADOW_MAPS',
    'MAX_SHADOW_LEGS',
    'ShadowLeg',
    'ShadowSplitPlan',
    'ShadowOrderSplitter',
]
