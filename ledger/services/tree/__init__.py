"""
Referral tree services package.

- placement: breadth-first slot assignment with spillover
- registration: creates real users at their tree slot
"""

from ledger.services.tree.placement import TreePlacementService, TreeSlot
from ledger.services.tree.registration import UserRegistrationService


__all__ = [
    "TreePlacementService",
    "TreeSlot",
    "UserRegistrationService",
]
