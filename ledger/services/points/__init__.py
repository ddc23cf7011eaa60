"""
Points services package.

- ledger: awards points and settles them in one transaction
- priority: spends banked points on virtual referrals
- conversion: manual points to cash exchange
- capabilities: read-only projection of what points could buy
"""

from ledger.services.points.capabilities import (
    PointsCapabilities,
    project_capabilities,
)
from ledger.services.points.conversion import ConversionResult, ConversionService
from ledger.services.points.ledger import AwardResult, PointsLedger
from ledger.services.points.priority import (
    PriorityProcessor,
    SettlementResult,
    StopReason,
)


__all__ = [
    "AwardResult",
    "ConversionResult",
    "ConversionService",
    "PointsCapabilities",
    "PointsLedger",
    "PriorityProcessor",
    "SettlementResult",
    "StopReason",
    "project_capabilities",
]
