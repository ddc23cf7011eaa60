"""
Ledger services.

- tree: placement and registration
- commission: commission allocation and distribution
- points: points ledger, priority processor, conversion, capabilities
- reporting: histories, fund summary and audits
- ledger_service: transactional facade with conflict retry
"""

from ledger.services.ledger_service import (
    LedgerService,
    OrderCompletedEvent,
    OrderOutcome,
)
from ledger.services.settings_snapshot import (
    ProgramSettingsSnapshot,
    load_settings_snapshot,
)


__all__ = [
    "LedgerService",
    "OrderCompletedEvent",
    "OrderOutcome",
    "ProgramSettingsSnapshot",
    "load_settings_snapshot",
]
