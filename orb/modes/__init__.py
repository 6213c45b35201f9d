"""Mode management - the single owner of "current mode"

Components:
    service.py: ModeService (validated, lock-guarded mode transitions)
"""

from orb.modes.service import ConfirmCallback, ModeService

__all__ = ["ModeService", "ConfirmCallback"]
