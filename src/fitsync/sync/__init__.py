"""Sync orchestration for FitSync.

Modules:
    cycle     — One fetch → reconcile → score → publish pass for one user
    scheduler — Per-user non-reentrant triggering and the periodic loop
"""

from src.fitsync.sync.cycle import SyncCycle, SyncResult
from src.fitsync.sync.scheduler import SyncScheduler

__all__ = ["SyncCycle", "SyncResult", "SyncScheduler"]
