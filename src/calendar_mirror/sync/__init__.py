"""
Mirror engine: pure reconciliation planning plus the run orchestrator.
"""

from calendar_mirror.sync.reconciler import PairGroup
from calendar_mirror.sync.reconciler import plan
from calendar_mirror.sync.reconciler import plan_clear
from calendar_mirror.sync.runner import RunPhase
from calendar_mirror.sync.runner import SyncRunner

__all__ = ["PairGroup", "RunPhase", "SyncRunner", "plan", "plan_clear"]
