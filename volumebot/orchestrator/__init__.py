"""
Orchestrator package - cycle execution and run lifecycle.
"""

from volumebot.orchestrator.cycle_orchestrator import (
    CycleOrchestrator,
    CycleResult,
    StopToken,
    StoppedByUser,
    sell_bounds,
    should_sell,
)
from volumebot.orchestrator.run_controller import RunController, RunOutcome, RunPhase

__all__ = [
    "CycleOrchestrator",
    "CycleResult",
    "StopToken",
    "StoppedByUser",
    "sell_bounds",
    "should_sell",
    "RunController",
    "RunOutcome",
    "RunPhase",
]
