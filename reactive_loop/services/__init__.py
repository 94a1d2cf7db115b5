"""Service modules"""
from .engine import CommandResult, LoopEngine
from .event_monitor import LoopEventMonitor
from .metrics import MetricsProjector
from .permit import PermitAuthorizer
from .position_reader import PositionReader
from .reconciler import SessionStatus
from .session import LoopSession, SessionView
from .termination import StopReason, TerminationPolicy, Watchdog
from .timeline import ActivityTimeline
from .transactions import DepositInitiator, PositionWriter

__all__ = [
    "ActivityTimeline",
    "CommandResult",
    "DepositInitiator",
    "LoopEngine",
    "LoopEventMonitor",
    "LoopSession",
    "MetricsProjector",
    "PermitAuthorizer",
    "PositionReader",
    "PositionWriter",
    "SessionStatus",
    "SessionView",
    "StopReason",
    "TerminationPolicy",
    "Watchdog",
]
