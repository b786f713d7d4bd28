from istream_abr.modules.abr.abr_bola import BufferOccupancyDecider
from istream_abr.modules.abr.abr_l2a import DriftPlusPenaltyOptimizer
from istream_abr.modules.abr.engine import DecisionEngine
from istream_abr.modules.abr.placeholder import PlaceholderBufferTracker
from istream_abr.modules.abr.state_machine import StateMachine

__all__ = [
    "BufferOccupancyDecider",
    "DecisionEngine",
    "DriftPlusPenaltyOptimizer",
    "PlaceholderBufferTracker",
    "StateMachine",
]
