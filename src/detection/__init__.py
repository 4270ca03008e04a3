"""
Domino tile detection strategies and pip counting.
"""

from .base import DetectionStrategy, StrategyKind, select_strategy_kind
from .custom_model import CustomModelStrategy
from .heuristic import HeuristicStrategy
from .pip_counter import PipCounter
from .remote_api import RemoteApiStrategy

__all__ = [
    "DetectionStrategy",
    "StrategyKind",
    "select_strategy_kind",
    "CustomModelStrategy",
    "HeuristicStrategy",
    "PipCounter",
    "RemoteApiStrategy",
]
