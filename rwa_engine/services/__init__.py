"""Service modules"""
from .calculation_engine import CalculationEngine
from .read_models import ReadModels
from .scheduler import RefreshScheduler
from .snapshots import SnapshotStore

__all__ = ["CalculationEngine", "ReadModels", "RefreshScheduler", "SnapshotStore"]
