from .metrics import EngineStats, ObservatorySnapshot, PerformanceObservatory, QuerySample

__all__ = ["EngineStats", "ObservatorySnapshot", "PerformanceObservatory", "QuerySample"]
