from .selector import ANALYTICAL_MARKERS, OLAP_HINT, EngineType, choose_engine, looks_analytical

__all__ = [
    "ANALYTICAL_MARKERS",
    "OLAP_HINT",
    "EngineType",
    "choose_engine",
    "looks_analytical",
]
