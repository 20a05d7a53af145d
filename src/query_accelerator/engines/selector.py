"""
Engine Selector
Routes SQL to the transactional or analytical engine with string heuristics.

This is deliberately not a SQL parser: analytical queries the markers miss
route to the transactional engine and simply run unaccelerated.
"""

from enum import Enum


class EngineType(str, Enum):
    """Supported query engines."""
    OLTP = "oltp"
    OLAP = "olap"


OLAP_HINT = "/*+ engine=olap */"

# Padded with spaces so that e.g. "overall" or "cubes" do not match
ANALYTICAL_MARKERS = (" group by ", " window ", " over ", " rollup ", " cube ")


def has_hint(sql: str, hint: str = OLAP_HINT) -> bool:
    """Case-insensitive substring check for an inline engine hint."""
    return hint.lower() in sql.lower()


def looks_analytical(sql: str) -> bool:
    """Check the SQL text for analytical markers."""
    s = sql.strip().lower()
    return any(marker in s for marker in ANALYTICAL_MARKERS)


def choose_engine(sql: str, prefer_olap: bool = False) -> EngineType:
    """
    Decide which engine should run a statement.

    First match wins: explicit preference, inline hint, analytical markers.
    Pure and total; never raises.
    """
    if prefer_olap:
        return EngineType.OLAP
    if has_hint(sql):
        return EngineType.OLAP
    if looks_analytical(sql):
        return EngineType.OLAP
    return EngineType.OLTP
