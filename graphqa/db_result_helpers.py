"""neo4j Record → Row conversion helpers.

The driver hands back Records whose values can be primitives, lists, maps,
graph objects (Node / Relationship / Path) or temporal and spatial types.
Everything is normalized here, once, into the Row / FieldValue model so the
renderer never inspects driver types.

    rows = records_to_rows(result)       # list[Row], column order preserved
"""

from __future__ import annotations

from neo4j.graph import Node, Path, Relationship

from .logic.state import Row


def _unwrap_value(val):
    """Convert driver graph objects into plain Python values.

    Nodes and relationships become their property maps (properties only,
    no internal ids), paths become the list of their nodes' property maps.
    Temporal and spatial values are stringified.
    """
    if val is None or isinstance(val, (str, bool, int, float)):
        return val
    if isinstance(val, (Node, Relationship)):
        return {k: _unwrap_value(v) for k, v in val.items()}
    if isinstance(val, Path):
        return [_unwrap_value(node) for node in val.nodes]
    if isinstance(val, dict):
        return {k: _unwrap_value(v) for k, v in val.items()}
    if isinstance(val, (list, tuple)):
        return [_unwrap_value(v) for v in val]
    # neo4j.time.DateTime / Date / Duration, spatial Points, etc.
    if hasattr(val, "iso_format"):
        return val.iso_format()
    return str(val)


def record_to_row(record) -> Row:
    """Convert one Record (or any object exposing .items()) into a Row."""
    return Row.from_pairs((key, _unwrap_value(value)) for key, value in record.items())


def records_to_rows(records) -> list[Row]:
    return [record_to_row(record) for record in records]
