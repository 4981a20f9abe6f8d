"""
knowledge/table.py — Read-only knowledge lookup table.

The table is process-wide immutable data: built once (from the defaults
below or a YAML file) and exposed as a ``MappingProxyType``. In a deployment
backed by a real knowledge graph, :func:`lookup` is the seam where the query
service would be substituted; it must keep returning :class:`KnowledgeEntry`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import yaml

from core.constants import DrivingAction

KnowledgeTable = Mapping[str, "KnowledgeEntry"]

_SPARQL_PREFIX = "PREFIX drive: <http://schema.driving.ai/>"


class KnowledgeLookupError(KeyError):
    """Raised when a label has no entry in the knowledge table."""

    def __init__(self, label: str) -> None:
        self.label = label
        super().__init__(label)

    def __str__(self) -> str:
        return f"No knowledge entry for label {self.label!r}"


@dataclass(frozen=True)
class KnowledgeEntry:
    """
    One row of the knowledge table.

    Attributes:
        label: Perception label used as the table key.
        concept: Human-readable concept name.
        action: Recommended driving action.
        query: Query text; opaque, only ever displayed.
    """

    label: str
    concept: str
    action: DrivingAction
    query: str


def _action_query(label: str) -> str:
    return (
        f"{_SPARQL_PREFIX}\n"
        "SELECT ?action WHERE {\n"
        f"  drive:{label} drive:requiresAction ?action .\n"
        "}"
    )


def build_table(entries: list[KnowledgeEntry]) -> KnowledgeTable:
    """
    Freeze *entries* into a read-only label → entry mapping.

    Raises:
        ValueError: If a label appears twice.
    """
    table: dict[str, KnowledgeEntry] = {}
    for entry in entries:
        if entry.label in table:
            raise ValueError(f"Duplicate knowledge label {entry.label!r}")
        table[entry.label] = entry
    return MappingProxyType(table)


_DEFAULT_ENTRIES: list[tuple[str, str, DrivingAction]] = [
    ("red_light", "Red Traffic Light", DrivingAction.STOP),
    ("green_light", "Green Traffic Light", DrivingAction.GO),
    ("pedestrian", "Pedestrian Crossing", DrivingAction.CAUTION),
    ("stop_sign", "Stop Sign", DrivingAction.STOP),
    ("yellow_light", "Yellow Traffic Light", DrivingAction.SLOW_DOWN),
]

#: Built-in driving knowledge, keyed by perception label.
KNOWLEDGE_TABLE: KnowledgeTable = build_table([
    KnowledgeEntry(label=label, concept=concept, action=action, query=_action_query(label))
    for label, concept, action in _DEFAULT_ENTRIES
])


def lookup(table: KnowledgeTable, label: str) -> KnowledgeEntry:
    """
    Resolve *label* to its knowledge entry.

    Raises:
        KnowledgeLookupError: If the table has no such label.
    """
    try:
        return table[label]
    except KeyError:
        raise KnowledgeLookupError(label) from None


def load_knowledge_table(path: Path | str) -> KnowledgeTable:
    """
    Load a knowledge table from YAML.

    Expected shape::

        red_light:
          concept: Red Traffic Light
          action: STOP
          query: |
            PREFIX drive: <http://schema.driving.ai/>
            SELECT ?action WHERE { drive:red_light drive:requiresAction ?action . }

    ``query`` may be omitted, in which case the standard
    ``requiresAction`` query for the label is generated.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: On an empty file, a malformed row or an unknown action.
    """
    resolved = Path(path)
    if not resolved.exists():
        raise FileNotFoundError(f"Knowledge table not found: {resolved}")

    with resolved.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict) or not raw:
        raise ValueError(f"Knowledge table must be a non-empty YAML mapping: {resolved}")

    entries: list[KnowledgeEntry] = []
    for label, row in raw.items():
        if not isinstance(row, dict):
            raise ValueError(f"Knowledge entry {label!r} must be a mapping")
        missing = {"concept", "action"} - set(row)
        if missing:
            raise ValueError(f"Knowledge entry {label!r} missing field(s): {sorted(missing)}")
        entries.append(KnowledgeEntry(
            label=str(label),
            concept=str(row["concept"]),
            action=DrivingAction.parse(row["action"]),
            query=str(row.get("query") or _action_query(str(label))),
        ))
    return build_table(entries)
