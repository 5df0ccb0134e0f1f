from __future__ import annotations

from dataclasses import dataclass, field

"""Import template model.

A template names the destination collection, which columns are required,
which columns hold dates and a human description for each column. Templates
are loaded once from config/import.yml and never mutated afterwards.
"""

__all__ = [
    "Template",
]


@dataclass(frozen=True)
class Template:
    """Target record template for one import run.

    ``field_mapping`` keeps the declared column order; it drives the
    downloadable template skeleton. ``required_fields`` order matters: the
    intra-file duplicate key joins values in exactly this order.
    """
    name: str
    collection: str  # Destination collection / table name
    required_fields: tuple[str, ...]
    date_fields: frozenset[str] = frozenset()
    field_descriptions: dict[str, str] = field(default_factory=dict)
    field_mapping: dict[str, str] = field(default_factory=dict)
    description: str = ""

    @property
    def columns(self) -> list[str]:
        """Columns of the template skeleton (field_mapping keys, else required fields)."""
        if self.field_mapping:
            return list(self.field_mapping.keys())
        return list(self.required_fields)
