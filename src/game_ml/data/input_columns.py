from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Optional, Set


class InputColumn(str, Enum):
    """Logical fields GAME reads from every input record."""

    RESPONSE = "response"
    OFFSET = "offset"
    WEIGHT = "weight"
    UID = "uid"
    META_DATA_MAP = "metadataMap"


# Name under which a record's uid is merged into its id tags.
UID_ID_TAG = InputColumn.UID.value


@dataclass(frozen=True)
class InputColumnsNames:
    """
    Effective column name for each logical input field.

    Defaults are the logical names themselves; override only what differs in the
    source data, e.g. `InputColumnsNames(response="label")`.
    """

    response: str = InputColumn.RESPONSE.value
    offset: str = InputColumn.OFFSET.value
    weight: str = InputColumn.WEIGHT.value
    uid: str = InputColumn.UID.value
    meta_data_map: str = InputColumn.META_DATA_MAP.value

    def __getitem__(self, column: InputColumn) -> str:
        return getattr(self, _FIELD_FOR_COLUMN[column])

    def reserved_names(self) -> Set[str]:
        """Columns that can never double as grouping keys."""
        return {self.response, self.offset, self.weight, self.uid}

    def to_dict(self) -> dict[str, str]:
        return {c.name: self[c] for c in InputColumn}

    @classmethod
    def with_overrides(cls, overrides: Optional[Mapping[str, str]] = None) -> "InputColumnsNames":
        """
        Build from a {logical name -> column name} mapping. Keys may be enum names
        (`RESPONSE`) or values (`response`), case-insensitive.
        """
        names = cls()
        if not overrides:
            return names
        changes = {}
        for key, col in overrides.items():
            column = _parse_column(str(key))
            if not str(col):
                raise ValueError(f"Empty column name for input column {column.name}")
            changes[_FIELD_FOR_COLUMN[column]] = str(col)
        return replace(names, **changes)


_FIELD_FOR_COLUMN = {
    InputColumn.RESPONSE: "response",
    InputColumn.OFFSET: "offset",
    InputColumn.WEIGHT: "weight",
    InputColumn.UID: "uid",
    InputColumn.META_DATA_MAP: "meta_data_map",
}


def _parse_column(key: str) -> InputColumn:
    k = key.strip()
    for column in InputColumn:
        if k.upper() == column.name or k.lower() == column.value.lower():
            return column
    allowed = ", ".join(c.name for c in InputColumn)
    raise ValueError(f"Unknown input column '{key}' (allowed: {allowed})")
