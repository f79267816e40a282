# src/licensetag/domain/record.py
"""
Normalized record in the finc intermediate schema.

Records arrive one JSON object per line. Only the fields the filters look at
are modelled; everything else is carried through untouched.
"""

from __future__ import annotations

import json
from typing import Any, Dict, FrozenSet, Iterable, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from licensetag.domain.errors import DecodeError
from licensetag.domain.serial_number import normalize_all


class IntermediateRecord(BaseModel):
    """One normalized record, immutable once decoded."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )

    record_id: str = Field(default="", alias="finc.record_id")
    source_id: str = Field(default="", alias="finc.source_id")
    collections: List[str] = Field(default_factory=list, alias="finc.mega_collection")
    issn: List[str] = Field(default_factory=list, alias="rft.issn")
    eissn: List[str] = Field(default_factory=list, alias="rft.eissn")
    doi: str = Field(default="", alias="doi")
    date: str = Field(default="", alias="rft.date")
    volume: str = Field(default="", alias="rft.volume")
    issue: str = Field(default="", alias="rft.issue")
    packages: List[str] = Field(default_factory=list, alias="x.packages")
    subjects: List[str] = Field(default_factory=list, alias="x.subjects")
    labels: List[str] = Field(default_factory=list, alias="x.labels")

    @field_validator("record_id", "source_id", "doi", "date", "volume", "issue", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator(
        "collections", "issn", "eissn", "packages", "subjects", "labels", mode="before"
    )
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @property
    def identifiers(self) -> FrozenSet[str]:
        """Normalized print and online ISSNs."""
        return frozenset(normalize_all(self.issn + self.eissn))

    def with_labels(self, labels: Iterable[str]) -> "IntermediateRecord":
        return self.model_copy(update={"labels": sorted(labels)})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntermediateRecord":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"invalid record: {e}") from e

    @classmethod
    def from_json(cls, line: str | bytes) -> "IntermediateRecord":
        """
        Decode a single line of newline delimited JSON.

        Raises:
            DecodeError: on malformed JSON, invalid UTF-8 or a value of the wrong shape
        """
        if isinstance(line, str):
            try:
                line.encode("utf-8")
            except UnicodeEncodeError as e:
                raise DecodeError(f"invalid UTF-8 in record: {e}") from e
        try:
            data = json.loads(line)
        except ValueError as e:
            raise DecodeError(f"malformed JSON: {e}") from e
        if not isinstance(data, dict):
            raise DecodeError(f"expected a JSON object, got {type(data).__name__}")
        return cls.from_dict(data)
