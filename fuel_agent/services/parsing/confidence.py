from __future__ import annotations
from typing import Iterable

from pydantic import BaseModel

from .types import FieldValue

HIGH = 80.0
MEDIUM = 60.0


# Presentation band for a 0-100 confidence
def confidence_level(confidence: float) -> str:
    if confidence >= HIGH:
        return "high"
    if confidence >= MEDIUM:
        return "medium"
    return "low"


# Mean confidence over a record's fields (missing fields count as 0)
def section_confidence(fields: Iterable[FieldValue]) -> float:
    values = [f.confidence for f in fields]
    if not values:
        return 0.0
    return sum(values) / len(values)


def fields_of(record: BaseModel) -> list[FieldValue]:
    return [v for v in record.__dict__.values() if isinstance(v, FieldValue)]
