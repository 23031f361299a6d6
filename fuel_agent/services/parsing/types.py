from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator


class OcrLine(BaseModel):
    text: str = ""
    # 0-100; 0 means the backend did not score this fragment
    confidence: float = 0.0


class OcrResult(BaseModel):
    text: str = ""
    lines: List[OcrLine] = Field(default_factory=list)


class FieldValue(BaseModel):
    """One extracted number; value None means nothing usable was found."""

    value: Optional[float] = None
    confidence: float = 0.0

    @model_validator(mode="after")
    def _no_confidence_without_value(self) -> "FieldValue":
        if self.value is None:
            self.confidence = 0.0
        else:
            self.confidence = min(100.0, max(0.0, float(self.confidence)))
        return self

    @property
    def found(self) -> bool:
        return self.value is not None


class MileageValue(FieldValue):
    value: Optional[int] = None


class PumpData(BaseModel):
    gallons: FieldValue = Field(default_factory=FieldValue)
    price_per_gallon: FieldValue = Field(default_factory=FieldValue)
    total: FieldValue = Field(default_factory=FieldValue)


class OdometerData(BaseModel):
    miles: MileageValue = Field(default_factory=MileageValue)


class Classification(BaseModel):
    pump: PumpData = Field(default_factory=PumpData)
    odometer: OdometerData = Field(default_factory=OdometerData)
