from .classifier import classify
from .odometer import parse_odometer_data
from .pump import parse_pump_data, reconcile_price
from .types import (
    Classification,
    FieldValue,
    MileageValue,
    OcrLine,
    OcrResult,
    OdometerData,
    PumpData,
)
