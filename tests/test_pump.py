import pytest

from fuel_agent.services.parsing import parse_pump_data, reconcile_price
from fuel_agent.services.parsing.rules import GALLONS_RULES, TOTAL_RULES, first_match
from fuel_agent.services.parsing.types import FieldValue, PumpData


def test_clean_display(pump_ocr):
    pump = parse_pump_data(pump_ocr)
    assert pump.gallons.value == pytest.approx(9.811)
    assert pump.gallons.confidence == 90
    assert pump.total.value == pytest.approx(35.51)
    assert pump.total.confidence == 88
    assert pump.price_per_gallon.value == pytest.approx(35.51 / 9.811)
    assert pump.price_per_gallon.confidence == 88


def test_split_decimal_artifact(make_ocr):
    ocr = make_ocr("GALLONS\n9.8 | 1\nSALE $35.51", ("GALLONS", 95), ("9.8 | 1", 60), ("SALE $35.51", 85))
    pump = parse_pump_data(ocr)
    assert pump.gallons.value == pytest.approx(9.811)
    # repaired token appears on no line
    assert pump.gallons.confidence == 70
    assert pump.total.value == pytest.approx(35.51)
    assert pump.total.confidence == 85
    assert pump.price_per_gallon.confidence == 70


def test_total_missing_decimal(make_ocr):
    pump = parse_pump_data(make_ocr("GALLONS 9.811 SALE 5948"))
    assert pump.gallons.value == pytest.approx(9.811)
    assert pump.total.value == pytest.approx(59.48)


def test_both_missing_decimals(make_ocr):
    pump = parse_pump_data(make_ocr("GAL 9811 SALE 3551"))
    assert pump.gallons.value == pytest.approx(9.811)
    assert pump.total.value == pytest.approx(35.51)


def test_reconstructed_gallons_token_not_reused_for_total(make_ocr):
    pump = parse_pump_data(make_ocr("GAL 5948"))
    assert pump.gallons.value == pytest.approx(5.948)
    assert pump.total.value is None
    assert pump.price_per_gallon.value is None


def test_total_outside_range_is_skipped(make_ocr):
    pump = parse_pump_data(make_ocr("SALE $8.50 $612.40 $42.10"))
    assert pump.total.value == pytest.approx(42.10)


def test_total_all_out_of_range(make_ocr):
    pump = parse_pump_data(make_ocr("SALE $5.25 $999.99"))
    assert pump.total.value is None
    assert pump.total.confidence == 0


def test_odometer_text_yields_empty_pump(odometer_ocr):
    pump = parse_pump_data(odometer_ocr)
    assert pump == PumpData()


def test_price_needs_both_inputs(make_ocr):
    pump = parse_pump_data(make_ocr("GALLONS 9.811"))
    assert pump.gallons.found
    assert not pump.price_per_gallon.found
    assert pump.price_per_gallon.confidence == 0


def test_unscored_line_falls_back_to_default(make_ocr):
    pump = parse_pump_data(make_ocr("GALLONS 9.811", ("GALLONS 9.811", 0)))
    assert pump.gallons.confidence == 70


def test_parse_is_deterministic(pump_ocr):
    assert parse_pump_data(pump_ocr) == parse_pump_data(pump_ocr)


def test_reconcile_price_takes_weaker_confidence():
    pump = PumpData(gallons=FieldValue(value=10.0, confidence=90), total=FieldValue(value=40.0, confidence=75))
    out = reconcile_price(pump)
    assert out.price_per_gallon.value == pytest.approx(4.0)
    assert out.price_per_gallon.confidence == 75
    assert not pump.price_per_gallon.found


def test_reconcile_price_keeps_existing_price():
    pump = PumpData(
        gallons=FieldValue(value=10.0, confidence=90),
        total=FieldValue(value=40.0, confidence=75),
        price_per_gallon=FieldValue(value=3.999, confidence=99),
    )
    assert reconcile_price(pump) is pump


def test_rules_run_in_order():
    hit = first_match(GALLONS_RULES, "9811 12.345")
    assert hit.rule.name == "gallons-3-decimals"
    assert hit.candidate.value == pytest.approx(12.345)

    hit = first_match(TOTAL_RULES, "5948")
    assert hit.rule.name == "total-digits"
    assert hit.rule.reconstructed


def test_total_digits_respect_range():
    # 9.50 and 0.950 are both below a plausible fill-up
    assert first_match(TOTAL_RULES, "0950") is None
    assert first_match(TOTAL_RULES, "1500").candidate.value == pytest.approx(15.00)


def test_field_value_without_value_has_zero_confidence():
    assert FieldValue(value=None, confidence=88).confidence == 0
    assert FieldValue(value=1.0, confidence=140).confidence == 100


@pytest.mark.parametrize("token", ["0950", "30000"])
def test_rebuilt_gallons_must_be_plausible(token):
    # 0.950 and 30.000 fall outside a single fill-up
    assert first_match(GALLONS_RULES, token) is None


def test_implausible_gallons_token_leaves_total_alone(make_ocr):
    # 30000 is rejected; a later 4-digit token such as 3551 would itself read as 3.551 gallons
    pump = parse_pump_data(make_ocr("GAL 30000 SALE $35.51"))
    assert pump.gallons.value is None
    assert pump.total.value == pytest.approx(35.51)
    assert not pump.price_per_gallon.found
