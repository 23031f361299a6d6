from fuel_agent.services.parsing import parse_odometer_data


def test_bare_reading(odometer_ocr):
    odo = parse_odometer_data(odometer_ocr)
    assert odo.miles.value == 168237
    assert isinstance(odo.miles.value, int)
    assert odo.miles.confidence == 93


def test_largest_integer_wins(make_ocr):
    odo = parse_odometer_data(make_ocr("ODO 168237 TRIP 00123 45.6", ("ODO 168237", 91)))
    assert odo.miles.value == 168237
    assert odo.miles.confidence == 91


def test_decimal_integer_part_is_ignored(make_ocr):
    odo = parse_odometer_data(make_ocr("TRIP 123456.7\n98765"))
    assert odo.miles.value == 98765
    assert odo.miles.confidence == 70


def test_too_long_or_short_runs_are_ignored(make_ocr):
    odo = parse_odometer_data(make_ocr("1234567 1234 65 MPH"))
    assert not odo.miles.found
    assert odo.miles.confidence == 0


def test_equal_values_keep_first(make_ocr):
    odo = parse_odometer_data(make_ocr("055555 55555", ("055555", 60), ("55555", 90)))
    assert odo.miles.value == 55555
    assert odo.miles.confidence == 60
