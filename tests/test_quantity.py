import pytest

from karpoci.quantity import Format, Quantity, max_resources, parse_quantity


@pytest.mark.parametrize(
    "text",
    ["100m", "100Mi", "1Gi", "2", "20Gi", "10Gi", "70m", "2Gi", "2062131Ki", "1830m", "-100m"],
)
def test_canonical_text_round_trips(text):
    assert str(parse_quantity(text)) == text


def test_binary_spellings_are_equal():
    assert parse_quantity("1Gi") == parse_quantity("1024Mi")
    assert str(parse_quantity("1024Mi")) == "1Gi"
    assert len({parse_quantity("1Gi"), parse_quantity("1024Mi")}) == 1


def test_constructors_match_parsed_values():
    assert str(Quantity.scaled(100, -3)) == "100m"
    assert str(Quantity(100 * 1024 * 1024, Format.BINARY_SI)) == "100Mi"
    assert Quantity.scaled(100, -3) == parse_quantity("100m")


def test_decimal_is_canonicalised():
    assert str(parse_quantity("1000")) == "1k"


def test_small_binary_prints_as_decimal():
    assert str(Quantity(100, Format.BINARY_SI)) == "100"


def test_exponent_notation():
    assert parse_quantity("1e3") == parse_quantity("1k")
    assert parse_quantity("1e3").format is Format.DECIMAL_EXPONENT
    assert str(parse_quantity("1e3")) == "1e3"


def test_value_rounds_up():
    quantity = parse_quantity("1830m")
    assert quantity.value == 2
    assert quantity.milli_value == 1830


def test_as_float_agrees_across_notations():
    assert parse_quantity("1Gi").as_float() == parse_quantity("1024Mi").as_float()
    assert parse_quantity("2").as_float() == 2.0


def test_add_and_sub_round_trip_and_keep_format():
    total = parse_quantity("1Gi")
    step = parse_quantity("100Mi")
    assert (total - step) + step == total
    assert (total - step).format is Format.BINARY_SI
    assert total - total == Quantity(0)


def test_ordering():
    small, large = parse_quantity("100Mi"), parse_quantity("1Gi")
    assert small < large
    assert sorted([large, small]) == [small, large]
    assert max(small, large) is large


@pytest.mark.parametrize("text", ["", "abc", "Mi", "1Xi", "1.2.3", "1e", "."])
def test_invalid_text_raises(text):
    with pytest.raises(ValueError):
        parse_quantity(text)


def test_max_resources_keeps_largest_per_name():
    first = {"memory": parse_quantity("100Mi"), "cpu": parse_quantity("2")}
    second = {"memory": parse_quantity("1Gi"), "ephemeral-storage": parse_quantity("1Gi")}
    merged = max_resources(first, second)
    assert merged["memory"] == second["memory"]
    assert merged["cpu"] == first["cpu"]
    assert merged["ephemeral-storage"] == second["ephemeral-storage"]
    assert set(merged) == {"memory", "cpu", "ephemeral-storage"}


def test_max_resources_of_nothing_is_empty():
    assert max_resources() == {}
    assert max_resources({}, {}) == {}