import pytest

from finreview.parsers import coerce_amount, parse_amount


@pytest.mark.parametrize(
    "text,expected",
    [
        ("$2,500", 2500.0),
        ("SGD 1,200", 1200.0),
        ("1,200.50", 1200.5),
        ("800", 800.0),
        ("2.5k", 2500.0),
        ("about 3K per month", 3000.0),
        (1800, 1800.0),
        (0, 0.0),
    ],
)
def test_parse_amount_ok(text, expected):
    r = parse_amount(text)
    assert r.ok, r
    assert r.value == expected


def test_parse_amount_errors():
    assert parse_amount(None).error == "EMPTY"
    assert parse_amount("  ").error == "EMPTY"
    assert parse_amount("-500").error == "NEGATIVE"
    assert parse_amount(-1).error == "NEGATIVE"
    assert parse_amount("nil").error == "NO_MATCH"


def test_coerce_amount_keeps_unparsable_text():
    assert coerce_amount("$1,000") == 1000.0
    assert coerce_amount("not sure") == "not sure"
    assert coerce_amount(None) is None
