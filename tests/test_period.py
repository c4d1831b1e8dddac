import pytest

from loan_channel.core.exceptions import ValidationError
from loan_channel.utils.period import normalize_month, normalize_year, parse_amount, round_money, split_evenly


@pytest.mark.parametrize("value, expected", [
    (6, 6),
    ("6", 6),
    (" 12 ", 12),
    ("June", 6),
    ("jun", 6),
    ("SEPTEMBER", 9),
    ("Sep", 9),
])
def test_normalize_month_accepts_numbers_and_names(value, expected):
    assert normalize_month(value) == expected


@pytest.mark.parametrize("value", [0, 13, "13", "Smarch", "", None, True, 6.5])
def test_normalize_month_rejects_garbage(value):
    with pytest.raises(ValidationError):
        normalize_month(value)


def test_normalize_year():
    assert normalize_year(2025) == 2025
    assert normalize_year("2025") == 2025
    with pytest.raises(ValidationError):
        normalize_year(25)
    with pytest.raises(ValidationError):
        normalize_year("twenty")


def test_parse_amount():
    assert parse_amount("1200.50") == 1200.5
    assert parse_amount(0) == 0
    for bad in (None, "abc", "nan", float("inf"), -1, True):
        with pytest.raises(ValidationError):
            parse_amount(bad)


def test_split_evenly_hands_remainder_to_first_shares():
    assert split_evenly(100, 3) == [33.34, 33.33, 33.33]
    assert split_evenly(0.05, 3) == [0.02, 0.02, 0.01]
    assert split_evenly(120000, 3) == [40000.0, 40000.0, 40000.0]
    assert split_evenly(50, 0) == []


def test_split_evenly_always_sums_to_total():
    for total, parts in [(1000, 7), (99.99, 4), (12345.67, 9), (1, 3)]:
        shares = split_evenly(total, parts)
        assert round_money(sum(shares)) == round_money(total)
        assert max(shares) - min(shares) <= 0.01 + 1e-9
