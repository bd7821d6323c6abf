from decimal import Decimal

import pytest

from marketplace.core.exceptions import BadRequestError
from marketplace.core.money import format_minor, percent_of, to_minor


def test_to_minor_rounds_half_up():
    assert to_minor("50.00") == 5000
    assert to_minor(Decimal("0.005")) == 1
    assert to_minor("10.994") == 1099
    assert to_minor(3) == 300


def test_to_minor_rejects_garbage():
    with pytest.raises(BadRequestError):
        to_minor("ten")
    with pytest.raises(BadRequestError):
        to_minor("NaN")


def test_format_minor():
    assert format_minor(5000) == "50.00"
    assert format_minor(-1050) == "-10.50"
    assert format_minor(0) == "0.00"
    assert format_minor(None) is None


def test_percent_of():
    assert percent_of(4000, 25) == 1000
    assert percent_of(4000, 0) == 0
    assert percent_of(4000, 100) == 4000
    # 33.33% of 0.01 -> 0.0033 rounds to 0; 50% of 0.01 rounds half up to 0.01
    assert percent_of(1, Decimal("33.33")) == 0
    assert percent_of(1, 50) == 1
    assert percent_of(999, Decimal("12.5")) == 125
