from app.utils import round2, round_half_up


def test_round_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4999) == 2


def test_round2_rounds_halves_up():
    assert round2(0.125) == 0.13
    assert round2(1 / 8 * 100) == 12.5
    assert round2(2 / 3 * 100) == 66.67
