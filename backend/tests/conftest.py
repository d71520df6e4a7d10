from datetime import date

import pytest

from factories import FakeProvider, attend, make_exercise, make_user


@pytest.fixture
def five_exercises():
    """E1..E5, one week apart; E5 is the newest."""
    return [make_exercise(i, date(2024, 1, 7 * i)) for i in range(1, 5)] + [
        make_exercise(5, date(2024, 2, 4))
    ]


@pytest.fixture
def provider(five_exercises):
    users = [
        make_user(1, "K1ABC"),
        make_user(2, "W2DEF"),
        make_user(3, "N3GHI", active=False),
    ]
    events = attend(users, five_exercises, [
        ("K1ABC", 5), ("K1ABC", 4),
        ("W2DEF", 3), ("W2DEF", 1),
        ("N3GHI", 4),
    ])
    return FakeProvider(users, five_exercises, events)
