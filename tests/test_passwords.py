import pytest

from invokta_session.passwords import password_strength, strength_label


@pytest.mark.parametrize(
    "password, score",
    [
        ("", 0),
        ("abc", 1),
        ("abcdefgh", 2),
        ("Abcdefgh", 3),
        ("Abcdefg1", 4),
        ("Abcdefg1!", 4),
        ("ABC123!", 3),
    ],
)
def test_password_strength(password, score):
    assert password_strength(password) == score


def test_labels():
    assert strength_label(0) == "Very Weak"
    assert strength_label(4) == "Strong"
    assert strength_label(9) == ""
