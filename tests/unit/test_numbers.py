import pytest

from wachannel.utils.numbers import display_number, normalize_wa_id


def test_normalize_wa_id_accepts_plain_plus_and_chat_ids():
    assert normalize_wa_id("5215512345678") == "5215512345678"
    assert normalize_wa_id("+52 55 1234-5678") == "525512345678"
    assert normalize_wa_id("5215512345678@s.whatsapp.net") == "5215512345678"
    assert normalize_wa_id("5215512345678@c.us") == "5215512345678"


def test_normalize_wa_id_rejects_invalid_value():
    with pytest.raises(ValueError):
        normalize_wa_id("abc123")
    with pytest.raises(ValueError):
        normalize_wa_id("12345")
    with pytest.raises(ValueError):
        normalize_wa_id("")


def test_display_number_falls_back_to_raw():
    assert display_number("5215512345678") == "+5215512345678"
    assert display_number("support") == "support"
