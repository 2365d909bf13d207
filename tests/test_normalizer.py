from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from cardalerts.utils.normalizer import (
    clean_merchant_text,
    normalize_currency,
    normalize_for_match,
    parse_localized_amount,
    strip_html,
    to_local_date,
)


@pytest.mark.parametrize("raw, expected", [
    ("1.234,56", Decimal("1234.56")),
    ("1649.00", Decimal("1649.00")),
    ("81,91", Decimal("81.91")),
    ("$ 15.999,00", Decimal("15999.00")),
    ("1,234", Decimal("1.23")),
    ("10,005", Decimal("10.01")),
])
def test_parse_localized_amount(raw, expected):
    assert parse_localized_amount(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "abc", "$", "1.2.3,4,5"])
def test_parse_localized_amount_rejects_garbage(raw):
    assert parse_localized_amount(raw) is None


def test_clean_merchant_cuts_at_first_marker():
    assert clean_merchant_text("RAPPI ARGENTINA País: AR Tarjeta: 1234") == "RAPPI ARGENTINA"
    assert clean_merchant_text("  CAFE   MARTINEZ  - ") == "CAFE MARTINEZ"
    assert clean_merchant_text("NETFLIX.COM (SA)") == "NETFLIX.COM (SA)"


def test_clean_merchant_upper_cases():
    assert clean_merchant_text("Café Martínez") == "CAFÉ MARTÍNEZ"
    assert clean_merchant_text("rappi argentina País: AR") == "RAPPI ARGENTINA"


def test_clean_merchant_rejects_boilerplate():
    assert clean_merchant_text("Este mensaje fue enviado automáticamente") is None
    assert clean_merchant_text("Por favor no responda") is None
    assert clean_merchant_text(" -- ") is None
    assert clean_merchant_text(None) is None


def test_clean_merchant_caps_length_on_word_boundary():
    raw = "SUPERMERCADO " + "MUY " * 30 + "LARGO"
    cleaned = clean_merchant_text(raw)
    assert len(cleaned) <= 80
    assert not cleaned.endswith(" ")
    assert cleaned.startswith("SUPERMERCADO MUY")


def test_normalize_for_match():
    assert normalize_for_match("  Café   MARTÍNEZ ") == "cafe martinez"
    assert normalize_for_match(None) == ""


@pytest.mark.parametrize("raw, expected", [
    ("$", "ARS"),
    ("AR$", "ARS"),
    ("U$S", "USD"),
    ("US$", "USD"),
    ("usd", "USD"),
    ("€", "EUR"),
    (None, "ARS"),
])
def test_normalize_currency(raw, expected):
    assert normalize_currency(raw, "ARS") == expected


def test_strip_html_drops_scripts_and_duplicate_lines():
    html = (
        "<html><head><style>p {color: red}</style></head><body>"
        "<p>Compra en CAFE</p><p>Compra en CAFE</p><script>alert(1)</script>"
        "<p>Importe: $ 10,00</p></body></html>"
    )
    text = strip_html(html)
    assert text == "Compra en CAFE\nImporte: $ 10,00"


def test_to_local_date_uses_business_timezone():
    # 01:30 UTC is still the previous evening in Buenos Aires (UTC-3)
    ts = datetime(2024, 3, 11, 1, 30, tzinfo=timezone.utc)
    assert to_local_date(ts, "America/Argentina/Buenos_Aires") == date(2024, 3, 10)
    assert to_local_date(ts.replace(tzinfo=None), "UTC") == date(2024, 3, 11)
