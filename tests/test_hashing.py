from datetime import date
from decimal import Decimal

from cardalerts.utils.hashing import compute_content_hash


def _hash(**overrides):
    fields = dict(
        user_id="owner-1",
        local_date=date(2024, 3, 10),
        merchant="RAPPI ARGENTINA",
        amount=Decimal("1234.56"),
        currency="ARS",
        subject="Compra aprobada",
    )
    fields.update(overrides)
    return compute_content_hash(**fields)


def test_hash_is_stable():
    assert _hash() == _hash()
    assert len(_hash()) == 64


def test_hash_ignores_case_accents_and_spacing():
    assert _hash(merchant="rappi  argentina", currency="ars") == _hash()
    assert _hash(subject="COMPRA  APROBADA") == _hash()
    assert _hash(merchant="Café") == _hash(merchant="CAFE")


def test_hash_amount_formatting():
    assert _hash(amount=Decimal("1234.5")) == _hash(amount=Decimal("1234.50"))
    assert _hash(amount=Decimal("1234.57")) != _hash()


def test_hash_changes_with_owner_and_date():
    assert _hash(user_id="owner-2") != _hash()
    assert _hash(local_date=date(2024, 3, 11)) != _hash()


def test_message_id_only_used_when_given():
    unparsed = dict(merchant=None, amount=None, currency=None)
    assert _hash(**unparsed, message_id="<a@x>") != _hash(**unparsed, message_id="<b@x>")
    assert _hash(**unparsed) == _hash(**unparsed, message_id=None)
