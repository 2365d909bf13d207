import hashlib
from datetime import date
from decimal import Decimal
from typing import Optional

from cardalerts.utils.normalizer import normalize_for_match


def compute_content_hash(
    user_id: str,
    local_date: date,
    merchant: Optional[str],
    amount: Optional[Decimal],
    currency: Optional[str],
    subject: Optional[str],
    message_id: Optional[str] = None,
) -> str:
    """
    Idempotency key built from business fields only.

    Provider UIDs and card last4 are left out on purpose: UIDs change when a
    message is copied or moved between mailboxes. `message_id` is only given
    for alerts whose fields could not be extracted, so that distinct unparsed
    alerts sharing a subject on the same day do not collapse into one row.
    """
    parts = [
        user_id,
        local_date.isoformat(),
        normalize_for_match(merchant),
        f"{Decimal(amount):.2f}" if amount is not None else "",
        (currency or "").upper(),
        normalize_for_match(subject),
    ]
    if message_id:
        parts.append(message_id.strip())
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
