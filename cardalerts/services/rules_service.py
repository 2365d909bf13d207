import re
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from cardalerts.models.transaction import MerchantRule
from cardalerts.utils.normalizer import normalize_for_match
from cardalerts.core.logging_config import get_logger

logger = get_logger(__name__)


def load_active_rules(db: Session, user_id: str) -> list[MerchantRule]:
    return (
        db.query(MerchantRule)
        .filter(MerchantRule.user_id == user_id, MerchantRule.active.is_(True))
        .order_by(MerchantRule.priority.asc(), MerchantRule.id.asc())
        .all()
    )


def rule_matches(rule: MerchantRule, merchant: str) -> bool:
    if rule.is_regex:
        try:
            return re.search(rule.pattern, merchant) is not None
        except re.error as e:
            logger.warning(f"[Rule {rule.id}] Invalid regex {rule.pattern!r}: {e}")
            return False

    needle = normalize_for_match(rule.pattern)
    return bool(needle) and needle in normalize_for_match(merchant)


def match_rule(rules: Iterable[MerchantRule], merchant: Optional[str]) -> Optional[MerchantRule]:
    """First active rule, by ascending priority, whose pattern matches the merchant."""
    if not merchant:
        return None

    ordered = sorted(
        (r for r in rules if r.active),
        key=lambda r: (r.priority, r.id or 0),
    )
    for rule in ordered:
        if rule_matches(rule, merchant):
            return rule
    return None
