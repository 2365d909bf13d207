"""
Card-issuer alert extraction.

Each matcher is a compiled pattern plus the text it runs against. Matchers
are tried in order and the first one producing a usable result wins as a
whole: fields are never mixed across matchers, so a currency captured by one
template cannot end up next to an amount captured by another.
"""
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from cardalerts.utils.normalizer import (
    clean_merchant_text,
    normalize_currency,
    parse_localized_amount,
)


_CURRENCY = r"U\$S|U\$D|US\$|AR\$|USD|ARS|EUR|\$"
_AMOUNT = r"\d[\d.,]*\d|\d"
_CARD_END = r"terminad[ao]|terminaci[oó]n|finalizad[ao]"
_LABELS = r"Pa[ií]s:|Monto:|Importe:|Moneda:|Tarjeta:|Fecha:|Hora:"

LAST4_PATTERN = re.compile(
    rf"(?:{_CARD_END}|Tarjeta\s*:?)\s*(?:en\s+)?\D{{0,20}}?(?P<last4>\d{{4}})\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ExtractionResult:
    merchant: Optional[str] = None
    currency: Optional[str] = None
    amount: Optional[Decimal] = None
    last4: Optional[str] = None
    matcher: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.merchant) and self.amount is not None and bool(self.currency)


@dataclass(frozen=True)
class Matcher:
    name: str
    target: str  # "subject" | "body"
    pattern: re.Pattern
    needs_last4_scan: bool = False

    def apply(self, text: str, default_currency: str = "ARS") -> Optional[ExtractionResult]:
        if not text:
            return None

        match = self.pattern.search(text)
        if not match:
            return None

        groups = match.groupdict()
        last4 = groups.get("last4")
        if not last4 and self.needs_last4_scan:
            last4 = scan_last4(text)

        return ExtractionResult(
            merchant=clean_merchant_text(groups.get("merchant")),
            currency=normalize_currency(groups.get("currency"), default_currency),
            amount=parse_localized_amount(groups.get("amount")),
            last4=last4,
            matcher=self.name,
        )


MATCHERS = (
    # "Compra aprobada en RAPPI por ARS 1.234,56 con tu tarjeta terminada en 1234"
    Matcher(
        name="subject_combined",
        target="subject",
        pattern=re.compile(
            rf"(?:compra|consumo)\s+(?:aprobad[oa]\s+)?en\s+(?P<merchant>.+?)\s+por\s+"
            rf"(?P<currency>{_CURRENCY})\s*(?P<amount>{_AMOUNT})"
            rf".*?(?:{_CARD_END})\s+(?:en\s+)?(?P<last4>\d{{4}})",
            re.IGNORECASE,
        ),
    ),
    # Comercio: ... / Monto: ... / Moneda: ... / Tarjeta: ...
    Matcher(
        name="body_labeled",
        target="body",
        pattern=re.compile(
            rf"Comercio:\s*(?P<merchant>[^\n\r]+?)(?=\s*(?:[\n\r]|{_LABELS}))"
            rf".*?Monto:\s*(?:{_CURRENCY})?\s*(?P<amount>{_AMOUNT})"
            rf".*?Moneda:\s*(?P<currency>{_CURRENCY}|[A-Z]{{3}})"
            rf".*?Tarjeta:\D{{0,20}}?(?P<last4>\d{{4}})",
            re.IGNORECASE | re.DOTALL,
        ),
    ),
    # "... se autorizó una compra con tu tarjeta terminada en 1234 en el comercio X por $ 100,00"
    Matcher(
        name="body_authorized",
        target="body",
        pattern=re.compile(
            rf"autoriz\w*.{{0,300}}?(?:{_CARD_END})\s+(?:en\s+)?(?P<last4>\d{{4}})"
            rf".{{0,120}}?\ben\s+(?:el\s+comercio\s+)?(?P<merchant>[^\n\r]+?)\s+por\s+"
            rf"(?:un\s+(?:monto|importe)\s+de\s+)?(?P<currency>{_CURRENCY})\s*(?P<amount>{_AMOUNT})",
            re.IGNORECASE | re.DOTALL,
        ),
    ),
    # Merchant + amount only; card digits come from a separate scan
    Matcher(
        name="body_minimal",
        target="body",
        pattern=re.compile(
            rf"(?:Comercio\s*:|Compra\s+en|Consumo\s+en)\s*(?P<merchant>[^\n\r]+?)"
            rf"(?=\s*(?:[\n\r]|\s-\s|\bpor\b|{_LABELS}))"
            rf".{{0,200}}?(?:Monto|Importe|por)\s*:?\s*(?:(?P<currency>{_CURRENCY})\s*)?(?P<amount>{_AMOUNT})",
            re.IGNORECASE | re.DOTALL,
        ),
        needs_last4_scan=True,
    ),
)


def scan_last4(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = LAST4_PATTERN.search(text)
    return match.group("last4") if match else None


def extract_transaction_fields(
    subject: Optional[str],
    body: Optional[str],
    default_currency: str = "ARS",
    matchers: tuple = MATCHERS,
) -> ExtractionResult:
    """
    Run the matcher chain over an alert's subject and body.

    Returns the first usable result. When nothing is usable the result carries
    only the best-effort card digits and callers should treat it as a miss.
    """
    texts = {"subject": subject or "", "body": body or ""}

    for matcher in matchers:
        result = matcher.apply(texts[matcher.target], default_currency)
        if result is not None and result.usable:
            return result

    return ExtractionResult(last4=scan_last4(texts["body"]) or scan_last4(texts["subject"]))
