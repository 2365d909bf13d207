"""
Pure text / amount helpers shared by the extraction engine, the sync
filters and merchant rule matching.
"""
import re
import unicodedata
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional
from zoneinfo import ZoneInfo

from bs4 import BeautifulSoup


TWO_PLACES = Decimal("0.01")
MERCHANT_MAX_LEN = 80
MERCHANT_MIN_BREAK = 40

# Anything after one of these is issuer template or footer, never merchant
BOUNDARY_MARKERS = (
    "País:", "Pais:", "Tarjeta:", "Moneda:", "Monto:", "Importe:",
    "Fecha:", "Hora:", "Cuotas:", "Nro. de autorización", "Código de autorización",
    "Este mensaje", "Este correo", "Este e-mail", "Por favor no responda",
    "Por favor, no responda", "Términos y condiciones", "Terminos y condiciones",
    "Si no reconocés", "Si no reconoces", "Ante cualquier duda",
)
_BOUNDARY_RE = re.compile("|".join(re.escape(m) for m in BOUNDARY_MARKERS), re.IGNORECASE)

# Compared against normalize_for_match() output
BOILERPLATE_PHRASES = (
    "este mensaje",
    "no responda",
    "terminos y condiciones",
    "aviso legal",
    "informacion confidencial",
    "mensaje automatico",
    "si no reconoces",
    "centro de atencion",
    "politica de privacidad",
    "darse de baja",
)

_TRAILING_PUNCT_RE = re.compile(r"[\s\-–—:;,.|/*_]+$")
_LEADING_PUNCT_RE = re.compile(r"^[\s\-–—:;,.|/*_]+")
_AMOUNT_CHARS_RE = re.compile(r"[^\d.,\-]")

_CURRENCY_ALIASES = {
    "$": "ARS",
    "AR$": "ARS",
    "ARS": "ARS",
    "PESOS": "ARS",
    "PESO": "ARS",
    "U$S": "USD",
    "U$D": "USD",
    "US$": "USD",
    "USD": "USD",
    "DOLARES": "USD",
    "DÓLARES": "USD",
    "EUR": "EUR",
    "€": "EUR",
}


def normalize_for_match(s: Optional[str]) -> str:
    """Case-fold, strip diacritics and collapse whitespace."""
    if not s:
        return ""
    decomposed = unicodedata.normalize("NFKD", s)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.casefold().split())


def parse_localized_amount(raw: Optional[str]) -> Optional[Decimal]:
    """
    Parse an amount written with Latin-American separators.

    "1.234,56" -> 1234.56, "81,91" -> 81.91, "1649.00" -> 1649.00.
    A lone comma is always the decimal separator, so "1,234" -> 1.23.
    """
    if raw is None:
        return None

    cleaned = _AMOUNT_CHARS_RE.sub("", str(raw))
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        return None

    if "." in cleaned and "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None

    if not value.is_finite():
        return None
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def clean_merchant_text(raw: Optional[str]) -> Optional[str]:
    """Trim issuer template noise around a captured merchant name and upper-case it."""
    if not raw:
        return None

    text = " ".join(raw.split())

    boundary = _BOUNDARY_RE.search(text)
    if boundary:
        text = text[:boundary.start()]

    text = _TRAILING_PUNCT_RE.sub("", text)
    text = _LEADING_PUNCT_RE.sub("", text)

    if len(text) > MERCHANT_MAX_LEN:
        cut = text[:MERCHANT_MAX_LEN]
        space = cut.rfind(" ")
        if space > MERCHANT_MIN_BREAK:
            cut = cut[:space]
        text = _TRAILING_PUNCT_RE.sub("", cut)

    if not text:
        return None

    normalized = normalize_for_match(text)
    if any(phrase in normalized for phrase in BOILERPLATE_PHRASES):
        return None

    return text.upper()


def normalize_currency(raw: Optional[str], default: str = "ARS") -> str:
    if not raw:
        return default.upper()
    key = "".join(raw.split()).upper()
    return _CURRENCY_ALIASES.get(key, key if len(key) == 3 and key.isalpha() else default.upper())


def strip_html(html: Optional[str]) -> str:
    """Visible text of an HTML body, one line per block, duplicates removed."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["style", "script", "head"]):
        tag.decompose()

    text = soup.get_text(separator="\n")

    lines = []
    previous = None
    for line in text.splitlines():
        line_clean = " ".join(line.split())
        if line_clean and line_clean != previous:
            lines.append(line_clean)
            previous = line_clean

    return "\n".join(lines).strip()


def to_local_date(ts: datetime, tz_name: str) -> date:
    """Calendar date of an arrival timestamp in the business timezone."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(ZoneInfo(tz_name)).date()
