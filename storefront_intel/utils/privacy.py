"""Privacy transform — normalize and one-way hash PII before it leaves.

Ad platforms match customers on SHA-256 of the normalized value. If our
normalization differs from theirs by one character (case, a trailing
space, "+31" vs "0031"), the same shopper becomes two unmatched identities
and conversions silently go missing. Every outbound identity field
therefore passes through this module.

  - Email:   " Test@Example.com " → sha256("test@example.com")
  - Phone:   "+31 6 1234 5678" / "0031612345678" → "0612345678" (local)
             → "31612345678" (international digits, what Meta hashes)
  - Country: "Nederland" → "nl"
  - Zip:     "1234 AB" → "1234ab"; US "12345-6789" → "12345"

Pure functions only: no network, no storage.
"""

import hashlib
import re

from . import clean_str

_PHONE_JUNK = re.compile(r"[^\d+]")
_SHA256_RE = re.compile(r"^[a-f0-9]{64}$")

_COUNTRY_ALIASES = {
    "nederland": "nl",
    "netherlands": "nl",
    "the netherlands": "nl",
    "holland": "nl",
    "nld": "nl",
    "belgium": "be",
    "belgie": "be",
    "belgië": "be",
    "bel": "be",
    "germany": "de",
    "duitsland": "de",
    "deutschland": "de",
    "deu": "de",
}


# ── Hashing ───────────────────────────────────────────────────────────


def hash_field(value) -> str | None:
    """Lower-case, trim, SHA-256 hex. Blank input returns None (never hash placeholders)."""
    s = clean_str(value).lower()
    if not s:
        return None
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def is_sha256(value) -> bool:
    return bool(_SHA256_RE.match(clean_str(value)))


def safe_hash(value) -> str | None:
    """hash_field(), but pass an already-hashed value through untouched."""
    s = clean_str(value).lower()
    if is_sha256(s):
        return s
    return hash_field(s)


def hash_ip(ip) -> str | None:
    """Hash of the raw client IP, used as a correlation key (not sent to sinks)."""
    s = clean_str(ip)
    if not s:
        return None
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


# ── Phone ─────────────────────────────────────────────────────────────


def normalize_phone(raw, country_prefix: str = "31") -> str:
    """Strip punctuation and turn "+CC…" / "00CC…" into local "0…".

    Fails soft: anything unrecognized comes back stripped, never raises.
    """
    s = _PHONE_JUNK.sub("", clean_str(raw))
    if not s:
        return ""
    prefix = clean_str(country_prefix).lstrip("+")
    if prefix:
        for intl in (f"+{prefix}", f"00{prefix}"):
            if s.startswith(intl):
                return "0" + s[len(intl):]
    return s


def phone_to_international(raw, country_prefix: str = "31") -> str:
    """Digits-only international form: "0612345678" → "31612345678"."""
    s = normalize_phone(raw, country_prefix)
    if not s:
        return ""
    if s.startswith("+"):
        s = s[1:]
    elif s.startswith("00"):
        s = s[2:]
    elif s.startswith("0"):
        s = clean_str(country_prefix).lstrip("+") + s[1:]
    return re.sub(r"\D", "", s)


def hash_phone(raw, country_prefix: str = "31") -> str | None:
    return hash_field(phone_to_international(raw, country_prefix))


# ── Address ───────────────────────────────────────────────────────────


def normalize_country(raw, default: str = "nl") -> str:
    s = clean_str(raw).lower()
    if s in _COUNTRY_ALIASES:
        return _COUNTRY_ALIASES[s]
    if len(s) == 2 and s.isalpha():
        return s
    return default


def normalize_zip(raw, country: str = "") -> str:
    s = re.sub(r"[\s\-]", "", clean_str(raw)).lower()
    if clean_str(country).lower() == "us":
        return s[:5]
    return s


def normalize_city(raw) -> str:
    return re.sub(r"[^a-z]", "", clean_str(raw).lower())


# ── Advanced matching ─────────────────────────────────────────────────


def hash_identity(identity: dict | None, country_prefix: str = "31", default_country: str = "nl") -> dict:
    """Hashed advanced-matching fields from a raw identity dict.

    Accepts email, phone, first_name, last_name, city, state, zip, country,
    external_id. Returns only the keys that had a value:
    em, ph, fn, ln, ct, st, zp, country, external_id.
    """
    if not identity:
        return {}
    raw_country = identity.get("country")
    country = normalize_country(raw_country, default_country) if raw_country else ""
    hashed = {
        "em": safe_hash(identity.get("email")),
        "ph": hash_phone(identity.get("phone"), country_prefix) if identity.get("phone") else None,
        "fn": hash_field(identity.get("first_name")),
        "ln": hash_field(identity.get("last_name")),
        "ct": hash_field(normalize_city(identity.get("city"))),
        "st": hash_field(identity.get("state")),
        "zp": hash_field(normalize_zip(identity.get("zip"), country)),
        "country": hash_field(country),
        "external_id": safe_hash(identity.get("external_id")),
    }
    return {k: v for k, v in hashed.items() if v}
