"""
Attribute key normalizer.

Turns human-readable attribute names ("Розмір постачальника", "Colour / Tone")
into URL-safe filter keys ("rozmir-postachalnika", "colour-tone"). Distinct names
may collapse to the same key; that is accepted.
"""
import re

from unidecode import unidecode

_DISALLOWED = re.compile(r"[^a-z0-9\s-]")
_RUNS = re.compile(r"[\s-]+")


def slugify(text: str, separator: str = "-") -> str:
    """Return an ASCII slug for ``text``; empty input gives an empty string."""
    if not text:
        return ""

    ascii_text = unidecode(str(text)).lower()
    ascii_text = ascii_text.replace("_", separator).replace("@", f"{separator}at{separator}")

    # Normalise the separator to "-" while filtering, then swap it back.
    if separator != "-":
        ascii_text = ascii_text.replace(separator, "-")
    ascii_text = _DISALLOWED.sub("", ascii_text)
    ascii_text = _RUNS.sub("-", ascii_text).strip("-")

    if separator != "-":
        ascii_text = ascii_text.replace("-", separator)
    return ascii_text
