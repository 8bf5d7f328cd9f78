"""
Facet index key layout.

Every index key is built here and nowhere else:

    {prefix}:{facet_name}:{facet_value}      e.g. facet:kolir:black

Escaping rule: inside the name and the value, "%" becomes "%25" and ":"
becomes "%3A", so a key always splits into exactly three parts on ":".
"""
import re
from typing import Optional, Tuple

KEY_SEPARATOR = ":"
DEFAULT_PREFIX = "facet"

_GLOB_SPECIALS = re.compile(r"([*?\[\]\\])")


def escape_part(part: str) -> str:
    return str(part).replace("%", "%25").replace(KEY_SEPARATOR, "%3A")


def unescape_part(part: str) -> str:
    return part.replace("%3A", KEY_SEPARATOR).replace("%25", "%")


def facet_key(name: str, value: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Build the index key holding the product ids for one facet value."""
    return KEY_SEPARATOR.join((prefix, escape_part(name), escape_part(value)))


def parse_facet_key(key: str, prefix: str = DEFAULT_PREFIX) -> Tuple[str, str]:
    """
    Split an index key back into ``(facet_name, facet_value)``.

    Raises:
        ValueError: if the key is not a facet key under ``prefix``.
    """
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 3 or parts[0] != prefix:
        raise ValueError(f"Not a facet key under '{prefix}': {key!r}")
    return unescape_part(parts[1]), unescape_part(parts[2])


def glob_escape(text: str) -> str:
    """Escape Redis glob metacharacters so ``text`` matches literally."""
    return _GLOB_SPECIALS.sub(r"\\\1", text)


def facet_pattern(name: Optional[str] = None, prefix: str = DEFAULT_PREFIX) -> str:
    """Glob matching every value of one facet, or the whole namespace when ``name`` is None."""
    if name is None:
        return f"{glob_escape(prefix)}{KEY_SEPARATOR}*"
    return KEY_SEPARATOR.join((glob_escape(prefix), glob_escape(escape_part(name)), "*"))
