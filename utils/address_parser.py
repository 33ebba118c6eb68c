"""Parse ``Display Name <user@example.com>`` style sender headers.

Grammar::

    address      := [display-name] "<" addr-spec ">" | addr-spec
    display-name := quoted-string | phrase
    addr-spec    := local-part "@" domain

Anything else falls back to ``ParsedAddress(name=<trimmed input or None>,
email=None)``.
"""
import re
from typing import NamedTuple, Optional

_ADDR_SPEC = r"[^\s<>@\"]+@[^\s<>@\"]+\.[^\s<>@\"]+"
_ANGLE = re.compile(rf"^(?P<name>.*?)\s*<\s*(?P<email>{_ADDR_SPEC})\s*>$")
_BARE = re.compile(rf"^(?P<email>{_ADDR_SPEC})$")


class ParsedAddress(NamedTuple):
    name: Optional[str]
    email: Optional[str]


def _clean_name(raw: str) -> Optional[str]:
    name = raw.strip()
    if len(name) >= 2 and name[0] == name[-1] == '"':
        name = name[1:-1].replace('\\"', '"').strip()
    return name or None


def parse_address(value: Optional[str]) -> ParsedAddress:
    text = (value or "").strip()
    if not text:
        return ParsedAddress(None, None)

    match = _ANGLE.match(text)
    if match:
        return ParsedAddress(_clean_name(match.group("name")), match.group("email").lower())

    match = _BARE.match(text)
    if match:
        return ParsedAddress(None, match.group("email").lower())

    return ParsedAddress(text, None)
