from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

UNKNOWN_PLAYER = "Unknown Player"

# Identity providers and older clients disagree on attribute names; the first
# non-empty alias wins.
_NAME_ALIASES = ("fullName", "full_name", "fullname", "displayName", "display_name", "name")
_PHOTO_ALIASES = ("photoURL", "photoUrl", "photo_url", "picture", "avatar_url")


@dataclass(frozen=True)
class Profile:
    name: str
    photo_url: Optional[str] = None


def _first(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    for k in keys:
        v = raw.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def normalize_profile(raw: Mapping[str, Any] | None, fallback_name: Optional[str] = None) -> Profile:
    """Collapse a raw identity-provider profile into one canonical name/photo pair."""
    raw = raw or {}
    name = _first(raw, _NAME_ALIASES)
    if not name:
        first = _first(raw, ("firstName", "first_name", "given_name"))
        last = _first(raw, ("lastName", "last_name", "family_name"))
        if first and last:
            name = f"{first} {last}"
    if not name:
        name = (fallback_name or "").strip() or UNKNOWN_PLAYER
    return Profile(name=name, photo_url=_first(raw, _PHOTO_ALIASES))
