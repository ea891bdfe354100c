"""Deterministic unique-username generation for new user accounts.

Used by manual user creation and by import flows that provision accounts.
Pure functions: nothing here touches the network or mutates its inputs.
"""
import logging
import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass

from hr_console.core.config import settings

logger = logging.getLogger(__name__)

# ─── Constants ───

USERNAME_MIN_LENGTH = 2
USERNAME_MAX_LENGTH = 20
FALLBACK_BASE_LENGTH = 8

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_TRAILING_DIGITS = re.compile(r"(\d{2,})$")
USERNAME_PATTERN = re.compile(r"^[a-z0-9]{2,20}$")


# ─── Errors ───

class InvalidNameError(ValueError):
    """The full name has no words (or no usable characters) to derive a username from."""


class UsernameSpaceExhaustedError(RuntimeError):
    """Every probed candidate for a base is already taken."""

    def __init__(self, base: str, probes: int):
        self.base = base
        self.probes = probes
        super().__init__(f"No free username for base '{base}' after {probes} candidates")


# ─── Types ───

@dataclass(frozen=True)
class UsernameCandidate:
    base: str
    suffix: str = ""

    def render(self) -> str:
        # Shorten the base, never the suffix, to stay within the length cap.
        room = USERNAME_MAX_LENGTH - len(self.suffix)
        return self.base[:room] + self.suffix


@dataclass(frozen=True)
class UsernameDraft:
    """Username currently shown in a form plus the name it was derived from."""
    value: str
    source_name: str


# ─── Helpers ───

def _strip(value: str) -> str:
    """Lowercase, fold accents to ASCII and drop anything outside [a-z0-9]."""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM.sub("", folded.lower())


def _split_words(full_name: str) -> list[str]:
    return (full_name or "").split()


def build_username_base_from_name(full_name: str) -> str:
    """Derive the sanitized username stem for a display name.

    One word → the word. Two or more words → first initial + the second word.
    Stems shorter than two characters fall back to the first 8 characters of
    the first word.

    Raises InvalidNameError if the name is blank or strips to nothing.
    """
    words = _split_words(full_name)
    if not words:
        raise InvalidNameError("Full name is empty")

    first = _strip(words[0])
    if len(words) == 1:
        base = first
    else:
        base = first[:1] + _strip(words[1])

    if len(base) < USERNAME_MIN_LENGTH:
        base = _strip(words[0])[:FALLBACK_BASE_LENGTH]

    if not base:
        # e.g. "!!! ???"
        raise InvalidNameError(f"Full name '{full_name}' has no letters or digits")

    return base[:USERNAME_MAX_LENGTH]


def recover_numeric_suffix(username: str | None) -> str | None:
    """Return the trailing digit run (2+ digits) of a previous username, if any."""
    if not username:
        return None
    match = _TRAILING_DIGITS.search(username.strip().lower())
    return match.group(1) if match else None


def _format_suffix(counter: int) -> str:
    # at least two digits
    return f"{counter:02d}"


# ─── Generation ───

def generate_unique_username(
    full_name: str,
    existing: Iterable[str],
    preferred_suffix: str | None = None,
    max_probes: int | None = None,
) -> str:
    """Return a normalized username for `full_name` that is not in `existing`.

    Candidates are probed in order: base + preferred_suffix (if given), base,
    base01, base02, ... The caller owns `existing` and must add the result to
    it before generating the next username of the same batch.
    """
    if preferred_suffix is not None and not (preferred_suffix.isascii() and preferred_suffix.isdigit()):
        raise ValueError(f"preferred_suffix must be numeric, got '{preferred_suffix}'")

    limit = max_probes if max_probes is not None else settings.USERNAME_MAX_PROBES
    base = build_username_base_from_name(full_name)
    taken = {name.lower() for name in existing if name}

    if preferred_suffix:
        candidate = UsernameCandidate(base, preferred_suffix).render()
        if candidate not in taken:
            return candidate

    if len(base) >= USERNAME_MIN_LENGTH and base not in taken:
        return base

    for counter in range(1, limit + 1):
        candidate = UsernameCandidate(base, _format_suffix(counter)).render()
        if candidate not in taken:
            return candidate

    logger.warning("Username space exhausted for base %s after %d probes", base, limit)
    raise UsernameSpaceExhaustedError(base, limit)


def allocate_usernames(names: Iterable[str], existing: Iterable[str]) -> list[str]:
    """Generate usernames for a batch of names without collisions between them."""
    taken = {name.lower() for name in existing if name}
    allocated: list[str] = []
    for full_name in names:
        username = generate_unique_username(full_name, taken)
        taken.add(username)
        allocated.append(username)
    return allocated


# ─── Staleness detection ───

def is_auto_generated(username: str, source_name: str) -> bool:
    """True if `username` still looks generated from `source_name` (not hand-edited).

    Matches the bare base or the base followed by a numeric disambiguation suffix.
    """
    if not username:
        return True
    try:
        base = build_username_base_from_name(source_name)
    except InvalidNameError:
        return False
    value = username.strip().lower()
    if value == base:
        return True
    # the base may itself end in digits ("a007"), so try every split point
    for split in range(1, len(value) - 1):
        suffix = value[split:]
        if suffix.isdigit() and UsernameCandidate(base, suffix).render() == value:
            return True
    return False


def refresh_username_draft(draft: UsernameDraft, new_name: str, existing: Iterable[str]) -> UsernameDraft:
    """Regenerate the draft for `new_name` unless the operator edited it by hand."""
    if draft.value and not is_auto_generated(draft.value, draft.source_name):
        return UsernameDraft(value=draft.value, source_name=new_name)
    if not _split_words(new_name):
        return UsernameDraft(value="", source_name=new_name)
    return UsernameDraft(value=generate_unique_username(new_name, existing), source_name=new_name)
