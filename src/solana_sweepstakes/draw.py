from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from .project_constants import SHORTLIST_CAP

# randbelow(n) -> uniform int in [0, n); the system CSPRNG, never a seedable generator.
RandBelow = Callable[[int], int]


@dataclass(frozen=True)
class DrawResult:
    winner: Optional[str]
    shortlist: List[str] = field(default_factory=list)
    entrant_count: int = 0
    """Raw admitted entries, duplicates included."""

    unique_count: int = 0
    entrants_digest: Optional[str] = None


def unique_entrants(entrants: Iterable[str]) -> List[str]:
    """Drops repeat entries, keeping first-seen order."""
    return list(dict.fromkeys(entrants))


def entrants_digest(entrants: Iterable[str]) -> str:
    """SHA-256 over the sorted unique entrant set; order of admission does not matter."""
    joined = "\n".join(sorted(set(entrants)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def shuffle(items: List[str], randbelow: RandBelow = secrets.randbelow) -> List[str]:
    """In-place Fisher-Yates: each step picks uniformly from the not-yet-placed prefix."""
    for i in range(len(items) - 1, 0, -1):
        j = randbelow(i + 1)
        items[i], items[j] = items[j], items[i]
    return items


def select_shortlist(
    entrants: Sequence[str],
    cap: int = SHORTLIST_CAP,
    randbelow: RandBelow = secrets.randbelow,
) -> List[str]:
    shuffled = shuffle(unique_entrants(entrants), randbelow)
    return shuffled[: min(cap, len(shuffled))]


def select_winner(shortlist: Sequence[str], randbelow: RandBelow = secrets.randbelow) -> Optional[str]:
    if not shortlist:
        return None
    return shortlist[randbelow(len(shortlist))]


def run_draw(
    entrants: Sequence[str],
    cap: int = SHORTLIST_CAP,
    randbelow: RandBelow = secrets.randbelow,
) -> DrawResult:
    """
    Shortlist up to ``cap`` unique entrants, then pick one uniformly.
    Entering many times does not raise an entrant's odds.
    """
    if cap <= 0:
        raise ValueError("Shortlist cap must be positive.")

    unique = unique_entrants(entrants)
    if not unique:
        return DrawResult(winner=None, shortlist=[], entrant_count=0, unique_count=0)

    shortlist = select_shortlist(unique, cap, randbelow)
    winner = select_winner(shortlist, randbelow)
    return DrawResult(
        winner=winner,
        shortlist=shortlist,
        entrant_count=len(entrants),
        unique_count=len(unique),
        entrants_digest=entrants_digest(unique),
    )
