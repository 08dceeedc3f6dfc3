from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from .draw import entrants_digest, unique_entrants
from .errors import DrawVerificationError
from .project_constants import SHORTLIST_CAP


def verify_draw(
    entrants: Sequence[str],
    shortlist: Sequence[str],
    winner: Optional[str],
    digest: Optional[str],
    cap: int = SHORTLIST_CAP,
) -> Dict[str, Any]:
    """Re-checks a recorded draw against the entrants stored for its game."""
    unique = unique_entrants(entrants)
    shortlist = list(shortlist or [])

    if not unique:
        if shortlist or winner:
            raise DrawVerificationError("Game has no entrants but a shortlist or winner was recorded")
        return {"ok": True, "winner": None, "shortlist_size": 0, "unique_entrants": 0}

    recomputed = entrants_digest(unique)
    if digest is not None and digest != recomputed:
        raise DrawVerificationError(f"Entrant digest mismatch: recorded={digest} recomputed={recomputed}")

    if len(set(shortlist)) != len(shortlist):
        raise DrawVerificationError("Shortlist contains duplicate entrants")

    outsiders = set(shortlist) - set(unique)
    if outsiders:
        raise DrawVerificationError(f"Shortlist contains non-entrants: {sorted(outsiders)}")

    expected_size = min(cap, len(unique))
    if len(shortlist) != expected_size:
        raise DrawVerificationError(
            f"Shortlist size mismatch: recorded={len(shortlist)} expected={expected_size}"
        )

    if winner not in shortlist:
        raise DrawVerificationError(f"Winner {winner} is not on the shortlist")

    return {
        "ok": True,
        "winner": winner,
        "shortlist_size": len(shortlist),
        "unique_entrants": len(unique),
        "entrants_digest": recomputed,
    }
