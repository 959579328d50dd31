"""
Pod name matching.

Free-text pod references ("groceries", "car gas") are compared against the
household's pod names after normalization. Ranking feeds the client's
suggestion list; resolution only ever returns a pod when the match is unique.
"""

import re
from typing import Optional, Sequence, TypeVar

from budgetpods.models.budget import PodSnapshot


DEFAULT_CANDIDATE_LIMIT = 8

_QUOTES_RE = re.compile(r"['\"]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_SPACES_RE = re.compile(r"\s+")

PodT = TypeVar("PodT", bound=PodSnapshot)


def normalize_name(s: str) -> str:
    """Lowercase, drop quotes, collapse everything else to single spaces."""
    s = _QUOTES_RE.sub("", s.lower())
    s = _NON_ALNUM_RE.sub(" ", s).strip()
    return _SPACES_RE.sub(" ", s)


def _name_sort_key(name: str) -> tuple[str, str]:
    return (name.casefold(), name)


def _score(query: str, name: str) -> int:
    n = normalize_name(name)
    score = 0

    if n == query:
        score += 1000
    if n.startswith(query):
        score += 300
    if query in n:
        score += 200

    # token overlap
    q_tokens = set(query.split())
    n_tokens = set(n.split())
    score += 50 * len(q_tokens & n_tokens)

    # prefer closer lengths
    score -= abs(len(n) - len(query))
    return score


def rank_candidates(
    query: str,
    pod_names: Sequence[str],
    limit: int = DEFAULT_CANDIDATE_LIMIT,
) -> list[str]:
    """
    Rank pod names by similarity to a free-text query.

    Args:
        query: What the user typed
        pod_names: Names to rank, in household order
        limit: Maximum names returned

    Returns:
        Up to `limit` names, best first. An empty query returns the
        first `limit` names unchanged.
    """
    q = normalize_name(query)
    if not q:
        return list(pod_names[:limit])

    scored = [(name, _score(q, name)) for name in pod_names]
    scored.sort(key=lambda pair: (-pair[1], _name_sort_key(pair[0])))
    return [name for name, _ in scored[:limit]]


def resolve_unique_pod(raw: str, pods: Sequence[PodT]) -> Optional[PodT]:
    """
    Resolve a free-text reference to exactly one pod, or None.

    Tiers are tried in order (exact, prefix, substring) and a tier only
    wins when it matches a single pod. Never guesses between ties.
    """
    q = normalize_name(raw)
    if not q:
        return None

    normalized = [(pod, normalize_name(pod.name)) for pod in pods]

    for matches in (
        lambda n: n == q,
        lambda n: n.startswith(q),
        lambda n: q in n,
    ):
        hits = [pod for pod, n in normalized if matches(n)]
        if len(hits) == 1:
            return hits[0]
    return None


def unique_names(*groups: Sequence[str]) -> list[str]:
    """Concatenate name lists, keeping first occurrences."""
    return list(dict.fromkeys(name for group in groups for name in group))
