"""
Ranking Engine
==============

Orders posts for the listing views.

SCORING STRATEGIES:
-------------------
decay (default):
    score = upvotes / (age_hours + 2)

    age_hours is clamped to >= 0 so a post stamped slightly in the future
    (clock skew) scores like a brand-new one. The +2 bounds the score of a
    fresh post at upvotes / 2.

net:
    score = upvotes - downvotes

Both are pure functions of (upvotes, downvotes, created_at, now). The active
one is chosen with BOARD['RANKING_STRATEGY'].

QUERY STRATEGY:
---------------
Scores are computed on read, in Python, over a candidate set; heapq.nlargest
keeps only ``limit`` rows in memory. Computing the decay in SQL would need
per-backend epoch arithmetic (strftime on SQLite, EXTRACT(EPOCH ...) on
PostgreSQL), so instead each strategy narrows the rows with plain filters:

net:
    ORDER BY upvotes - downvotes DESC, created_at DESC, id DESC LIMIT n

decay:
    The newest n posts are fetched first. The lowest score among them is a
    floor every other post has to reach, and reaching it needs

        upvotes   >= floor * 2
        age_hours <= max(upvotes) / floor - 2

    so only the newest n plus the posts inside both bounds are scored.
    A quiet board (floor 0) scores the newest n plus anything upvoted.

All functions here are read-only; nothing touches vote counters.
"""

import heapq
import itertools
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from django.core.exceptions import ImproperlyConfigured
from django.db.models import F, Max, QuerySet
from django.utils import timezone

from .conf import board_setting
from .exceptions import InvalidInput
from .models import Post, PostType, FEED_POST_TYPES

# Offset added to the age so new posts don't divide by ~0
AGE_OFFSET_HOURS = 2.0
SECONDS_PER_HOUR = 3600.0
# Slack on the decay age cutoff for float rounding; beyond the cap no cutoff
HORIZON_SLACK_HOURS = 1.0
MAX_HORIZON_HOURS = 24 * 365 * 100


def age_in_hours(created_at: datetime, now: datetime) -> float:
    """Hours between ``created_at`` and ``now``, never negative."""
    return max(0.0, (now - created_at).total_seconds() / SECONDS_PER_HOUR)


def decayed_score(upvotes: int, created_at: datetime, now: datetime) -> float:
    return upvotes / (age_in_hours(created_at, now) + AGE_OFFSET_HOURS)


def net_score(upvotes: int, downvotes: int) -> int:
    return upvotes - downvotes


STRATEGIES: dict[str, Callable[[Post, datetime], float]] = {
    'decay': lambda post, now: decayed_score(post.upvotes, post.created_at, now),
    'net': lambda post, now: net_score(post.upvotes, post.downvotes),
}


def get_strategy(name: Optional[str] = None) -> Callable[[Post, datetime], float]:
    name = name or board_setting('RANKING_STRATEGY')
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ImproperlyConfigured(
            f"Unknown ranking strategy {name!r}; expected one of {sorted(STRATEGIES)}"
        ) from None


def rank_score(post: Post, now: Optional[datetime] = None, strategy: Optional[str] = None) -> float:
    """
    Hotness score of ``post`` at ``now`` under ``strategy``.

    Example (decay):
        upvotes=10, created 1h ago  -> 10 / 3 = 3.33
        upvotes=10, created now     -> 10 / 2 = 5.0
    """
    if now is None:
        now = timezone.now()
    return get_strategy(strategy)(post, now)


def resolve_limit(limit=None) -> int:
    """
    Normalize a listing limit.

    None -> BOARD['DEFAULT_LIST_LIMIT']; values above BOARD['MAX_LIST_LIMIT']
    are clamped; anything that is not a positive integer is rejected.
    """
    if limit is None:
        return board_setting('DEFAULT_LIST_LIMIT')
    # query strings arrive as str; floats would be truncated silently by int()
    if isinstance(limit, bool) or not isinstance(limit, (int, str)):
        raise InvalidInput('limit must be a positive integer')
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise InvalidInput('limit must be a positive integer') from None
    if limit < 1:
        raise InvalidInput('limit must be a positive integer')
    return min(limit, board_setting('MAX_LIST_LIMIT'))


def listable_posts() -> QuerySet:
    """Posts that may appear in any listing: not deleted, not dead."""
    return (
        Post.objects
        .select_related('author')
        .filter(is_deleted=False, is_dead=False)
    )


def list_hot(limit=None, now: Optional[datetime] = None, strategy: Optional[str] = None) -> list[Post]:
    """
    Hot feed: stories, asks and shows ordered by rank score.

    Ties go to the newer post, then to the higher id.
    """
    limit = resolve_limit(limit)
    if now is None:
        now = timezone.now()
    strategy = strategy or board_setting('RANKING_STRATEGY')
    score = get_strategy(strategy)

    posts = listable_posts().filter(type__in=FEED_POST_TYPES)
    narrow = CANDIDATES.get(strategy)
    candidates = narrow(posts, limit, now, score) if narrow else posts.iterator()
    return heapq.nlargest(
        limit,
        candidates,
        key=lambda post: (score(post, now), post.created_at, post.id),
    )


def _net_candidates(posts: QuerySet, limit: int, now: datetime, score) -> QuerySet:
    return (
        posts
        .alias(net=F('upvotes') - F('downvotes'))
        .order_by('-net', '-created_at', '-id')[:limit]
    )


def _decay_candidates(posts: QuerySet, limit: int, now: datetime, score):
    newest = list(posts.order_by('-created_at', '-id')[:limit])
    if len(newest) < limit:
        return newest

    floor = min(score(post, now) for post in newest)
    contenders = posts.exclude(id__in=[post.id for post in newest])
    if floor <= 0:
        contenders = contenders.filter(upvotes__gt=0)
    else:
        contenders = contenders.filter(upvotes__gte=math.floor(floor * AGE_OFFSET_HOURS))
        max_upvotes = contenders.aggregate(most=Max('upvotes'))['most']
        if max_upvotes is None:
            return newest
        horizon = max_upvotes / floor - AGE_OFFSET_HOURS + HORIZON_SLACK_HOURS
        if horizon < MAX_HORIZON_HOURS:
            contenders = contenders.filter(created_at__gte=now - timedelta(hours=horizon))
    return itertools.chain(newest, contenders.iterator())


# Per-strategy narrowing of the hot candidate set; strategies without an
# entry score every listable post.
CANDIDATES = {
    'decay': _decay_candidates,
    'net': _net_candidates,
}


def list_newest(limit=None) -> list[Post]:
    """Newest feed: stories, asks and shows, most recent first."""
    limit = resolve_limit(limit)
    return list(
        listable_posts()
        .filter(type__in=FEED_POST_TYPES)
        .order_by('-created_at', '-id')[:limit]
    )


def list_by_type(post_type: str, limit=None) -> list[Post]:
    """Single-type listing (ask / show / job / story), most recent first."""
    if post_type not in PostType.values:
        raise InvalidInput(f"Unknown post type: {post_type!r}")
    limit = resolve_limit(limit)
    return list(
        listable_posts()
        .filter(type=post_type)
        .order_by('-created_at', '-id')[:limit]
    )
