"""
Write Services: Posts, Comments and the Vote Ledger
===================================================

VOTE STATE MACHINE (per user, per target):
------------------------------------------
    NoVote    --(+1)--> UpVoted     insert row, upvotes += 1
    NoVote    --(-1)--> DownVoted   insert row, downvotes += 1
    UpVoted   --(+1)--> UpVoted     no-op
    UpVoted   --(-1)--> DownVoted   update row, upvotes -= 1, downvotes += 1
    DownVoted --(+1)--> UpVoted     update row, downvotes -= 1, upvotes += 1
    DownVoted --(-1)--> DownVoted   no-op

Comments run the same machine against ``score`` (delta = new - old).
Which values are accepted is decided per target kind by
BOARD['VOTE_RULESETS'] ('updown' or 'up_only'). A value outside the
ruleset is rejected with InvalidInput, never turned into a no-op.

CONCURRENCY STRATEGY:
---------------------
Problem: two requests vote on the same target at once.
Naive: read counter -> add 1 -> write counter  => LOST UPDATE

Everything for one vote runs in a single transaction.atomic() block:

1. SELECT ... FOR UPDATE on the target row. Concurrent votes on the same
   target queue behind this lock (SQLite serializes writers instead).
2. Read the caller's ledger row for the target.
3. Insert it, leave it, or compare-and-set its vote_type
   (UPDATE ... WHERE id = %s AND vote_type = <old>).
4. Move the counters with F() expressions (UPDATE ... SET upvotes = upvotes + 1).

If any step fails the ledger change and the counter change roll back
together. The unique constraint on (user, content_type, object_id) is the
last line: a duplicate insert raises IntegrityError, reported as Conflict.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from django.contrib.auth.models import User
from django.contrib.contenttypes.models import ContentType
from django.core.exceptions import ValidationError
from django.core.validators import URLValidator
from django.db import transaction, IntegrityError
from django.db.models import F

from .conf import allowed_vote_types
from .exceptions import InvalidInput, NotFound, Unauthorized, Conflict
from .models import Post, Comment, Vote, PostType, TargetKind, VoteType

logger = logging.getLogger(__name__)

TARGET_MODELS = {
    TargetKind.POST: Post,
    TargetKind.COMMENT: Comment,
}

TITLE_MAX_LENGTH = Post._meta.get_field('title').max_length
URL_MAX_LENGTH = Post._meta.get_field('url').max_length

validate_url = URLValidator(schemes=['http', 'https'])


@dataclass
class VoteResult:
    """Outcome of a vote: the refreshed target plus what the ledger did."""
    target: Union[Post, Comment]
    action: str  # 'created' | 'unchanged' | 'changed'
    vote_type: int
    previous_vote_type: Optional[int] = None


# ============================================================================
# INPUT HELPERS
# ============================================================================

def _require_user(user: User) -> User:
    if user is None or not user.is_authenticated:
        raise Unauthorized()
    return user


def _clean_text(value, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string")
    return value.strip()


def _coerce_id(value, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be an integer") from None


# ============================================================================
# POSTS
# ============================================================================

def submit_post(
    author: User,
    title: str,
    post_type: Optional[str] = None,
    url: Optional[str] = None,
    text: Optional[str] = None,
) -> Post:
    """
    Create a post.

    RULES:
    - title is required
    - post_type defaults to 'story'; unknown types are rejected
    - 'ask' posts need text and must not carry a url
    - every other type needs exactly one of url / text
    Blank strings count as absent.
    """
    _require_user(author)

    title = _clean_text(title, 'title')
    if not title:
        raise InvalidInput('title is required')
    if len(title) > TITLE_MAX_LENGTH:
        raise InvalidInput(f"title must be at most {TITLE_MAX_LENGTH} characters")

    if not post_type:
        post_type = PostType.STORY
    if post_type not in PostType.values:
        raise InvalidInput(f"Unknown post type: {post_type!r}")

    url = _clean_text(url, 'url') or None
    text = _clean_text(text, 'text') or None

    if post_type == PostType.ASK:
        if not text or url:
            raise InvalidInput('Ask posts must include text only (no url)')
    elif bool(url) == bool(text):
        raise InvalidInput('Provide exactly one of url or text')

    if url:
        if len(url) > URL_MAX_LENGTH:
            raise InvalidInput(f"url must be at most {URL_MAX_LENGTH} characters")
        try:
            validate_url(url)
        except ValidationError:
            raise InvalidInput(f"Invalid url: {url!r}") from None

    post = Post.objects.create(
        author=author,
        title=title,
        type=post_type,
        url=url,
        text=text,
    )
    logger.info("Post %s submitted by user %s (type=%s)", post.id, author.id, post_type)
    return post


# ============================================================================
# COMMENTS
# ============================================================================

def create_comment(
    post_id: int,
    author: User,
    text: str,
    parent_id: Optional[int] = None,
) -> Comment:
    """
    Add a comment to a post, optionally as a reply.

    The parent must be a comment on the same post. Since the parent already
    exists and ``parent`` never changes afterwards, no cycle can form.
    """
    _require_user(author)

    text = _clean_text(text, 'text')
    if not text:
        raise InvalidInput('Comment text is required')

    post_id = _coerce_id(post_id, 'post_id')
    post = Post.objects.filter(id=post_id, is_deleted=False).first()
    if post is None:
        raise NotFound(f"Post {post_id} does not exist")

    parent = None
    if parent_id is not None:
        parent_id = _coerce_id(parent_id, 'parent_id')
        parent = Comment.objects.filter(id=parent_id).first()
        if parent is None:
            raise NotFound(f"Comment {parent_id} does not exist")
        if parent.post_id != post.id:
            raise InvalidInput('Parent comment must belong to the same post.')

    comment = Comment.objects.create(
        post=post,
        author=author,
        parent=parent,
        text=text,
    )
    logger.info(
        "Comment %s created on post %s by user %s (parent=%s)",
        comment.id, post.id, author.id, parent_id,
    )
    return comment


# ============================================================================
# VOTE LEDGER
# ============================================================================

def _resolve_target_kind(target_kind) -> TargetKind:
    try:
        return TargetKind(target_kind)
    except ValueError:
        raise InvalidInput(
            f"Invalid target kind {target_kind!r}. Must be 'post' or 'comment'"
        ) from None


def _validate_vote_type(target_kind: TargetKind, vote_type) -> int:
    allowed = allowed_vote_types(target_kind)
    # bool is an int subclass; True must not pass as an upvote
    if isinstance(vote_type, bool) or not isinstance(vote_type, int) or vote_type not in allowed:
        choices = ' or '.join(str(value) for value in sorted(allowed, reverse=True))
        raise InvalidInput(f"Invalid vote type {vote_type!r} for {target_kind}. Must be {choices}")
    return int(vote_type)


def _lock_target(target_kind: TargetKind, target_id: int):
    """Fetch and row-lock the vote target. Must run inside a transaction."""
    model = TARGET_MODELS[target_kind]
    target = model.objects.select_for_update().filter(id=target_id).first()
    if target is None:
        raise NotFound(f"{target_kind.label} {target_id} does not exist")

    if target_kind == TargetKind.POST:
        deleted = target.is_deleted
    else:
        deleted = not Post.objects.filter(id=target.post_id, is_deleted=False).exists()
    if deleted:
        raise NotFound(f"{target_kind.label} {target_id} does not exist")
    return target


def _counter_updates(target_kind: TargetKind, previous: Optional[int], new: int) -> dict:
    """F() updates that move the target's counters from ``previous`` to ``new``."""
    if target_kind == TargetKind.COMMENT:
        return {'score': F('score') + (new - (previous or 0))}

    updates = {}
    if previous == VoteType.UP:
        updates['upvotes'] = F('upvotes') - 1
    elif previous == VoteType.DOWN:
        updates['downvotes'] = F('downvotes') - 1

    if new == VoteType.UP:
        updates['upvotes'] = F('upvotes') + 1
    else:
        updates['downvotes'] = F('downvotes') + 1
    return updates


def record_vote(user: User, target_kind: str, target_id: int, vote_type: int) -> VoteResult:
    """
    Apply one vote-state transition atomically.

    RAISES:
    - Unauthorized: no authenticated user
    - InvalidInput: unknown target kind or vote type outside the ruleset
    - NotFound: target missing or deleted
    - Conflict: duplicate ledger row or concurrent change detected
    """
    _require_user(user)
    kind = _resolve_target_kind(target_kind)
    vote_type = _validate_vote_type(kind, vote_type)
    target_id = _coerce_id(target_id, 'target_id')

    model = TARGET_MODELS[kind]
    content_type = ContentType.objects.get_for_model(model)

    try:
        with transaction.atomic():
            _lock_target(kind, target_id)

            existing = (
                Vote.objects
                .filter(user=user, content_type=content_type, object_id=target_id)
                .first()
            )
            previous = existing.vote_type if existing else None

            if existing is None:
                Vote.objects.create(
                    user=user,
                    content_type=content_type,
                    object_id=target_id,
                    vote_type=vote_type,
                )
                action = 'created'
            elif previous == vote_type:
                action = 'unchanged'
            else:
                swapped = (
                    Vote.objects
                    .filter(id=existing.id, vote_type=previous)
                    .update(vote_type=vote_type)
                )
                if swapped != 1:
                    raise Conflict(f"Vote on {kind} {target_id} changed concurrently")
                action = 'changed'

            if action != 'unchanged':
                model.objects.filter(id=target_id).update(
                    **_counter_updates(kind, previous, vote_type)
                )

    except IntegrityError:
        logger.warning(
            "Duplicate vote by user %s on %s %s rejected", user.id, kind, target_id
        )
        raise Conflict(f"Vote on {kind} {target_id} already recorded") from None

    target = model.objects.select_related('author').get(id=target_id)
    logger.info(
        "Vote %s by user %s on %s %s (%s -> %s)",
        action, user.id, kind, target_id, previous, vote_type,
    )
    return VoteResult(
        target=target,
        action=action,
        vote_type=vote_type,
        previous_vote_type=previous,
    )


def cast_vote(user: User, target_kind: str, target_id: int, vote_type: int) -> Union[Post, Comment]:
    """Vote on a post or comment and return the target with updated counters."""
    return record_vote(user, target_kind, target_id, vote_type).target
