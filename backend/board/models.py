"""
Data Models for NewsBoard
=========================

Design Notes:
-------------
1. Comments use the Adjacency List pattern (parent FK).
   - A parent must exist before its reply and the pointer never moves,
     so the structure is always a tree.
   - Nesting is rebuilt on read (see queries.build_comment_tree).

2. Votes use a polymorphic target via ContentType
   - One ledger table for posts and comments
   - Unique constraint (user, content_type, object_id) guarantees at most
     one live vote per user per target at the DB level

3. Counters are denormalized onto the target row
   - Post.upvotes / Post.downvotes, Comment.score
   - Only services.cast_vote touches them, always with F() expressions
     inside the same transaction as the ledger write
   - Invariant: counters == aggregate of Vote rows for that target

Indexes Strategy:
-----------------
- post.created_at: newest listings and hot tie-break
- post (is_deleted, is_dead, type): listing filters
- comment (post, created_at): all comments for a post
- vote (user, content_type, object_id): uniqueness + lookup
"""

from django.db import models
from django.contrib.auth.models import User
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.utils import timezone


class PostType(models.TextChoices):
    STORY = 'story', 'Story'
    ASK = 'ask', 'Ask'
    SHOW = 'show', 'Show'
    JOB = 'job', 'Job'


class TargetKind(models.TextChoices):
    POST = 'post', 'Post'
    COMMENT = 'comment', 'Comment'


class VoteType(models.IntegerChoices):
    UP = 1, 'Upvote'
    DOWN = -1, 'Downvote'


# Types shown in the hot and newest feeds. Jobs only appear in their own listing.
FEED_POST_TYPES = (PostType.STORY, PostType.ASK, PostType.SHOW)


class Post(models.Model):
    """
    A submitted link or text post.

    ``ask`` posts carry text only; every other type carries exactly one of
    url or text. The rule is enforced by services.submit_post.
    """
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts',
        db_index=True
    )
    title = models.CharField(max_length=300)
    url = models.URLField(max_length=2000, null=True, blank=True)
    text = models.TextField(null=True, blank=True)
    type = models.CharField(
        max_length=10,
        choices=PostType.choices,
        default=PostType.STORY
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True  # newest ordering + hot tie-break
    )

    # Maintained by the vote ledger only
    upvotes = models.PositiveIntegerField(default=0)
    downvotes = models.PositiveIntegerField(default=0)

    # Soft-hide flags: excluded from listings, never physically removed
    is_deleted = models.BooleanField(default=False)
    is_dead = models.BooleanField(default=False)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['is_deleted', 'is_dead', 'type', '-created_at'],
                         name='board_post_listing_idx'),
        ]

    def __str__(self):
        return f"{self.title[:50]} by {self.author.username}"


class Comment(models.Model):
    """
    Threaded comment. ``parent`` is null for top-level comments and otherwise
    points at a comment on the same post.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments',
        db_index=True
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies',
        db_index=True
    )
    text = models.TextField()
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )

    # Maintained by the vote ledger only
    score = models.IntegerField(default=0)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['post', 'created_at'], name='board_comment_post_idx'),
        ]

    def __str__(self):
        return f"Comment by {self.author.username} on {self.post_id}"


class Vote(models.Model):
    """
    Ledger row: one live vote per (user, target).

    A changed vote updates ``vote_type`` in place; rows are never duplicated.
    """
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='votes'
    )

    # Generic foreign key to Post or Comment
    content_type = models.ForeignKey(
        ContentType,
        on_delete=models.CASCADE
    )
    object_id = models.PositiveBigIntegerField()
    target = GenericForeignKey('content_type', 'object_id')

    vote_type = models.SmallIntegerField(choices=VoteType.choices)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'content_type', 'object_id'],
                name='unique_vote_per_user_per_target'
            ),
            models.CheckConstraint(
                condition=models.Q(vote_type__in=[1, -1]),
                name='vote_type_up_or_down'
            ),
        ]
        indexes = [
            models.Index(fields=['content_type', 'object_id'], name='board_vote_target_idx'),
        ]

    def __str__(self):
        direction = 'up' if self.vote_type == VoteType.UP else 'down'
        return f"{self.user.username} {direction}voted {self.content_type.model} {self.object_id}"
