"""
Read Queries: Posts and Comment Threads
=======================================

Comments are stored flat with a parent pointer. Reads fetch every comment
of a post in ONE query (author joined) and leave nesting to the caller:

    list_comments(post_id)           -> flat list, newest first
    build_comment_tree(flat)         -> nested nodes, oldest first per level

Loading a post with its whole thread is 2 queries regardless of depth:
    1. SELECT post.*, user.* FROM post JOIN user WHERE post.id = %s
    2. SELECT comment.*, user.* FROM comment JOIN user WHERE post_id = %s
"""

from typing import Optional

from django.contrib.auth.models import User
from django.contrib.contenttypes.models import ContentType
from django.db.models import Q

from .exceptions import NotFound, InvalidInput
from .models import Post, Comment, Vote


def _post_id(value) -> int:
    if isinstance(value, bool):
        raise InvalidInput('post_id must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput('post_id must be an integer') from None


def get_post(post_id: int) -> Post:
    """
    Fetch a single post with its author.

    Deleted posts are reported as missing. Dead posts are still returned so
    their direct link keeps working; listings hide them.
    """
    post_id = _post_id(post_id)
    post = (
        Post.objects
        .select_related('author')
        .filter(id=post_id, is_deleted=False)
        .first()
    )
    if post is None:
        raise NotFound(f"Post {post_id} does not exist")
    return post


def list_comments(post_id: int) -> list[Comment]:
    """
    All comments for a post in a single query, newest first.

    Each comment carries ``parent_id``; grouping replies under parents is
    left to build_comment_tree or the client.
    """
    post_id = _post_id(post_id)
    if not Post.objects.filter(id=post_id).exists():
        raise NotFound(f"Post {post_id} does not exist")

    return list(
        Comment.objects
        .filter(post_id=post_id)
        .select_related('author')
        .order_by('-created_at', '-id')
    )


def build_comment_tree(flat_comments: list[Comment]) -> list[dict]:
    """
    Build nested tree structure from flat list.

    Algorithm: O(n log n) sort, then O(n) with a hash map
    1. Sort oldest first so every level reads chronologically
    2. Create lookup dict {id -> node}
    3. Attach each node to its parent's replies

    Example Output:
        [
            {
                'comment': Comment(id=1),
                'replies': [
                    {'comment': Comment(id=2), 'replies': []},
                ]
            }
        ]

    A comment whose parent is not in the input (e.g. a partial list) is
    returned as a root.
    """
    ordered = sorted(flat_comments, key=lambda c: (c.created_at, c.id))

    nodes = {}
    for comment in ordered:
        nodes[comment.id] = {
            'comment': comment,
            'replies': []
        }

    root_nodes = []
    for comment in ordered:
        node = nodes[comment.id]
        parent_node = nodes.get(comment.parent_id) if comment.parent_id is not None else None
        if parent_node is None:
            root_nodes.append(node)
        else:
            parent_node['replies'].append(node)

    return root_nodes


def get_post_with_comment_tree(post_id: int) -> dict:
    """
    Post plus its nested thread.

    TOTAL QUERIES: 3 (post, existence check, comments)
    """
    post = get_post(post_id)
    flat_comments = list_comments(post.id)
    return {
        'post': post,
        'comments': build_comment_tree(flat_comments),
        'comment_count': len(flat_comments)
    }


def get_user_votes(user: Optional[User], post_id: int) -> dict:
    """
    The caller's votes on a post and on that post's comments.

    Query: 1 (plus cached ContentType lookups)

    Returns: {
        'post_vote': 1 | -1 | None,
        'comment_votes': {comment_id: 1 | -1}
    }
    """
    result = {'post_vote': None, 'comment_votes': {}}
    if user is None or not user.is_authenticated:
        return result

    post_id = _post_id(post_id)
    post_ct = ContentType.objects.get_for_model(Post)
    comment_ct = ContentType.objects.get_for_model(Comment)

    comment_ids = Comment.objects.filter(post_id=post_id).values('id')
    votes = Vote.objects.filter(
        user_id=user.id
    ).filter(
        Q(content_type=post_ct, object_id=post_id) |
        Q(content_type=comment_ct, object_id__in=comment_ids)
    ).values_list('content_type_id', 'object_id', 'vote_type')

    for ct_id, obj_id, vote_type in votes:
        if ct_id == post_ct.id:
            result['post_vote'] = vote_type
        else:
            result['comment_votes'][obj_id] = vote_type

    return result
