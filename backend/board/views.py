"""
DRF Views
=========

Thin HTTP layer over ranking.py, queries.py and services.py.

Domain errors (InvalidInput, NotFound, ...) are not caught here; the
project-wide exception handler in exceptions.py renders them.

AUTHENTICATION:
---------------
Identity is request.user (session or basic auth, see REST_FRAMEWORK).
Reads are public; writes need an authenticated user
(IsAuthenticatedOrReadOnly).
"""

from django.utils import timezone
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import ranking
from .models import PostType
from .queries import get_post_with_comment_tree, list_comments, get_user_votes
from .serializers import (
    PostSerializer,
    HotPostSerializer,
    CommentSerializer,
    CommentTreeSerializer,
    PostSubmitSerializer,
    CommentCreateSerializer,
    VoteSerializer,
    VoteResultSerializer,
)
from .services import submit_post, create_comment, record_vote


class HotPostsView(APIView):
    """
    GET /api/posts/hot/?limit=30

    Stories, asks and shows ordered by rank score.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        now = timezone.now()
        posts = ranking.list_hot(request.query_params.get('limit'), now=now)
        scores = {post.id: ranking.rank_score(post, now) for post in posts}
        serializer = HotPostSerializer(posts, many=True, context={'rank_scores': scores})
        return Response(serializer.data)


class NewestPostsView(APIView):
    """
    GET /api/posts/new/
    GET /api/posts/newest/

    Stories, asks and shows, most recent first.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        posts = ranking.list_newest(request.query_params.get('limit'))
        return Response(PostSerializer(posts, many=True).data)


class PostsByTypeView(APIView):
    """
    GET /api/posts/ask/
    GET /api/posts/show/
    GET /api/posts/jobs/

    ``post_type`` is set per route with as_view(post_type=...).
    """
    permission_classes = [permissions.AllowAny]
    post_type = PostType.STORY

    def get(self, request):
        posts = ranking.list_by_type(self.post_type, request.query_params.get('limit'))
        return Response(PostSerializer(posts, many=True).data)


class PostDetailView(APIView):
    """
    GET /api/posts/<id>/

    Returns the post with its nested comment tree and, for a signed-in
    caller, their votes on the post and its comments.

    QUERY COUNT: 3-4
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, post_id):
        result = get_post_with_comment_tree(post_id)
        post = result['post']
        user_votes = get_user_votes(request.user, post.id)

        data = PostSerializer(post).data
        data['comments'] = CommentTreeSerializer(result['comments'], many=True).data
        data['comment_count'] = result['comment_count']
        data['user_votes'] = {
            'post': user_votes['post_vote'],
            'comments': {str(cid): vote for cid, vote in user_votes['comment_votes'].items()},
        }
        return Response(data)


class PostSubmitView(APIView):
    """
    POST /api/posts/submit/

    Body:
    {
        "title": "...",
        "type": "story" | "ask" | "show" | "job",   // optional, default story
        "url": "https://...",                      // story/show/job
        "text": "..."                              // ask, or instead of url
    }
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = PostSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        post = submit_post(
            request.user,
            data['title'],
            post_type=data.get('type'),
            url=data.get('url'),
            text=data.get('text'),
        )
        return Response(PostSerializer(post).data, status=status.HTTP_201_CREATED)


class VoteView(APIView):
    """
    POST /api/votes/<post|comment>/<id>/

    Body: { "vote_type": 1 | -1 }

    Returns the target with updated counters plus what the ledger did
    ('created', 'unchanged', 'changed').
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, target_kind, target_id):
        serializer = VoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = record_vote(
            request.user,
            target_kind,
            target_id,
            serializer.validated_data['vote_type'],
        )
        return Response(VoteResultSerializer({
            'target_kind': target_kind,
            'action': result.action,
            'vote_type': result.vote_type,
            'previous_vote_type': result.previous_vote_type,
            'target': result.target,
        }).data)


class PostCommentsView(APIView):
    """
    GET  /api/comments/post/<post_id>/   flat list, newest first
    POST /api/comments/post/<post_id>/   create a comment

    Body:
    {
        "text": "Comment text",
        "parent_id": 123  // optional, for replies
    }
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, post_id):
        comments = list_comments(post_id)
        return Response(CommentSerializer(comments, many=True).data)

    def post(self, request, post_id):
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        comment = create_comment(
            post_id,
            request.user,
            serializer.validated_data['text'],
            parent_id=serializer.validated_data.get('parent_id'),
        )
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)
