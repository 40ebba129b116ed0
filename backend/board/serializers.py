"""
DRF Serializers
===============

Output serializers render posts and comments; input serializers only check
the request shape (types, presence). Domain rules live in services.py and
come back as typed errors.
"""

from rest_framework import serializers
from django.contrib.auth.models import User

from .models import Post, Comment, PostType, TargetKind


class UserSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""

    class Meta:
        model = User
        fields = ['id', 'username']
        read_only_fields = fields


class PostSerializer(serializers.ModelSerializer):
    """Post as shown in listings and on the detail page."""
    author = UserSerializer(read_only=True)
    points = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id',
            'title',
            'url',
            'text',
            'type',
            'author',
            'created_at',
            'upvotes',
            'downvotes',
            'points',
            'is_dead',
        ]
        read_only_fields = fields

    def get_points(self, obj):
        return obj.upvotes - obj.downvotes


class HotPostSerializer(PostSerializer):
    """Hot listing entry; `rank_score` comes from context['rank_scores']."""
    rank_score = serializers.SerializerMethodField()

    class Meta(PostSerializer.Meta):
        fields = PostSerializer.Meta.fields + ['rank_score']
        read_only_fields = fields

    def get_rank_score(self, obj):
        return self.context['rank_scores'].get(obj.id)


class CommentSerializer(serializers.ModelSerializer):
    """
    Serializer for individual comments.

    NOTE: This does NOT include nested replies!
    Tree structure is handled by CommentTreeSerializer.
    """
    author = UserSerializer(read_only=True)
    post_id = serializers.IntegerField(read_only=True)
    parent_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Comment
        fields = [
            'id',
            'post_id',
            'parent_id',
            'text',
            'author',
            'score',
            'created_at'
        ]
        read_only_fields = fields


class CommentTreeSerializer(serializers.Serializer):
    """
    Serializer for the pre-built tree from queries.build_comment_tree().

    Structure:
    {
        "comment": { ...comment data... },
        "replies": [ ...nested CommentTreeSerializer... ]
    }
    """
    comment = CommentSerializer()
    replies = serializers.SerializerMethodField()

    def get_replies(self, obj):
        return CommentTreeSerializer(obj['replies'], many=True).data


class PostSubmitSerializer(serializers.Serializer):
    title = serializers.CharField(allow_blank=True, trim_whitespace=False)
    type = serializers.ChoiceField(choices=PostType.choices, required=False)
    url = serializers.CharField(required=False, allow_null=True, allow_blank=True, trim_whitespace=False)
    text = serializers.CharField(required=False, allow_null=True, allow_blank=True, trim_whitespace=False)


class CommentCreateSerializer(serializers.Serializer):
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)
    parent_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class VoteSerializer(serializers.Serializer):
    """
    Request body for a vote. Only the shape is checked here; which values
    are allowed depends on the ruleset and is decided by services.cast_vote.
    """
    vote_type = serializers.IntegerField()


class VoteResultSerializer(serializers.Serializer):
    target_kind = serializers.ChoiceField(choices=TargetKind.choices)
    action = serializers.CharField()
    vote_type = serializers.IntegerField()
    previous_vote_type = serializers.IntegerField(allow_null=True)
    target = serializers.SerializerMethodField()

    def get_target(self, obj):
        if isinstance(obj['target'], Post):
            return PostSerializer(obj['target']).data
        return CommentSerializer(obj['target']).data
