"""
Django Admin Configuration for Board Models
"""
from django.contrib import admin
from .models import Post, Comment, Vote


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['title', 'type', 'author', 'upvotes', 'downvotes', 'is_deleted', 'is_dead', 'created_at']
    list_filter = ['type', 'is_deleted', 'is_dead', 'created_at']
    search_fields = ['title', 'text', 'url', 'author__username']
    # Counters belong to the vote ledger
    readonly_fields = ['upvotes', 'downvotes', 'created_at']


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'parent', 'score', 'created_at']
    list_filter = ['created_at']
    search_fields = ['text', 'author__username']
    readonly_fields = ['post', 'parent', 'score', 'created_at']


@admin.register(Vote)
class VoteAdmin(admin.ModelAdmin):
    list_display = ['user', 'content_type', 'object_id', 'vote_type', 'updated_at']
    list_filter = ['content_type', 'vote_type']
    search_fields = ['user__username']
    readonly_fields = ['user', 'content_type', 'object_id', 'vote_type', 'created_at', 'updated_at']

    def has_add_permission(self, request):
        # Votes go through services.cast_vote so counters stay in sync
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
