"""
Board App URL Configuration
"""
from django.urls import path

from .models import PostType
from .views import (
    HotPostsView,
    NewestPostsView,
    PostsByTypeView,
    PostDetailView,
    PostSubmitView,
    VoteView,
    PostCommentsView,
)

urlpatterns = [
    # Listings
    path('posts/hot/', HotPostsView.as_view(), name='posts-hot'),
    path('posts/new/', NewestPostsView.as_view(), name='posts-new'),
    path('posts/newest/', NewestPostsView.as_view(), name='posts-newest'),
    path('posts/ask/', PostsByTypeView.as_view(post_type=PostType.ASK), name='posts-ask'),
    path('posts/show/', PostsByTypeView.as_view(post_type=PostType.SHOW), name='posts-show'),
    path('posts/jobs/', PostsByTypeView.as_view(post_type=PostType.JOB), name='posts-jobs'),

    # Posts
    path('posts/submit/', PostSubmitView.as_view(), name='post-submit'),
    path('posts/<int:post_id>/', PostDetailView.as_view(), name='post-detail'),

    # Votes
    path('votes/<str:target_kind>/<int:target_id>/', VoteView.as_view(), name='vote'),

    # Comments
    path('comments/post/<int:post_id>/', PostCommentsView.as_view(), name='post-comments'),
]
