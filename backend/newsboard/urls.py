"""
NewsBoard URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'NewsBoard API Server',
        'version': '1.0',
        'endpoints': {
            'hot': '/api/posts/hot/',
            'newest': '/api/posts/newest/',
            'by_type': '/api/posts/<ask|show|jobs>/',
            'post': '/api/posts/<id>/',
            'submit': '/api/posts/submit/',
            'vote': '/api/votes/<post|comment>/<id>/',
            'comments': '/api/comments/post/<id>/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('board.urls')),
]
