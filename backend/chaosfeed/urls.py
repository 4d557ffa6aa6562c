"""
Chaos Feed URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Chaos Feed API Server',
        'version': '1.0',
        'endpoints': {
            'token': '/api/auth/token/',
            'whoami': '/api/auth/whoami/',
            'community_feed': '/api/community/feed/',
            'jobs': '/api/admin/jobs/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('feed.urls')),
]
