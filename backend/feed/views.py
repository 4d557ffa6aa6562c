"""
DRF Views
=========

Callable endpoints for the Chaos Feed backend.

    POST /api/auth/token/                          issue a bearer token
    GET  /api/auth/whoami/                         who does this token belong to
    GET  /api/community/feed/                      public community feed
    POST /api/admin/jobs/normalize-usernames/      backfill username_lower
    POST /api/admin/jobs/backfill-community-feed/  backfill community posts

Errors are rendered by exceptions.custom_exception_handler with a stable
"code" classification.
"""

import logging
from collections.abc import Mapping

from rest_framework import generics, permissions
from rest_framework.authentication import SessionAuthentication
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import CursorPagination

from .authentication import BearerTokenAuthentication
from .backfill import normalize_usernames, backfill_community_feed
from .exceptions import InvalidArgument, InternalFailure
from .models import CommunityPost
from .serializers import TokenRequestSerializer, CommunityPostSerializer
from .services import issue_token

logger = logging.getLogger(__name__)

MIGRATION_COMPLETE = 'Migration complete'


class FeedPagination(CursorPagination):
    """
    Cursor pagination for the community feed: newest first, infinite
    scroll, no arbitrary page jumps.
    """
    page_size = 20
    ordering = '-created_at'
    cursor_query_param = 'cursor'


class IssueTokenView(APIView):
    """
    POST /api/auth/token/

    Body:
    {
        "username": "Kazuma",
        "displayName": "Kazuma Satou",   // optional, registration only
        "isRegistration": true
    }

    Returns:
    {
        "token": "<bearer token>",
        "principalId": "<uid>"
    }
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        if not isinstance(request.data, Mapping) or not request.data:
            logger.error("Invalid or empty data payload received")
            raise InvalidArgument('Request data is missing or malformed.')

        serializer = TokenRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        grant = issue_token(
            data['username'],
            display_name=data['display_name'],
            is_registration=data['is_registration']
        )
        return Response({
            'token': grant.token,
            'principalId': grant.principal_id
        })


class WhoAmIView(APIView):
    """
    GET /api/auth/whoami/

    Returns the principal behind the presented bearer token.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        profile = getattr(request.user, 'profile', None) if request.user.is_authenticated else None
        if profile is not None:
            return Response({
                'authenticated': True,
                'principalId': profile.uid,
                'username': profile.username
            })
        return Response({
            'authenticated': request.user.is_authenticated,
            'principalId': None,
            'username': None
        })


class CommunityFeedView(generics.ListAPIView):
    """
    GET /api/community/feed/

    Paginated community posts, newest first. Only anonymized fields are
    returned.
    """
    serializer_class = CommunityPostSerializer
    pagination_class = FeedPagination
    permission_classes = [permissions.AllowAny]

    def get_queryset(self):
        return CommunityPost.objects.order_by('-created_at')


class StaffJobView(APIView):
    """
    Base for admin job endpoints. Staff either present a bearer token or
    reuse their Django admin session (CSRF enforced).
    """
    authentication_classes = [BearerTokenAuthentication, SessionAuthentication]
    permission_classes = [permissions.IsAdminUser]


class NormalizeUsernamesView(StaffJobView):
    """
    POST /api/admin/jobs/normalize-usernames/

    Admin only. Returns {"status", "updatedCount"}.
    """

    def post(self, request):
        try:
            updated_count = normalize_usernames()
        except Exception as exc:
            logger.exception("Username normalization failed")
            raise InternalFailure('Migration failed', diagnostic=str(exc))

        return Response({
            'status': MIGRATION_COMPLETE,
            'updatedCount': updated_count
        })


class BackfillCommunityFeedView(StaffJobView):
    """
    POST /api/admin/jobs/backfill-community-feed/

    Admin only. Optional body {"restart": true} discards a checkpoint left
    by an interrupted run. Returns {"status", "processedCount", "sharedCount"}.
    """

    def post(self, request):
        restart = bool(request.data.get('restart', False)) if isinstance(request.data, Mapping) else False
        try:
            report = backfill_community_feed(restart=restart)
        except Exception as exc:
            logger.exception("Community feed backfill failed")
            raise InternalFailure('Migration failed', diagnostic=str(exc))

        return Response({
            'status': MIGRATION_COMPLETE,
            'processedCount': report.processed_count,
            'sharedCount': report.shared_count
        })
