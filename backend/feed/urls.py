"""
Feed App URL Configuration
"""
from django.urls import path
from .views import (
    IssueTokenView,
    WhoAmIView,
    CommunityFeedView,
    NormalizeUsernamesView,
    BackfillCommunityFeedView
)

urlpatterns = [
    # Auth
    path('auth/token/', IssueTokenView.as_view(), name='issue-token'),
    path('auth/whoami/', WhoAmIView.as_view(), name='whoami'),

    # Community feed
    path('community/feed/', CommunityFeedView.as_view(), name='community-feed'),

    # Admin jobs
    path('admin/jobs/normalize-usernames/', NormalizeUsernamesView.as_view(), name='normalize-usernames'),
    path(
        'admin/jobs/backfill-community-feed/',
        BackfillCommunityFeedView.as_view(),
        name='backfill-community-feed'
    ),
]
