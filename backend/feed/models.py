"""
Data Models for Chaos Feed
==========================

Three record types, mirroring the documents the mobile client works with:

1. Profile - one registered principal. Tokens are issued for the linked
   Django auth user; the profile carries everything the app displays.

2. ChaosEntry - a private journal entry owned by exactly one Profile.
   Deleting a Profile cascades to its entries (and, through the
   post_delete signal, to their community posts).

3. CommunityPost - the public, anonymized projection of a shared entry.
   Its primary key IS the source entry id. There is deliberately no
   foreign key: the two tables share an identifier space by convention,
   and the feed mirror (signals.py / mirror.py) keeps them in step.

INVARIANT:
    CommunityPost(id=X) exists  <=>  ChaosEntry(id=X) exists AND share_to_feed

Uniqueness of usernames:
------------------------
username_lower carries a UNIQUE constraint. Registration still looks the
name up first (for a friendly error), but the constraint is what makes two
concurrent registrations of the same name impossible. The column is
nullable so profiles created before the field existed can be backfilled
(see backfill.normalize_usernames); NULLs never collide.
"""

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


# ============================================================================
# CONSTANTS
# ============================================================================
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30

ANONYMOUS_BASE_NAME = 'Adventurer'
ANONYMOUS_FALLBACK_NAME = 'Anonymous Adventurer'
ANONYMOUS_FALLBACK_USERNAME = 'Anonymous'
# Suffix is drawn from range(ANONYMOUS_SUFFIX_LIMIT)
ANONYMOUS_SUFFIX_LIMIT = 9999

UNKNOWN_MOOD = 'unknown'


def generate_id():
    """Opaque document-style identifier used for profiles and entries."""
    return uuid.uuid4().hex


def default_preferences():
    return {
        'notificationsEnabled': True,
        'konoSubaQuotesEnabled': True,
        'anonymousMode': False,
        'reminderTime': '20:00',
        'shareByDefault': False,
        'theme': 'system',
        'showChaosLevel': True,
    }


class Profile(models.Model):
    """
    A registered principal.

    uid is the stable identifier handed back to clients as principalId.
    The linked auth user exists only so DRF can issue and check tokens;
    its username is the uid and it has no usable password.
    """
    uid = models.CharField(
        primary_key=True,
        max_length=36,
        default=generate_id,
        editable=False
    )
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='profile'
    )

    username = models.CharField(max_length=150)
    username_lower = models.CharField(
        max_length=150,
        null=True,
        blank=True,
        unique=True
    )
    display_name = models.TextField(blank=True, default='')
    auth_type = models.CharField(max_length=20, default='username')

    bio = models.TextField(blank=True, default='')
    email = models.EmailField(null=True, blank=True)
    favorite_character = models.CharField(max_length=100, blank=True, default='')
    favorite_quote = models.TextField(blank=True, default='')
    profile_picture = models.URLField(null=True, blank=True)
    profile_version = models.PositiveSmallIntegerField(default=1)
    party_role = models.CharField(max_length=50, default='Newbie Adventurer')

    # Activity / streak / social counters. Owned by profile-editing flows
    # outside this backend; registration only initializes them.
    chaos_level = models.PositiveSmallIntegerField(default=1)
    total_entries = models.PositiveIntegerField(default=0)
    day_streak = models.PositiveIntegerField(default=0)
    longest_streak = models.PositiveIntegerField(default=0)
    achievements = models.JSONField(default=list, blank=True)
    support_given = models.PositiveIntegerField(default=0)
    support_received = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)
    is_anonymous = models.BooleanField(default=False)
    preferences = models.JSONField(default=default_preferences, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    join_date = models.DateTimeField(default=timezone.now)
    last_active_at = models.DateTimeField(default=timezone.now)
    last_login_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['uid']

    def __str__(self):
        return f"{self.username} ({self.uid})"


class ChaosEntry(models.Model):
    """
    A private journal entry.

    Entries are written by the owner through channels outside this backend
    (client app, admin). This backend only observes their lifecycle.
    """
    id = models.CharField(
        primary_key=True,
        max_length=36,
        default=generate_id,
        editable=False
    )
    owner = models.ForeignKey(
        Profile,
        on_delete=models.CASCADE,
        related_name='chaos_entries'
    )
    title = models.CharField(max_length=200)
    content = models.TextField(blank=True, default='')
    chaos_level = models.PositiveSmallIntegerField(default=1)
    mood = models.CharField(max_length=50, blank=True, default='')
    tags = models.JSONField(default=list, blank=True)
    mini_wins = models.JSONField(default=list, blank=True)
    share_to_feed = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name_plural = 'chaos entries'
        indexes = [
            models.Index(fields=['owner', '-created_at'], name='feed_entry_owner_created_idx'),
        ]

    def __str__(self):
        return f"{self.title[:50]} by {self.owner_id}"


class CommunityPost(models.Model):
    """
    Public projection of a shared ChaosEntry.

    owner_uid and username are kept for moderation only and must never be
    serialized to the public feed. Engagement counters start at zero and
    belong to flows outside this backend.
    """
    id = models.CharField(primary_key=True, max_length=36)
    chaos_entry_id = models.CharField(max_length=36)

    owner_uid = models.CharField(max_length=36, db_index=True)
    username = models.CharField(max_length=150)
    anonymous_username = models.TextField()

    title = models.CharField(max_length=200)
    content = models.TextField(blank=True, default='')
    description = models.TextField(blank=True, default='')
    chaos_level = models.PositiveSmallIntegerField(default=1)
    mood = models.CharField(max_length=50, default=UNKNOWN_MOOD)
    tags = models.JSONField(default=list, blank=True)
    mini_wins = models.JSONField(default=list, blank=True)
    is_anonymous = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    support_count = models.PositiveIntegerField(default=0)
    twin_count = models.PositiveIntegerField(default=0)
    view_count = models.PositiveIntegerField(default=0)
    is_reported = models.BooleanField(default=False)
    is_moderated = models.BooleanField(default=False)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.title[:50]} by {self.anonymous_username}"


class BackfillCheckpoint(models.Model):
    """
    Progress marker for a paginated backfill run.

    A row exists only while a run is incomplete; the job deletes it when it
    reaches the end of the scan, so the next run starts from the beginning.
    """
    job = models.CharField(primary_key=True, max_length=64)
    cursor = models.CharField(max_length=36, blank=True, default='')
    processed_count = models.PositiveIntegerField(default=0)
    changed_count = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.job} @ {self.cursor or '<start>'}"
