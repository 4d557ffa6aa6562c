"""
DRF Serializers
===============

Wire format follows the mobile client, which speaks camelCase:

    POST /api/auth/token/   {"username", "displayName", "isRegistration"}
    GET  /api/community/feed/   posts with camelCase keys

Username rules (trim, 3..30 characters) are enforced by
services.clean_username so that direct callers of the service get the
same checks; the request serializer only shapes the payload.
"""

from rest_framework import serializers

from .models import CommunityPost


class TruthyField(serializers.Field):
    """
    Flag read by truthiness: null, false, 0 and "" mean False, anything
    else means True. Never fails validation.
    """
    def to_internal_value(self, data):
        return bool(data)

    def to_representation(self, value):
        return bool(value)


class TokenRequestSerializer(serializers.Serializer):
    """Payload of the issue-token callable."""
    username = serializers.CharField(
        allow_blank=True,
        allow_null=True,
        trim_whitespace=False,
        default=''
    )
    displayName = serializers.CharField(
        source='display_name',
        allow_blank=True,
        allow_null=True,
        default=None
    )
    isRegistration = TruthyField(
        source='is_registration',
        allow_null=True,
        default=False
    )

    def validate_isRegistration(self, value):
        return bool(value)


class CommunityPostSerializer(serializers.ModelSerializer):
    """
    Public representation of a community post.

    username and owner_uid exist on the model for moderation only and
    are intentionally not listed here.
    """
    chaosEntryId = serializers.CharField(source='chaos_entry_id', read_only=True)
    anonymousUsername = serializers.CharField(source='anonymous_username', read_only=True)
    chaosLevel = serializers.IntegerField(source='chaos_level', read_only=True)
    miniWins = serializers.JSONField(source='mini_wins', read_only=True)
    isAnonymous = serializers.BooleanField(source='is_anonymous', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    supportCount = serializers.IntegerField(source='support_count', read_only=True)
    twinCount = serializers.IntegerField(source='twin_count', read_only=True)
    viewCount = serializers.IntegerField(source='view_count', read_only=True)

    class Meta:
        model = CommunityPost
        fields = [
            'id',
            'chaosEntryId',
            'anonymousUsername',
            'title',
            'content',
            'description',
            'chaosLevel',
            'mood',
            'tags',
            'miniWins',
            'isAnonymous',
            'createdAt',
            'supportCount',
            'twinCount',
            'viewCount'
        ]
        read_only_fields = fields
