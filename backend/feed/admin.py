"""
Django Admin Configuration for Feed Models

Editing entries here goes through Model.save()/delete(), so the feed
mirror signals fire exactly as they do for client writes.
"""
from django.contrib import admin
from .models import Profile, ChaosEntry, CommunityPost, BackfillCheckpoint


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['uid', 'username', 'username_lower', 'display_name', 'last_login_at']
    search_fields = ['username', 'username_lower', 'display_name']
    readonly_fields = ['uid', 'created_at', 'join_date']


@admin.register(ChaosEntry)
class ChaosEntryAdmin(admin.ModelAdmin):
    list_display = ['id', 'title', 'owner', 'chaos_level', 'share_to_feed', 'created_at']
    list_filter = ['share_to_feed', 'chaos_level', 'created_at']
    search_fields = ['title', 'content', 'owner__username']


@admin.register(CommunityPost)
class CommunityPostAdmin(admin.ModelAdmin):
    list_display = ['id', 'title', 'anonymous_username', 'username', 'is_reported', 'is_moderated', 'created_at']
    list_filter = ['is_reported', 'is_moderated', 'created_at']
    search_fields = ['title', 'content', 'username', 'anonymous_username']
    readonly_fields = ['id', 'chaos_entry_id', 'owner_uid', 'username', 'anonymous_username']

    def has_add_permission(self, request):
        # Posts are only created by the feed mirror
        return False


@admin.register(BackfillCheckpoint)
class BackfillCheckpointAdmin(admin.ModelAdmin):
    list_display = ['job', 'cursor', 'processed_count', 'changed_count', 'updated_at']
    readonly_fields = ['job', 'cursor', 'processed_count', 'changed_count', 'updated_at']

    def has_add_permission(self, request):
        return False
