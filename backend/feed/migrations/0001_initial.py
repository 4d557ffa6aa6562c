import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import feed.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='BackfillCheckpoint',
            fields=[
                ('job', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('cursor', models.CharField(blank=True, default='', max_length=36)),
                ('processed_count', models.PositiveIntegerField(default=0)),
                ('changed_count', models.PositiveIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='CommunityPost',
            fields=[
                ('id', models.CharField(max_length=36, primary_key=True, serialize=False)),
                ('chaos_entry_id', models.CharField(max_length=36)),
                ('owner_uid', models.CharField(db_index=True, max_length=36)),
                ('username', models.CharField(max_length=150)),
                ('anonymous_username', models.TextField()),
                ('title', models.CharField(max_length=200)),
                ('content', models.TextField(blank=True, default='')),
                ('description', models.TextField(blank=True, default='')),
                ('chaos_level', models.PositiveSmallIntegerField(default=1)),
                ('mood', models.CharField(default='unknown', max_length=50)),
                ('tags', models.JSONField(blank=True, default=list)),
                ('mini_wins', models.JSONField(blank=True, default=list)),
                ('is_anonymous', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('support_count', models.PositiveIntegerField(default=0)),
                ('twin_count', models.PositiveIntegerField(default=0)),
                ('view_count', models.PositiveIntegerField(default=0)),
                ('is_reported', models.BooleanField(default=False)),
                ('is_moderated', models.BooleanField(default=False)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Profile',
            fields=[
                ('uid', models.CharField(default=feed.models.generate_id, editable=False, max_length=36, primary_key=True, serialize=False)),
                ('username', models.CharField(max_length=150)),
                ('username_lower', models.CharField(blank=True, max_length=150, null=True, unique=True)),
                ('display_name', models.TextField(blank=True, default='')),
                ('auth_type', models.CharField(default='username', max_length=20)),
                ('bio', models.TextField(blank=True, default='')),
                ('email', models.EmailField(blank=True, max_length=254, null=True)),
                ('favorite_character', models.CharField(blank=True, default='', max_length=100)),
                ('favorite_quote', models.TextField(blank=True, default='')),
                ('profile_picture', models.URLField(blank=True, null=True)),
                ('profile_version', models.PositiveSmallIntegerField(default=1)),
                ('party_role', models.CharField(default='Newbie Adventurer', max_length=50)),
                ('chaos_level', models.PositiveSmallIntegerField(default=1)),
                ('total_entries', models.PositiveIntegerField(default=0)),
                ('day_streak', models.PositiveIntegerField(default=0)),
                ('longest_streak', models.PositiveIntegerField(default=0)),
                ('achievements', models.JSONField(blank=True, default=list)),
                ('support_given', models.PositiveIntegerField(default=0)),
                ('support_received', models.PositiveIntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('is_anonymous', models.BooleanField(default=False)),
                ('preferences', models.JSONField(blank=True, default=feed.models.default_preferences)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('join_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_active_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_login_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='profile', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['uid'],
            },
        ),
        migrations.CreateModel(
            name='ChaosEntry',
            fields=[
                ('id', models.CharField(default=feed.models.generate_id, editable=False, max_length=36, primary_key=True, serialize=False)),
                ('title', models.CharField(max_length=200)),
                ('content', models.TextField(blank=True, default='')),
                ('chaos_level', models.PositiveSmallIntegerField(default=1)),
                ('mood', models.CharField(blank=True, default='', max_length=50)),
                ('tags', models.JSONField(blank=True, default=list)),
                ('mini_wins', models.JSONField(blank=True, default=list)),
                ('share_to_feed', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='chaos_entries', to='feed.profile')),
            ],
            options={
                'verbose_name_plural': 'chaos entries',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['owner', '-created_at'], name='feed_entry_owner_created_idx')],
            },
        ),
    ]
