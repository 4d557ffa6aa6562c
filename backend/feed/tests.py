"""
Tests for Chaos Feed

Focus areas:
1. Identity bridge (validation, registration uniqueness, login, tokens)
2. Feed mirror (share/unshare transitions, best-effort failures)
3. Backfill jobs (idempotence, pagination, checkpoint resume)
4. HTTP surface and error classifications
"""

import re
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import DatabaseError, connection
from django.test import TestCase
from django.test.utils import CaptureQueriesContext
from django.urls import reverse
from django.utils import timezone
from rest_framework.authtoken.models import Token
from rest_framework.test import APITestCase

from .backfill import backfill_community_feed, normalize_usernames, COMMUNITY_FEED_JOB
from .exceptions import InvalidArgument, UsernameTaken, PrincipalNotFound, InternalFailure
from .mirror import (
    MirrorResult,
    anonymous_username,
    best_effort,
    on_entry_created,
    on_entry_deleted,
    share_entry,
)
from .models import (
    BackfillCheckpoint,
    ChaosEntry,
    CommunityPost,
    Profile,
    generate_id,
)
from .services import issue_token

ANONYMOUS_PATTERN = r'^{base}_(\d{{1,4}})$'

_UNSET = object()


def make_profile(username, display_name='', username_lower=_UNSET):
    """Create a principal directly, bypassing the identity bridge."""
    uid = generate_id()
    user = User.objects.create_user(username=uid)
    if username_lower is _UNSET:
        username_lower = username.lower()
    return Profile.objects.create(
        uid=uid,
        user=user,
        username=username,
        username_lower=username_lower,
        display_name=display_name
    )


def write_modifying_queries(context):
    return [
        q['sql'] for q in context.captured_queries
        if q['sql'].lstrip().upper().startswith(('INSERT', 'UPDATE', 'DELETE'))
    ]


def assert_anonymous_name(testcase, name, base):
    match = re.match(ANONYMOUS_PATTERN.format(base=re.escape(base)), name)
    testcase.assertIsNotNone(match, f"{name!r} does not look like {base}_<n>")
    testcase.assertLess(int(match.group(1)), 9999)


# ============================================================================
# IDENTITY BRIDGE
# ============================================================================

class UsernameValidationTestCase(TestCase):
    """Length and emptiness rules apply to both modes."""

    def test_short_usernames_rejected_in_both_modes(self):
        for length in (0, 1, 2):
            for is_registration in (True, False):
                with self.subTest(length=length, is_registration=is_registration):
                    with self.assertRaises(InvalidArgument):
                        issue_token('a' * length, is_registration=is_registration)

    def test_long_usernames_rejected_in_both_modes(self):
        for length in (31, 45):
            for is_registration in (True, False):
                with self.subTest(length=length, is_registration=is_registration):
                    with self.assertRaises(InvalidArgument) as ctx:
                        issue_token('a' * length, is_registration=is_registration)
                    self.assertIn('no more than 30', str(ctx.exception.detail))

    def test_boundary_lengths_register(self):
        for length in (3, 30):
            with self.subTest(length=length):
                grant = issue_token(chr(ord('a') + length % 26) * length, is_registration=True)
                self.assertTrue(Profile.objects.filter(uid=grant.principal_id).exists())

    def test_whitespace_only_username_is_empty(self):
        with self.assertRaises(InvalidArgument) as ctx:
            issue_token('    ', is_registration=True)
        self.assertEqual(str(ctx.exception.detail), 'Username is required and cannot be empty.')

    def test_none_username_is_empty(self):
        with self.assertRaises(InvalidArgument):
            issue_token(None, is_registration=True)

    def test_username_is_trimmed_before_length_check(self):
        grant = issue_token('  Kazuma  ', is_registration=True)
        profile = Profile.objects.get(uid=grant.principal_id)
        self.assertEqual(profile.username, 'Kazuma')
        self.assertEqual(profile.username_lower, 'kazuma')


class RegistrationTestCase(TestCase):

    def test_registration_creates_profile_with_defaults(self):
        grant = issue_token('Megumin', display_name='Explosion Girl', is_registration=True)

        profile = Profile.objects.get(uid=grant.principal_id)
        self.assertEqual(profile.username, 'Megumin')
        self.assertEqual(profile.username_lower, 'megumin')
        self.assertEqual(profile.display_name, 'Explosion Girl')
        self.assertEqual(profile.auth_type, 'username')
        self.assertEqual(profile.party_role, 'Newbie Adventurer')
        self.assertEqual(profile.chaos_level, 1)
        self.assertEqual(profile.day_streak, 0)
        self.assertEqual(profile.achievements, [])
        self.assertFalse(profile.is_anonymous)
        self.assertEqual(profile.preferences['reminderTime'], '20:00')
        self.assertFalse(profile.preferences['shareByDefault'])

    def test_display_name_defaults_to_username(self):
        grant = issue_token('Aqua', is_registration=True)
        self.assertEqual(Profile.objects.get(uid=grant.principal_id).display_name, 'Aqua')

    def test_auth_user_has_no_usable_password(self):
        grant = issue_token('Darkness', is_registration=True)
        user = Profile.objects.get(uid=grant.principal_id).user
        self.assertEqual(user.username, grant.principal_id)
        self.assertFalse(user.has_usable_password())

    def test_case_insensitive_duplicate_is_conflict(self):
        issue_token('Foo', is_registration=True)

        with self.assertRaises(UsernameTaken) as ctx:
            issue_token('foo', is_registration=True)

        self.assertEqual(ctx.exception.default_code, 'already-exists')
        self.assertEqual(str(ctx.exception.detail), "Username 'foo' is already taken.")
        self.assertEqual(Profile.objects.count(), 1)

    def test_concurrent_duplicate_hits_unique_constraint(self):
        """
        Simulate a registration that passed the lookup before a competing
        registration committed: the unique constraint must still reject it
        and no orphan auth user may remain.
        """
        issue_token('Wiz', is_registration=True)
        users_before = User.objects.count()

        with patch('feed.services.find_profile_by_username', return_value=None):
            with self.assertRaises(UsernameTaken):
                issue_token('WIZ', is_registration=True)

        self.assertEqual(User.objects.count(), users_before)
        self.assertEqual(Profile.objects.filter(username_lower='wiz').count(), 1)

    def test_unexpected_failure_is_internal(self):
        with patch('feed.services.rotate_token', side_effect=RuntimeError('token service down')):
            with self.assertRaises(InternalFailure) as ctx:
                issue_token('Vanir', is_registration=True)

        self.assertEqual(ctx.exception.default_code, 'internal')
        self.assertEqual(ctx.exception.diagnostic, 'token service down')


class LoginTestCase(TestCase):

    def setUp(self):
        self.grant = issue_token('Kazuma', is_registration=True)

    def test_login_resolves_same_principal_case_insensitively(self):
        grant = issue_token('KAZUMA')
        self.assertEqual(grant.principal_id, self.grant.principal_id)

    def test_login_updates_activity_timestamps(self):
        long_ago = timezone.now() - timedelta(days=30)
        Profile.objects.filter(uid=self.grant.principal_id).update(
            last_active_at=long_ago,
            last_login_at=long_ago
        )

        issue_token('kazuma')

        profile = Profile.objects.get(uid=self.grant.principal_id)
        self.assertGreater(profile.last_active_at, long_ago)
        self.assertGreater(profile.last_login_at, long_ago)

    def test_unknown_username_is_not_found_without_writes(self):
        with CaptureQueriesContext(connection) as context:
            with self.assertRaises(PrincipalNotFound) as ctx:
                issue_token('Chris')

        self.assertEqual(ctx.exception.default_code, 'not-found')
        self.assertEqual(str(ctx.exception.detail), "Username 'Chris' not found.")
        self.assertEqual(write_modifying_queries(context), [])

    def test_each_call_issues_a_fresh_token(self):
        second = issue_token('Kazuma')
        third = issue_token('Kazuma')

        self.assertNotEqual(self.grant.token, second.token)
        self.assertNotEqual(second.token, third.token)

        user = Profile.objects.get(uid=self.grant.principal_id).user
        self.assertEqual(Token.objects.filter(user=user).count(), 1)
        self.assertEqual(Token.objects.get(user=user).key, third.token)


# ============================================================================
# FEED MIRROR
# ============================================================================

class AnonymousUsernameTestCase(TestCase):

    def test_uses_first_segment_of_display_name(self):
        profile = make_profile('kazuma', display_name='Kazuma_1234')
        assert_anonymous_name(self, anonymous_username(profile), 'Kazuma')

    def test_falls_back_to_username(self):
        profile = make_profile('Megumin_crimson')
        assert_anonymous_name(self, anonymous_username(profile), 'Megumin')

    def test_falls_back_to_adventurer(self):
        profile = make_profile('', username_lower=None)
        assert_anonymous_name(self, anonymous_username(profile), 'Adventurer')

    def test_missing_profile(self):
        self.assertEqual(anonymous_username(None), 'Anonymous Adventurer')

    def test_suffix_drawn_below_9999(self):
        profile = make_profile('Aqua')
        with patch('feed.mirror.random.randrange', return_value=9998) as randrange:
            self.assertEqual(anonymous_username(profile), 'Aqua_9998')
        randrange.assert_called_once_with(9999)


class FeedMirrorTestCase(TestCase):
    """
    CRITICAL: a community post exists iff its entry exists and is shared.
    """

    def setUp(self):
        self.owner = make_profile('Megumin', display_name='Megumin_77')

    def make_entry(self, **kwargs):
        defaults = {
            'owner': self.owner,
            'title': 'Blew up another castle',
            'content': 'The Demon King will never learn.',
            'chaos_level': 4,
            'tags': ['explosion'],
            'mini_wins': ['Only one explosion today'],
        }
        defaults.update(kwargs)
        return ChaosEntry.objects.create(**defaults)

    def test_unshared_entry_is_not_projected(self):
        self.make_entry(share_to_feed=False)
        self.assertEqual(CommunityPost.objects.count(), 0)

    def test_shared_entry_is_projected(self):
        entry = self.make_entry(share_to_feed=True)

        post = CommunityPost.objects.get(id=entry.id)
        self.assertEqual(post.chaos_entry_id, entry.id)
        self.assertEqual(post.owner_uid, self.owner.uid)
        self.assertEqual(post.username, 'Megumin')
        assert_anonymous_name(self, post.anonymous_username, 'Megumin')
        self.assertTrue(post.is_anonymous)
        self.assertEqual(post.title, entry.title)
        self.assertEqual(post.content, entry.content)
        self.assertEqual(post.description, entry.content)
        self.assertEqual(post.chaos_level, 4)
        self.assertEqual(post.mood, 'unknown')
        self.assertEqual(post.tags, ['explosion'])
        self.assertEqual(post.mini_wins, ['Only one explosion today'])
        self.assertEqual(post.created_at, entry.created_at)
        self.assertEqual(
            (post.support_count, post.twin_count, post.view_count),
            (0, 0, 0)
        )
        self.assertFalse(post.is_reported)
        self.assertFalse(post.is_moderated)

    def test_mood_is_copied_when_present(self):
        entry = self.make_entry(share_to_feed=True, mood='ecstatic')
        self.assertEqual(CommunityPost.objects.get(id=entry.id).mood, 'ecstatic')

    def test_toggle_off_removes_post(self):
        entry = self.make_entry(share_to_feed=True)

        entry.share_to_feed = False
        entry.save()

        self.assertFalse(CommunityPost.objects.filter(id=entry.id).exists())

    def test_toggle_on_projects_post_update_data(self):
        entry = self.make_entry(share_to_feed=False)

        entry.share_to_feed = True
        entry.title = 'Edited title'
        entry.save()

        self.assertEqual(CommunityPost.objects.get(id=entry.id).title, 'Edited title')

    def test_reshare_may_use_a_different_anonymous_name(self):
        with patch('feed.mirror.random.randrange', side_effect=[11, 22]):
            entry = self.make_entry(share_to_feed=True)
            first_name = CommunityPost.objects.get(id=entry.id).anonymous_username

            entry.share_to_feed = False
            entry.save()
            entry.share_to_feed = True
            entry.save()

        second_name = CommunityPost.objects.get(id=entry.id).anonymous_username
        self.assertEqual(first_name, 'Megumin_11')
        self.assertEqual(second_name, 'Megumin_22')

    def test_unchanged_flag_does_not_touch_post(self):
        entry = self.make_entry(share_to_feed=True)
        CommunityPost.objects.filter(id=entry.id).update(support_count=7)

        entry.title = 'Quietly edited'
        entry.save()

        post = CommunityPost.objects.get(id=entry.id)
        self.assertEqual(post.title, 'Blew up another castle')
        self.assertEqual(post.support_count, 7)

    def test_unchanged_unshared_entry_stays_unprojected(self):
        entry = self.make_entry(share_to_feed=False)
        entry.content = 'Still private'
        entry.save()
        self.assertEqual(CommunityPost.objects.count(), 0)

    def test_save_with_update_fields(self):
        entry = self.make_entry(share_to_feed=False)
        entry.share_to_feed = True
        entry.save(update_fields=['share_to_feed'])
        self.assertTrue(CommunityPost.objects.filter(id=entry.id).exists())

    def test_delete_removes_post(self):
        entry = self.make_entry(share_to_feed=True)
        entry_id = entry.id

        entry.delete()

        self.assertFalse(CommunityPost.objects.filter(id=entry_id).exists())

    def test_delete_without_post_is_noop(self):
        entry = self.make_entry(share_to_feed=False)
        entry.delete()
        self.assertEqual(CommunityPost.objects.count(), 0)

    def test_deleting_profile_cascades_to_posts(self):
        self.make_entry(share_to_feed=True)
        self.make_entry(share_to_feed=True)
        self.assertEqual(CommunityPost.objects.count(), 2)

        self.owner.delete()

        self.assertEqual(ChaosEntry.objects.count(), 0)
        self.assertEqual(CommunityPost.objects.count(), 0)

    def test_handler_results(self):
        entry = self.make_entry(share_to_feed=False)
        self.assertEqual(on_entry_created(entry).action, 'skipped')

        entry.share_to_feed = True
        self.assertEqual(on_entry_created(entry).action, 'shared')
        self.assertEqual(on_entry_deleted(entry.id).action, 'unshared')
        self.assertEqual(on_entry_deleted(entry.id).action, 'skipped')

    def test_share_overwrites_existing_post(self):
        entry = self.make_entry(share_to_feed=True)
        CommunityPost.objects.filter(id=entry.id).update(title='stale')

        share_entry(entry)

        self.assertEqual(CommunityPost.objects.filter(id=entry.id).count(), 1)
        self.assertEqual(CommunityPost.objects.get(id=entry.id).title, entry.title)

    def test_long_display_name_is_projected(self):
        self.owner.display_name = 'Crimson Demon Archwizard ' * 10
        self.owner.save()

        entry = self.make_entry(share_to_feed=True)

        post = CommunityPost.objects.get(id=entry.id)
        assert_anonymous_name(self, post.anonymous_username, self.owner.display_name)

    def test_queryset_update_bypasses_mirror(self):
        entry = self.make_entry(share_to_feed=False)
        ChaosEntry.objects.filter(id=entry.id).update(share_to_feed=True)
        self.assertFalse(CommunityPost.objects.filter(id=entry.id).exists())


class BestEffortTestCase(TestCase):
    """Mirror failures are logged and returned, never raised."""

    def test_sink_converts_exception_to_result(self):
        @best_effort
        def exploding(entry_id):
            raise RuntimeError('boom')

        with self.assertLogs('feed.mirror', level='ERROR') as logs:
            result = exploding('entry-1')

        self.assertIsInstance(result, MirrorResult)
        self.assertTrue(result.failed)
        self.assertEqual(result.entry_id, 'entry-1')
        self.assertIsInstance(result.error, RuntimeError)
        self.assertIn('entry-1', logs.output[0])

    def test_sink_passes_through_success(self):
        @best_effort
        def fine(entry_id):
            return MirrorResult(entry_id, 'skipped')

        self.assertEqual(fine('entry-2').action, 'skipped')

    def test_failed_projection_does_not_break_entry_save(self):
        owner = make_profile('Darkness')

        with patch.object(CommunityPost, 'save', side_effect=DatabaseError('disk full')):
            with self.assertLogs('feed.mirror', level='ERROR'):
                entry = ChaosEntry.objects.create(owner=owner, title='Got hit by a boar', share_to_feed=True)

        self.assertTrue(ChaosEntry.objects.filter(id=entry.id).exists())
        self.assertFalse(CommunityPost.objects.filter(id=entry.id).exists())

    def test_failed_unshare_is_swallowed(self):
        owner = make_profile('Yunyun')
        entry = ChaosEntry.objects.create(owner=owner, title='Made a friend', share_to_feed=True)
        entry_id = entry.id

        with patch('feed.mirror.unshare_entry', side_effect=DatabaseError('timeout')):
            with self.assertLogs('feed.mirror', level='ERROR'):
                entry.delete()

        # Source is gone, the post lingers
        self.assertFalse(ChaosEntry.objects.filter(id=entry_id).exists())
        self.assertTrue(CommunityPost.objects.filter(id=entry_id).exists())


# ============================================================================
# BACKFILL JOBS
# ============================================================================

class BackfillCommunityFeedTestCase(TestCase):
    """
    Entries are created with bulk_create so that no signal projects them;
    that is exactly the state the backfill exists to repair.
    """

    def setUp(self):
        self.owner = make_profile('Aqua', display_name='Aqua_goddess')
        self.other = make_profile('Luna')

    def seed(self, rows):
        entries = [
            ChaosEntry(id=entry_id, owner=owner, title=f'Entry {entry_id}', share_to_feed=shared)
            for entry_id, owner, shared in rows
        ]
        ChaosEntry.objects.bulk_create(entries)
        return entries

    def test_backfill_is_idempotent(self):
        self.seed([
            ('a1', self.owner, True),
            ('a2', self.owner, False),
            ('b1', self.other, True),
        ])

        first = backfill_community_feed()
        second = backfill_community_feed()

        self.assertEqual((first.processed_count, first.shared_count), (3, 2))
        self.assertEqual((second.processed_count, second.shared_count), (3, 0))
        self.assertEqual(
            set(CommunityPost.objects.values_list('id', flat=True)),
            {'a1', 'b1'}
        )

    def test_existing_posts_are_skipped(self):
        entry = ChaosEntry.objects.create(owner=self.owner, title='Already shared', share_to_feed=True)
        original_name = CommunityPost.objects.get(id=entry.id).anonymous_username
        self.seed([('z9', self.other, True)])

        report = backfill_community_feed()

        self.assertEqual((report.processed_count, report.shared_count), (2, 1))
        self.assertEqual(CommunityPost.objects.get(id=entry.id).anonymous_username, original_name)

    def test_projection_matches_live_share(self):
        self.seed([('a1', self.owner, True)])
        backfill_community_feed()

        post = CommunityPost.objects.get(id='a1')
        self.assertEqual(post.username, 'Aqua')
        assert_anonymous_name(self, post.anonymous_username, 'Aqua')
        self.assertTrue(post.is_anonymous)

    def test_pages_cover_every_entry(self):
        self.seed([(f'e{i}', self.owner, i % 2 == 0) for i in range(7)])

        report = backfill_community_feed(batch_size=2)

        self.assertEqual((report.processed_count, report.shared_count), (7, 4))

    def test_checkpoint_removed_after_completion(self):
        self.seed([('a1', self.owner, True)])
        backfill_community_feed(batch_size=1)
        self.assertFalse(BackfillCheckpoint.objects.filter(job=COMMUNITY_FEED_JOB).exists())

    def test_resumes_from_checkpoint(self):
        self.seed([(f'a{i}', self.owner, True) for i in range(1, 5)])
        BackfillCheckpoint.objects.create(
            job=COMMUNITY_FEED_JOB,
            cursor='a2',
            processed_count=2,
            changed_count=2
        )

        report = backfill_community_feed()

        self.assertEqual((report.processed_count, report.shared_count), (4, 4))
        self.assertEqual(
            set(CommunityPost.objects.values_list('id', flat=True)),
            {'a3', 'a4'}
        )

    def test_restart_discards_checkpoint(self):
        self.seed([(f'a{i}', self.owner, True) for i in range(1, 5)])
        BackfillCheckpoint.objects.create(job=COMMUNITY_FEED_JOB, cursor='a2', processed_count=2, changed_count=2)

        report = backfill_community_feed(restart=True)

        self.assertEqual((report.processed_count, report.shared_count), (4, 4))
        self.assertEqual(CommunityPost.objects.count(), 4)

    def test_crash_mid_run_is_resumable(self):
        self.seed([('a1', self.owner, True), ('a2', self.owner, True), ('a3', self.owner, True)])

        def flaky(entry, owner=None):
            if entry.pk == 'a2':
                raise RuntimeError('crash')
            return share_entry(entry, owner=owner)

        with patch('feed.backfill.share_entry', side_effect=flaky):
            with self.assertRaises(RuntimeError):
                backfill_community_feed(batch_size=1)

        checkpoint = BackfillCheckpoint.objects.get(job=COMMUNITY_FEED_JOB)
        self.assertEqual(checkpoint.cursor, 'a1')
        self.assertEqual(checkpoint.processed_count, 1)

        report = backfill_community_feed(batch_size=1)
        self.assertEqual((report.processed_count, report.shared_count), (3, 3))
        self.assertEqual(CommunityPost.objects.count(), 3)

    def test_repairs_queryset_update(self):
        entry = ChaosEntry.objects.create(owner=self.owner, title='Flipped in bulk')
        ChaosEntry.objects.filter(id=entry.id).update(share_to_feed=True)

        report = backfill_community_feed()

        self.assertEqual(report.shared_count, 1)
        self.assertTrue(CommunityPost.objects.filter(id=entry.id).exists())

    def test_owner_profiles_come_from_the_page_join(self):
        self.seed([(f'a{i}', self.owner if i % 2 else self.other, True) for i in range(1, 7)])

        with patch('feed.mirror.get_profile') as get_profile:
            report = backfill_community_feed(batch_size=4)

        get_profile.assert_not_called()
        self.assertEqual(report.shared_count, 6)
        assert_anonymous_name(self, CommunityPost.objects.get(id='a1').anonymous_username, 'Aqua')
        self.assertEqual(CommunityPost.objects.get(id='a2').username, 'Luna')


class NormalizeUsernamesTestCase(TestCase):

    def test_fills_missing_field(self):
        aqua = make_profile('Aqua', username_lower=None)
        darkness = make_profile('DarkNess', username_lower='')
        make_profile('kazuma')

        self.assertEqual(normalize_usernames(), 2)

        aqua.refresh_from_db()
        darkness.refresh_from_db()
        self.assertEqual(aqua.username_lower, 'aqua')
        self.assertEqual(darkness.username_lower, 'darkness')

    def test_second_run_updates_nothing(self):
        make_profile('Aqua', username_lower=None)
        normalize_usernames()
        self.assertEqual(normalize_usernames(), 0)

    def test_no_batch_commit_when_nothing_to_do(self):
        make_profile('Kazuma')
        make_profile('Megumin')

        with CaptureQueriesContext(connection) as context:
            updated_count = normalize_usernames()

        self.assertEqual(updated_count, 0)
        self.assertEqual(write_modifying_queries(context), [])

    def test_multiple_batches(self):
        for name in ('Chomusuke', 'Wiz', 'Vanir', 'Sylvia', 'Beldia'):
            make_profile(name, username_lower=None)

        self.assertEqual(normalize_usernames(batch_size=2), 5)
        self.assertFalse(Profile.objects.filter(username_lower__isnull=True).exists())

    def test_conflicting_legacy_names_are_skipped(self):
        make_profile('aqua')
        legacy = make_profile('AQUA', username_lower=None)
        first = make_profile('Wiz', username_lower=None)
        second = make_profile('WIZ', username_lower=None)

        with self.assertLogs('feed.backfill', level='WARNING'):
            updated_count = normalize_usernames()

        self.assertEqual(updated_count, 1)
        legacy.refresh_from_db()
        self.assertIsNone(legacy.username_lower)
        lowered = [
            p.username_lower for p in Profile.objects.filter(uid__in=[first.uid, second.uid])
        ]
        self.assertEqual(sorted(lowered, key=lambda v: v or ''), [None, 'wiz'])


class ManagementCommandTestCase(TestCase):

    def test_backfill_command(self):
        owner = make_profile('Aqua')
        ChaosEntry.objects.bulk_create([ChaosEntry(owner=owner, title='Partied', share_to_feed=True)])

        out = StringIO()
        call_command('backfill_community_feed', '--batch-size', '10', stdout=out)

        self.assertIn('1 entries processed', out.getvalue())
        self.assertIn('1 entries shared', out.getvalue())
        self.assertEqual(CommunityPost.objects.count(), 1)

    def test_normalize_command(self):
        make_profile('Aqua', username_lower=None)

        out = StringIO()
        call_command('normalize_usernames', stdout=out)

        self.assertIn('Updated 1 users.', out.getvalue())


# ============================================================================
# HTTP SURFACE
# ============================================================================

class IssueTokenAPITestCase(APITestCase):

    def setUp(self):
        self.url = reverse('issue-token')

    def post(self, payload):
        return self.client.post(self.url, payload, format='json')

    def test_register_returns_token_and_principal(self):
        response = self.post({'username': 'Kazuma', 'displayName': 'Kazuma Satou', 'isRegistration': True})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(set(response.data), {'token', 'principalId'})
        profile = Profile.objects.get(uid=response.data['principalId'])
        self.assertEqual(profile.display_name, 'Kazuma Satou')

    def test_token_authenticates_as_bearer(self):
        response = self.post({'username': 'Kazuma', 'isRegistration': True})

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['token']}")
        whoami = self.client.get(reverse('whoami'))

        self.assertEqual(whoami.status_code, 200)
        self.assertTrue(whoami.data['authenticated'])
        self.assertEqual(whoami.data['principalId'], response.data['principalId'])
        self.assertEqual(whoami.data['username'], 'Kazuma')

    def test_previous_token_is_revoked_on_login(self):
        old_token = self.post({'username': 'Kazuma', 'isRegistration': True}).data['token']
        self.post({'username': 'kazuma'})

        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {old_token}')
        response = self.client.get(reverse('whoami'))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data['code'], 'unauthenticated')

    def test_duplicate_registration_is_conflict(self):
        self.post({'username': 'Foo', 'isRegistration': True})
        response = self.post({'username': 'foo', 'isRegistration': True})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['code'], 'already-exists')
        self.assertEqual(response.data['error'], "Username 'foo' is already taken.")

    def test_unknown_login_is_not_found(self):
        response = self.post({'username': 'Nobody', 'isRegistration': False})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['code'], 'not-found')

    def test_short_username_is_invalid(self):
        response = self.post({'username': 'ab', 'isRegistration': True})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'invalid-argument')
        self.assertEqual(response.data['error'], 'Username must be at least 3 characters long.')

    def test_non_object_payload_is_invalid(self):
        for payload in (['Kazuma'], 'Kazuma', {}):
            with self.subTest(payload=payload):
                response = self.post(payload)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.data['code'], 'invalid-argument')

    def test_falsy_flag_means_login(self):
        make_profile('Kazuma')
        for flag in (None, False, 0, ''):
            with self.subTest(flag=flag):
                response = self.post({'username': 'Kazuma', 'isRegistration': flag})
                self.assertEqual(response.status_code, 200)
                self.assertEqual(Profile.objects.count(), 1)

    def test_truthy_flag_means_registration(self):
        response = self.post({'username': 'Kazuma', 'isRegistration': 'yes'})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(Profile.objects.filter(username='Kazuma').exists())

    def test_long_display_name_registers(self):
        display_name = 'Kazuma the Strongest Adventurer ' * 8
        response = self.post({'username': 'Kazuma', 'displayName': display_name, 'isRegistration': True})

        self.assertEqual(response.status_code, 200)
        profile = Profile.objects.get(uid=response.data['principalId'])
        self.assertEqual(profile.display_name, display_name.strip())
        self.assertEqual(profile.user.first_name, display_name[:150])

    def test_internal_failure_carries_diagnostic(self):
        with patch('feed.services.rotate_token', side_effect=RuntimeError('boom')):
            response = self.post({'username': 'Kazuma', 'isRegistration': True})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data['code'], 'internal')
        self.assertEqual(response.data['details'], 'boom')

    def test_whoami_anonymous(self):
        response = self.client.get(reverse('whoami'))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['authenticated'])


class CommunityFeedAPITestCase(APITestCase):

    def test_feed_hides_moderation_fields(self):
        owner = make_profile('Megumin', display_name='Megumin')
        ChaosEntry.objects.create(owner=owner, title='Explosion!', share_to_feed=True)
        ChaosEntry.objects.create(owner=owner, title='Private nap', share_to_feed=False)

        response = self.client.get(reverse('community-feed'))

        self.assertEqual(response.status_code, 200)
        results = response.data['results']
        self.assertEqual(len(results), 1)
        post = results[0]
        self.assertEqual(post['title'], 'Explosion!')
        assert_anonymous_name(self, post['anonymousUsername'], 'Megumin')
        self.assertTrue(post['isAnonymous'])
        self.assertNotIn('username', post)
        self.assertNotIn('ownerUid', post)
        self.assertNotIn('owner_uid', post)


class AdminJobsAPITestCase(APITestCase):

    def setUp(self):
        self.admin = User.objects.create_user('guild-master', is_staff=True)
        self.owner = make_profile('Aqua', username_lower=None)

    def test_jobs_require_authentication(self):
        response = self.client.post(reverse('normalize-usernames'))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data['code'], 'unauthenticated')

    def test_jobs_require_staff(self):
        self.client.force_authenticate(user=self.owner.user)
        response = self.client.post(reverse('backfill-community-feed'))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['code'], 'permission-denied')

    def test_staff_admin_session_is_accepted(self):
        self.client.force_login(self.admin)
        response = self.client.post(reverse('normalize-usernames'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['updatedCount'], 1)

    def test_staff_bearer_token_is_accepted(self):
        out = StringIO()
        call_command('drf_create_token', self.admin.username, stdout=out)
        token = Token.objects.get(user=self.admin)
        self.assertIn(token.key, out.getvalue())

        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {token.key}')
        response = self.client.post(reverse('backfill-community-feed'))

        self.assertEqual(response.status_code, 200)

    def test_normalize_usernames(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(reverse('normalize-usernames'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {'status': 'Migration complete', 'updatedCount': 1})

    def test_backfill_community_feed(self):
        ChaosEntry.objects.bulk_create([
            ChaosEntry(owner=self.owner, title='One', share_to_feed=True),
            ChaosEntry(owner=self.owner, title='Two', share_to_feed=False),
        ])
        self.client.force_authenticate(user=self.admin)

        first = self.client.post(reverse('backfill-community-feed'))
        second = self.client.post(reverse('backfill-community-feed'))

        self.assertEqual(first.data, {'status': 'Migration complete', 'processedCount': 2, 'sharedCount': 1})
        self.assertEqual(second.data, {'status': 'Migration complete', 'processedCount': 2, 'sharedCount': 0})

    def test_job_failure_is_internal(self):
        self.client.force_authenticate(user=self.admin)
        with patch('feed.views.backfill_community_feed', side_effect=RuntimeError('db gone')):
            response = self.client.post(reverse('backfill-community-feed'))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data['code'], 'internal')
        self.assertEqual(response.data['error'], 'Migration failed')
        self.assertEqual(response.data['details'], 'db gone')
