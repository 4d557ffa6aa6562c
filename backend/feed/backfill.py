"""
Backfill Jobs
=============

Idempotent batch jobs that reconcile derived state with source state.

1. normalize_usernames()
   Fill Profile.username_lower for profiles created before the field
   existed.

2. backfill_community_feed()
   Project every shared entry that has no community post yet.

PAGINATION:
-----------
Both jobs walk their table in primary-key pages (queries.iter_pages), so
memory is bounded by the page size, not the table size.

RESUMING:
---------
normalize_usernames only selects rows that still lack the field, so a
rerun naturally continues where a crashed run stopped.

backfill_community_feed scans ALL entries (it reports how many it looked
at), so it stores its position in a BackfillCheckpoint after every page.
A rerun resumes from the checkpoint and reports totals for the whole
logical run. When the scan reaches the end the checkpoint is deleted and
the next run starts from the beginning again.
"""

import logging
from typing import NamedTuple, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Q

from .models import BackfillCheckpoint, ChaosEntry, Profile
from .mirror import share_entry
from .queries import existing_post_ids, iter_pages

logger = logging.getLogger(__name__)

COMMUNITY_FEED_JOB = 'community_feed'


class BackfillReport(NamedTuple):
    processed_count: int
    shared_count: int


def _batch_size(batch_size: Optional[int]) -> int:
    return batch_size or settings.BACKFILL_BATCH_SIZE


def normalize_usernames(batch_size: Optional[int] = None) -> int:
    """
    Populate username_lower on every profile that has a username but no
    normalized copy. Returns the number of profiles updated.

    Each page is committed as one batch; a page with nothing to update
    writes nothing. A username whose lowercase form is already claimed
    is left untouched and logged, since writing it would violate the
    unique constraint.
    """
    logger.info("Starting usernameLower migration...")

    pending = (
        Profile.objects
        .filter(Q(username_lower__isnull=True) | Q(username_lower=''))
        .exclude(username='')
    )

    updated_count = 0
    for page in iter_pages(pending, _batch_size(batch_size)):
        candidates = {}
        for profile in page:
            username_lower = profile.username.lower()
            if username_lower in candidates:
                logger.warning(
                    f"Skipping {profile.uid}: '{username_lower}' also claimed by "
                    f"{candidates[username_lower].uid} in this batch"
                )
                continue
            candidates[username_lower] = profile

        taken = set(
            Profile.objects
            .filter(username_lower__in=list(candidates))
            .values_list('username_lower', flat=True)
        )

        staged = []
        for username_lower, profile in candidates.items():
            if username_lower in taken:
                logger.warning(f"Skipping {profile.uid}: '{username_lower}' already claimed")
                continue
            profile.username_lower = username_lower
            staged.append(profile)

        if not staged:
            continue

        with transaction.atomic():
            Profile.objects.bulk_update(staged, ['username_lower'])
        updated_count += len(staged)
        logger.info(f"Committed batch update for {len(staged)} users")

    if updated_count:
        logger.info(f"Migration complete. Updated {updated_count} users.")
    else:
        logger.info("No users to migrate.")
    return updated_count


def backfill_community_feed(batch_size: Optional[int] = None, restart: bool = False) -> BackfillReport:
    """
    Create the missing community posts for entries flagged share_to_feed.

    Entries that already have a post are left alone, so running this twice
    shares nothing the second time. Pass restart=True to discard a
    checkpoint left by an interrupted run and scan from the beginning.
    """
    checkpoint, created = BackfillCheckpoint.objects.get_or_create(job=COMMUNITY_FEED_JOB)
    resumed = not created
    if restart and resumed:
        logger.info(f"Discarding checkpoint at {checkpoint.cursor or '<start>'}")
        checkpoint.cursor = ''
        checkpoint.processed_count = 0
        checkpoint.changed_count = 0
        checkpoint.save()
    elif resumed:
        logger.info(
            f"Resuming community feed backfill after {checkpoint.cursor or '<start>'} "
            f"({checkpoint.processed_count} processed, {checkpoint.changed_count} shared)"
        )
    else:
        logger.info("Starting migration of chaos entries to community feed...")

    processed_count = checkpoint.processed_count
    shared_count = checkpoint.changed_count

    entries = ChaosEntry.objects.select_related('owner')
    for page in iter_pages(entries, _batch_size(batch_size), after=checkpoint.cursor):
        already_shared = existing_post_ids(e.pk for e in page if e.share_to_feed)

        for entry in page:
            processed_count += 1
            if entry.share_to_feed is not True:
                continue
            if entry.pk in already_shared:
                logger.info(f"Entry {entry.pk} already exists in community feed")
                continue
            share_entry(entry, owner=entry.owner)
            shared_count += 1

        checkpoint.cursor = page[-1].pk
        checkpoint.processed_count = processed_count
        checkpoint.changed_count = shared_count
        checkpoint.save()

    checkpoint.delete()

    logger.info(
        f"Migration completed! Total entries processed: {processed_count}, "
        f"entries shared to community: {shared_count}"
    )
    return BackfillReport(processed_count=processed_count, shared_count=shared_count)
