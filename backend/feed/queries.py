"""
Query helpers
=============

Lookups shared by the identity bridge, the feed mirror and the backfill
jobs.

BATCHED EXISTENCE CHECKS:
-------------------------
The community backfill needs to know, for every shared entry on a page,
whether a post already exists. Checking entry by entry costs one query per
entry:

    for entry in page:
        CommunityPost.objects.filter(id=entry.id).exists()   # N queries

existing_post_ids() answers the whole page with one IN query instead.

KEYSET PAGINATION:
------------------
iter_pages() walks a queryset in primary-key order using
    WHERE pk > <last pk of previous page> ORDER BY pk LIMIT n
so memory stays bounded by the page size and the position can be stored
as a single value (see BackfillCheckpoint.cursor).
"""

from typing import Iterable, Iterator, Optional

from django.db.models import QuerySet

from .models import Profile, CommunityPost


def find_profile_by_username(username_lower: str) -> Optional[Profile]:
    """
    Look up a principal by normalized username.

    Query: 1 (unique index on username_lower)
    """
    return (
        Profile.objects
        .filter(username_lower=username_lower)
        .first()
    )


def get_profile(uid: str) -> Optional[Profile]:
    return Profile.objects.filter(uid=uid).first()


def existing_post_ids(entry_ids: Iterable[str]) -> set[str]:
    """
    Return the subset of entry_ids that already have a community post.

    Query: 1 (or 0 when entry_ids is empty)
    """
    entry_ids = list(entry_ids)
    if not entry_ids:
        return set()
    return set(
        CommunityPost.objects
        .filter(id__in=entry_ids)
        .values_list('id', flat=True)
    )


def iter_pages(queryset: QuerySet, page_size: int, after: str = '') -> Iterator[list]:
    """
    Yield successive pages of queryset in primary-key order.

    after is an exclusive lower bound on the primary key; pass the last pk
    of a previous run to resume where it stopped.

    The queryset is re-evaluated for every page, so rows that stop
    matching its filter (e.g. because the caller just updated them) simply
    drop out of later pages.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")

    cursor = after
    while True:
        page_qs = queryset.order_by('pk')
        if cursor:
            page_qs = page_qs.filter(pk__gt=cursor)
        page = list(page_qs[:page_size])
        if not page:
            return
        yield page
        cursor = page[-1].pk
