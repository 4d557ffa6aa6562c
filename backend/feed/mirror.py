"""
Feed Mirror
===========

Keeps the public community feed in step with private chaos entries.

    entry created  (share_to_feed=True)    -> share_entry
    entry updated  (False -> True)          -> share_entry (post-update data)
    entry updated  (True  -> False)         -> unshare_entry
    entry updated  (flag unchanged)         -> nothing
    entry deleted                           -> unshare_entry

share_entry writes with create-or-overwrite semantics: Model.save() with
an explicit primary key updates the row if it exists and inserts it
otherwise. unshare_entry treats a missing post as already removed.

NON-PROPAGATING ERROR SINK:
---------------------------
The handlers run after the entry mutation has been written; raising from
them cannot undo that mutation and would only break the caller's save().
So every handler is wrapped in best_effort:

- the handler body runs inside its own savepoint, so a failed write rolls
  back only the projection, never the caller's transaction
- any exception is logged with its traceback and returned as
  MirrorResult(action='failed'), never raised

A failed projection leaves the feed diverged from the entries until
backfill.backfill_community_feed runs again.

ANONYMOUS NAMES:
----------------
A fresh anonymous name is generated on every share. Unsharing and
resharing an entry can therefore surface it under a different name.
"""

import functools
import logging
import random
from typing import Literal, Optional

from django.db import transaction

from .models import (
    ChaosEntry,
    CommunityPost,
    Profile,
    ANONYMOUS_BASE_NAME,
    ANONYMOUS_FALLBACK_NAME,
    ANONYMOUS_FALLBACK_USERNAME,
    ANONYMOUS_SUFFIX_LIMIT,
    UNKNOWN_MOOD,
)
from .queries import get_profile

logger = logging.getLogger(__name__)


class MirrorResult:
    """Outcome of one feed mirror handler."""
    def __init__(
        self,
        entry_id: str,
        action: Literal['shared', 'unshared', 'skipped', 'failed'],
        error: Optional[Exception] = None
    ):
        self.entry_id = entry_id
        self.action = action
        self.error = error

    @property
    def failed(self) -> bool:
        return self.action == 'failed'

    def __repr__(self):
        return f"MirrorResult({self.entry_id!r}, {self.action!r})"


def best_effort(handler):
    """
    Run a mirror handler without ever propagating its failure.

    The first positional argument of the handler must be the entry or its
    id; it is used to label the failure.
    """
    @functools.wraps(handler)
    def wrapper(target, *args, **kwargs):
        entry_id = getattr(target, 'pk', target)
        try:
            with transaction.atomic():
                return handler(target, *args, **kwargs)
        except Exception as exc:
            logger.exception(f"{handler.__name__} failed for entry {entry_id}; community feed not updated")
            return MirrorResult(entry_id, 'failed', error=exc)
    return wrapper


def anonymous_username(profile: Optional[Profile]) -> str:
    """
    Public name for a shared entry: first '_' segment of the display name
    (or username, or 'Adventurer') plus a random numeric suffix.

    Splitting on '_' drops a suffix added by an earlier derivation, so
    names never accumulate suffixes.
    """
    if profile is None:
        return ANONYMOUS_FALLBACK_NAME
    base_name = profile.display_name or profile.username or ANONYMOUS_BASE_NAME
    clean_base_name = base_name.split('_')[0]
    return f"{clean_base_name}_{random.randrange(ANONYMOUS_SUFFIX_LIMIT)}"


def build_community_post(entry: ChaosEntry, profile: Optional[Profile]) -> CommunityPost:
    """Project an entry into an (unsaved) community post."""
    if profile is not None:
        username = profile.username or ANONYMOUS_FALLBACK_USERNAME
    else:
        username = ANONYMOUS_FALLBACK_USERNAME

    return CommunityPost(
        id=entry.pk,
        chaos_entry_id=entry.pk,
        owner_uid=entry.owner_id,
        username=username,
        anonymous_username=anonymous_username(profile),
        title=entry.title,
        content=entry.content,
        description=entry.content,
        chaos_level=entry.chaos_level,
        mood=entry.mood or UNKNOWN_MOOD,
        tags=list(entry.tags or []),
        mini_wins=list(entry.mini_wins or []),
        is_anonymous=True,
        created_at=entry.created_at,
        support_count=0,
        twin_count=0,
        view_count=0,
        is_reported=False,
        is_moderated=False,
    )


def share_entry(entry: ChaosEntry, owner: Optional[Profile] = None) -> CommunityPost:
    """
    Create (or overwrite) the community post for entry.

    Pass owner when the caller already loaded it (batch jobs join it onto
    the page); otherwise the profile is read fresh so the projection uses
    the current display name.
    """
    profile = owner if owner is not None else get_profile(entry.owner_id)
    post = build_community_post(entry, profile)
    post.save()
    logger.info(f"Shared entry {entry.pk} to community feed as {post.anonymous_username}")
    return post


def unshare_entry(entry_id: str) -> bool:
    """Delete the community post for entry_id. Returns False if there was none."""
    deleted_count, _ = CommunityPost.objects.filter(id=entry_id).delete()
    if deleted_count:
        logger.info(f"Removed entry {entry_id} from community feed")
        return True
    logger.info(f"No community post found for {entry_id}")
    return False


# ============================================================================
# EVENT HANDLERS
# ============================================================================

@best_effort
def on_entry_created(entry: ChaosEntry) -> MirrorResult:
    logger.info(f"Chaos entry created: {entry.pk} by {entry.owner_id} (share_to_feed={entry.share_to_feed})")
    if not entry.share_to_feed:
        return MirrorResult(entry.pk, 'skipped')
    share_entry(entry)
    return MirrorResult(entry.pk, 'shared')


@best_effort
def on_entry_updated(entry: ChaosEntry, shared_before: bool) -> MirrorResult:
    """entry carries the post-update data; shared_before the stored flag."""
    if not shared_before and entry.share_to_feed:
        logger.info(f"Share to community toggled ON for entry {entry.pk}")
        share_entry(entry)
        return MirrorResult(entry.pk, 'shared')

    if shared_before and not entry.share_to_feed:
        logger.info(f"Share to community toggled OFF for entry {entry.pk}")
        unshare_entry(entry.pk)
        return MirrorResult(entry.pk, 'unshared')

    return MirrorResult(entry.pk, 'skipped')


@best_effort
def on_entry_deleted(entry_id: str) -> MirrorResult:
    logger.info(f"Chaos entry deleted: {entry_id}")
    if unshare_entry(entry_id):
        return MirrorResult(entry_id, 'unshared')
    return MirrorResult(entry_id, 'skipped')
