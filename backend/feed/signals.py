"""
Django Signals that drive the feed mirror.

ChaosEntry lifecycle -> mirror handler:

    pre_save     remember the stored share_to_feed value on the instance
    post_save    created -> on_entry_created, otherwise on_entry_updated
    post_delete  on_entry_deleted (also fires for cascade deletes when a
                 Profile is removed)

The handlers never raise (see mirror.best_effort); whatever they return
is logged here and dropped.

IMPORTANT: Signals do NOT fire on:
- bulk_create()
- bulk_update()
- QuerySet.update()

(QuerySet.delete() does send post_delete per row.) Entries changed
through those paths are picked up by backfill.backfill_community_feed.

Fixture loading (raw=True) is ignored.
"""
import logging

from django.db.models.signals import pre_save, post_save, post_delete
from django.dispatch import receiver

from .models import ChaosEntry
from . import mirror

logger = logging.getLogger(__name__)


def _report(result):
    if result.failed:
        logger.warning(f"Feed mirror diverged for entry {result.entry_id}: {result.error!r}")
    else:
        logger.debug(f"Feed mirror {result.action} entry {result.entry_id}")


@receiver(pre_save, sender=ChaosEntry)
def remember_share_state(sender, instance, raw=False, **kwargs):
    """
    Stash the currently stored share flag so post_save can see the
    transition. None means the row does not exist yet.
    """
    if raw:
        return
    instance._shared_before = (
        ChaosEntry.objects
        .filter(pk=instance.pk)
        .values_list('share_to_feed', flat=True)
        .first()
    )


@receiver(post_save, sender=ChaosEntry)
def mirror_saved_entry(sender, instance, created, raw=False, **kwargs):
    if raw:
        return
    if created:
        _report(mirror.on_entry_created(instance))
    else:
        shared_before = bool(getattr(instance, '_shared_before', False))
        _report(mirror.on_entry_updated(instance, shared_before))


@receiver(post_delete, sender=ChaosEntry)
def mirror_deleted_entry(sender, instance, **kwargs):
    _report(mirror.on_entry_deleted(instance.pk))
