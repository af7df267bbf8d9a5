"""
    Orphan blob reclamation.

    Blobs are written before their metadata row, so an ingestion that fails
    at commit time (or a crash mid-ingest) can leave blobs nobody references.
    The sweep deletes those once they are older than a grace period; younger
    ones may belong to an ingestion that is still in flight. It also asks the
    blob store to drop partial writes (temp files, unfinished uploads) older
    than the same cutoff.

    A blob that cannot be deleted is logged and counted, and the sweep moves
    on to the next one.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from thumbnail_server.image_service.ingest import STORE_ERRORS
from thumbnail_server.settings import settings

log = logging.getLogger(__name__)

@dataclass
class SweepReport:
    scanned: int = 0
    referenced: int = 0
    deleted: int = 0
    skipped_recent: int = 0
    partial_deleted: int = 0
    failed: int = 0

def sweep_orphans(blob_store, metadata_store, grace_period: Optional[timedelta] = None, now: Optional[datetime] = None) -> SweepReport:
    if grace_period is None:
        grace_period = timedelta(seconds=settings.orphan_grace_seconds)
    cutoff = (now or datetime.now(timezone.utc)) - grace_period

    # list blobs before reading refs: a blob committed in between is then
    # either seen as referenced or too young to delete
    blobs = list(blob_store.iter_blobs())
    referenced = metadata_store.referenced_blob_refs()

    report = SweepReport()
    for ref, last_modified in blobs:
        report.scanned += 1
        if ref in referenced:
            report.referenced += 1
        elif last_modified > cutoff:
            report.skipped_recent += 1
        else:
            try:
                blob_store.delete_blob(ref)
            except STORE_ERRORS as e:
                report.failed += 1
                log.warning("Could not sweep orphan blob %s: %s", ref, e)
                continue
            report.deleted += 1
            log.debug("Swept orphan blob %s", ref)

    try:
        report.partial_deleted = blob_store.reclaim_partial(cutoff)
    except STORE_ERRORS as e:
        report.failed += 1
        log.warning("Could not reclaim partial blob writes: %s", e)

    log.info(
        "Orphan sweep: scanned=%d referenced=%d deleted=%d skipped_recent=%d partial_deleted=%d failed=%d",
        report.scanned, report.referenced, report.deleted, report.skipped_recent,
        report.partial_deleted, report.failed,
    )
    return report
