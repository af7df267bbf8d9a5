import os
import re
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Tuple

import logging

from thumbnail_server.exceptions import BlobNotFoundException

log = logging.getLogger(__name__)

_REF_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_TMP_PREFIX = ".tmp-"

# -------------------------
# Filesystem Blob Store
# -------------------------
class FilesystemBlobStore:
    """
        Stores blobs under ``root/<ref[:2]>/<ref>``.

        A blob is written to a temp file in its final directory, fsynced and
        then renamed into place, so readers see either no file or all of it.
    """
    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        log.info("Initialized filesystem blob store at %s", self.root)

    def _path_for(self, ref: str) -> Path:
        if not isinstance(ref, str) or not _REF_PATTERN.match(ref):
            raise BlobNotFoundException(ref)
        return self.root / ref[:2] / ref

    def put_blob(self, data: bytes, content_type: str = "application/octet-stream") -> str:
        ref = uuid.uuid4().hex
        target = self._path_for(ref)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=_TMP_PREFIX, dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            # never leave a half-written temp file behind
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        log.debug("Wrote blob %s (%d bytes, %s)", ref, len(data), content_type)
        return ref

    def get_blob(self, ref: str) -> bytes:
        path = self._path_for(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundException(ref)

    def delete_blob(self, ref: str):
        path = self._path_for(ref)
        try:
            path.unlink()
            log.debug("Deleted blob %s", ref)
        except FileNotFoundError:
            pass

    def iter_blobs(self) -> Iterator[Tuple[str, datetime]]:
        """Yields ``(ref, last_modified)`` for every committed blob."""
        for shard in sorted(self.root.iterdir()):
            if not shard.is_dir():
                continue
            for entry in sorted(shard.iterdir()):
                if not _REF_PATTERN.match(entry.name):
                    continue
                try:
                    mtime = entry.stat().st_mtime
                except FileNotFoundError:
                    continue
                yield entry.name, datetime.fromtimestamp(mtime, tz=timezone.utc)

    def reclaim_partial(self, older_than: datetime) -> int:
        """Removes temp files left by writes that never reached ``os.replace``."""
        removed = 0
        for shard in sorted(self.root.iterdir()):
            if not shard.is_dir():
                continue
            for entry in shard.iterdir():
                if not entry.name.startswith(_TMP_PREFIX):
                    continue
                try:
                    mtime = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
                    if mtime > older_than:
                        continue
                    entry.unlink()
                except FileNotFoundError:
                    continue
                removed += 1
                log.debug("Removed stale temp file %s", entry)
        return removed

    def close(self):
        log.info("Closed filesystem blob store")
