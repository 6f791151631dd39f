"""Content-addressed artifact storage for generated media.

Narration audio and thumbnails come back from the provider as bytes. They are
written under WORKSPACE_ROOT and the project stores only the resulting path.

Layout:
    {WORKSPACE_ROOT}/artifacts/{kind}/{sha256}{suffix}
    e.g. /app/workspace/artifacts/audio/3f5a...c1.wav

Files are named by content hash, so re-saving identical bytes (a retried
upload, a resumed invocation) returns the same path and never duplicates
data. Writes go to a temp file first and are renamed into place.

Security:
    `kind` and `suffix` are validated; resolved paths must stay inside the
    workspace root.
"""

import hashlib
import os
import re
import tempfile
from pathlib import Path

from autopilot.utils.logging import get_logger

log = get_logger(__name__)

ARTIFACT_DIR_NAME = "artifacts"
AUDIO_KIND = "audio"
THUMBNAIL_KIND = "thumbnails"

_KIND_PATTERN = re.compile(r"^[a-z0-9_-]+$")
_SUFFIX_PATTERN = re.compile(r"^\.[a-z0-9]{1,8}$")


class ArtifactStore:
    """Write artifact bytes to disk and return stable references."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _kind_dir(self, kind: str) -> Path:
        if not _KIND_PATTERN.match(kind):
            raise ValueError(f"Invalid artifact kind: {kind!r}")

        directory = self.root / ARTIFACT_DIR_NAME / kind
        if not directory.resolve().is_relative_to(self.root.resolve()):
            raise ValueError(f"Artifact path escapes workspace: {directory}")
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def save(self, kind: str, data: bytes, suffix: str) -> str:
        """Store bytes and return the artifact path as a string.

        Args:
            kind: Subdirectory name ("audio", "thumbnails").
            data: Artifact content; must be non-empty.
            suffix: File extension including the dot (".wav", ".png").

        Raises:
            ValueError: Empty data or invalid kind/suffix.
        """
        if not data:
            raise ValueError("Refusing to store an empty artifact")
        if not _SUFFIX_PATTERN.match(suffix):
            raise ValueError(f"Invalid artifact suffix: {suffix!r}")

        digest = hashlib.sha256(data).hexdigest()
        path = self._kind_dir(kind) / f"{digest}{suffix}"
        if path.exists():
            log.debug("artifact_exists", path=str(path))
            return str(path)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        log.info("artifact_saved", kind=kind, path=str(path), size_bytes=len(data))
        return str(path)
