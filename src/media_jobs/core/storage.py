"""Local object store with signed, time-limited download links."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
import secrets
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from urllib.parse import quote

from ..errors import StorageError
from ..models import utcnow

logger = logging.getLogger(__name__)

_KEY_PART_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class LocalObjectStore:
    """
    Objects stored as files under root, addressed by slash-separated keys.

    Download links carry an expiry timestamp and an HMAC-SHA256 signature of
    key and expiry; the HTTP API serves an object only when verify() accepts
    both.
    """

    def __init__(
        self,
        root: str | Path,
        public_base_url: str,
        signing_key: str | None = None,
        default_ttl: int = 86400,
        max_ttl: int = 604800,
    ):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        if not signing_key:
            logger.warning("No signing key configured; download links will not survive a restart")
            signing_key = secrets.token_hex(32)
        self._signing_key = signing_key.encode()
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl

    @classmethod
    def from_config(cls, root: str | Path, config: dict[str, Any]) -> LocalObjectStore:
        return cls(
            root,
            public_base_url=config["public_base_url"],
            signing_key=config.get("signing_key"),
            default_ttl=int(config["default_ttl_seconds"]),
            max_ttl=int(config["max_ttl_seconds"]),
        )

    def path(self, key: str) -> Path:
        """Filesystem path of an object. Rejects keys that could escape root."""
        parts = key.split("/")
        if not key or any(not _KEY_PART_RE.match(part) or ".." in part for part in parts):
            raise ValueError(f"Invalid object key: {key!r}")
        return self.root.joinpath(*parts)

    def exists(self, key: str) -> bool:
        return self.path(key).is_file()

    def put(self, key: str, source: str | Path | bytes) -> str:
        """Store a file or bytes under key, replacing any existing object."""
        target = self.path(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
            with os.fdopen(fd, "wb") as f:
                if isinstance(source, bytes):
                    f.write(source)
                else:
                    with open(source, "rb") as src:
                        shutil.copyfileobj(src, f)
            os.replace(tmp, target)
        except OSError as e:
            raise StorageError(f"Failed to store {key}: {e}") from e

        logger.info(f"Stored object {key} ({target.stat().st_size} bytes)")
        return key

    def delete(self, key: str) -> bool:
        try:
            self.path(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def _sign(self, key: str, expires: int) -> str:
        message = f"{key}\n{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def signed_url(
        self, key: str, ttl_seconds: int | None = None, now: datetime | None = None
    ) -> tuple[str, datetime]:
        """Return (url, expires_at) for a stored object."""
        if not self.exists(key):
            raise StorageError(f"No such object: {key}")

        ttl = ttl_seconds or self.default_ttl
        if ttl <= 0 or ttl > self.max_ttl:
            raise ValueError(f"Link lifetime must be between 1 and {self.max_ttl} seconds, got {ttl}")

        expires_at = (now or utcnow()) + timedelta(seconds=ttl)
        expires = int(expires_at.timestamp())
        url = (
            f"{self.public_base_url}/{quote(key)}"
            f"?expires={expires}&signature={self._sign(key, expires)}"
        )
        return url, expires_at

    def verify(self, key: str, expires: int, signature: str, now: datetime | None = None) -> bool:
        """True if signature matches key and expiry and the link has not expired."""
        if int((now or utcnow()).timestamp()) >= expires:
            return False
        return hmac.compare_digest(self._sign(key, expires), signature)
