"""Repository-confined path validation.

Every path that comes from outside the process (command-line arguments,
manifest entries, attachment filenames) goes through ``PathValidator``
before it touches the filesystem.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from phonearchive.core.errors import (
    InvalidPathError,
    PathOutsideRepositoryError,
    PathTooLongError,
)

logger = logging.getLogger(__name__)

MAX_PATH_LENGTH = 1024

_ENCODED_TRAVERSAL = ("%2e%2e%2f", "%2e%2e/", "..%2f", "%2e%2e\\", "%2e%2e%5c")


class PathValidator:
    """Confines paths to a base directory.

    ``validate_path`` returns the path relative to the base, or raises one
    of ``InvalidPathError``, ``PathTooLongError`` or
    ``PathOutsideRepositoryError``. Symlinks are resolved before the
    containment check, so a link pointing outside the base is rejected.
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = os.path.realpath(os.path.abspath(str(base_dir)))

    def validate_path(self, user_path: str | Path) -> str:
        user_path = str(user_path)
        self._check_syntax(user_path)

        cleaned = os.path.normpath(user_path)
        if os.path.isabs(cleaned):
            joined = cleaned
        else:
            joined = os.path.join(self.base_dir, cleaned)

        resolved = self._resolve(joined)
        if not self._contains(resolved):
            logger.debug("rejected path outside repository: %r", user_path)
            raise PathOutsideRepositoryError(
                f"path escapes repository: {user_path!r}", path=user_path,
            )
        return os.path.relpath(resolved, self.base_dir)

    def join_and_validate(self, *parts: str) -> str:
        """Join path components and validate the result."""
        if not parts:
            raise InvalidPathError("no path components given")
        return self.validate_path(os.path.join(*parts))

    def get_safe_path(self, user_path: str | Path) -> Path:
        """Validate ``user_path`` and return it as an absolute path."""
        rel = self.validate_path(user_path)
        return Path(self.base_dir) / rel if rel != "." else Path(self.base_dir)

    def validate_absolute_path(self, abs_path: str | Path) -> str:
        """Validate a path that is expected to be absolute already."""
        abs_path = str(abs_path)
        if not os.path.isabs(abs_path):
            raise InvalidPathError(f"path is not absolute: {abs_path!r}", path=abs_path)
        return self.validate_path(abs_path)

    def _check_syntax(self, user_path: str) -> None:
        if not user_path:
            raise InvalidPathError("empty path", path=user_path)
        if len(user_path) > MAX_PATH_LENGTH:
            raise PathTooLongError(
                f"path length {len(user_path)} exceeds {MAX_PATH_LENGTH}",
                path=user_path[:64],
            )
        if "\x00" in user_path:
            raise InvalidPathError("path contains null byte", path=user_path)
        if "\\" in user_path:
            raise InvalidPathError("path contains backslash", path=user_path)
        lowered = user_path.lower()
        for pattern in _ENCODED_TRAVERSAL:
            if pattern in lowered:
                raise InvalidPathError(
                    f"path contains encoded traversal: {user_path!r}", path=user_path,
                )

    def _resolve(self, path: str) -> str:
        if os.path.lexists(path):
            return os.path.realpath(path)
        # Nonexistent tail: resolve the deepest existing ancestor instead.
        head, tail = os.path.split(path)
        missing = [tail]
        while head and not os.path.lexists(head):
            head, tail = os.path.split(head)
            missing.append(tail)
        base = os.path.realpath(head) if head else ""
        return os.path.normpath(os.path.join(base, *reversed(missing)))

    def _contains(self, resolved: str) -> bool:
        if resolved == self.base_dir:
            return True
        return resolved.startswith(self.base_dir.rstrip(os.sep) + os.sep)
