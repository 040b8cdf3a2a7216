"""
File system utilities for the survey labeler.
Handles directory traversal, image filtering and relative path formatting.
"""
import os
import logging
from pathlib import Path
from typing import Iterator, List, Callable, Optional, FrozenSet

logger = logging.getLogger(__name__)


def is_supported_image(path: Path, extensions: FrozenSet[str]) -> bool:
    """Check a file's extension against the allowed (normalized) set."""
    suffix = Path(path).suffix
    if not suffix:
        return False
    return suffix.lower() in extensions


def normalize_relpath(path: Path, root: Path) -> str:
    """Path relative to root, always with '/' separators."""
    path = Path(path)
    try:
        rel = path.relative_to(root)
    except ValueError:
        rel = path
    return str(rel).replace(os.sep, '/').replace('\\', '/')


def _scan_dir(directory: Path) -> List[os.DirEntry]:
    """List a directory sorted by name; unreadable directories yield nothing."""
    try:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        logger.warning(f"Cannot read directory {directory}: {e}")
        return []


class DirectoryWalker:
    """
    Walks directories in pre-order, children in name order.

    Uses an explicit stack so a visitor can claim a directory and keep
    the walk out of everything beneath it.
    """

    def walk_dirs(
        self,
        root: Path,
        claim: Optional[Callable[[Path], bool]] = None
    ) -> Iterator[Path]:
        """
        Yield every directory under root (root included).

        Args:
            root: Directory to start from
            claim: Called with each directory after it is yielded; when it
                returns True the directory's children are not visited

        Yields:
            Directory paths in pre-order
        """
        root = Path(root)
        if not root.is_dir():
            return

        stack = [root]
        while stack:
            directory = stack.pop()
            yield directory

            if claim is not None and claim(directory):
                continue

            subdirs = [
                Path(entry.path) for entry in _scan_dir(directory)
                if entry.is_dir(follow_symlinks=False)
            ]
            # Reversed so the smallest name is popped first
            stack.extend(reversed(subdirs))

    def walk_files(self, root: Path) -> Iterator[Path]:
        """Yield every regular file under root (symlinks are not followed)."""
        root = Path(root)
        if root.is_file():
            yield root
            return

        for directory in self.walk_dirs(root):
            for entry in _scan_dir(directory):
                if entry.is_file(follow_symlinks=False):
                    yield Path(entry.path)


def collect_images(root: Path, extensions: FrozenSet[str]) -> List[Path]:
    """
    Collect all allowed-extension files under root.

    Args:
        root: Directory to search
        extensions: Normalized extension set

    Returns:
        Image paths, sorted
    """
    walker = DirectoryWalker()
    files = [p for p in walker.walk_files(root) if is_supported_image(p, extensions)]
    files.sort()
    return files


def count_images(root: Path, extensions: FrozenSet[str]) -> int:
    """Count allowed-extension files under root."""
    walker = DirectoryWalker()
    return sum(1 for p in walker.walk_files(root) if is_supported_image(p, extensions))
