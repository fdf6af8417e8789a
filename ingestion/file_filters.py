import logging
import os

logger = logging.getLogger(__name__)

# Tool and dependency directories never hold operator documents.
EXCLUDED_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".venv",
        "venv",
        "env",
        "__pycache__",
        "node_modules",
        ".mypy_cache",
        ".pytest_cache",
        ".idea",
        ".vscode",
        "$RECYCLE.BIN",
        "System Volume Information",
    }
)


def is_excluded_dir(name: str) -> bool:
    """True for directories the scanner must not descend into."""
    return name in EXCLUDED_DIRS


def should_skip_file(
    filename: str,
    accepted_extensions: set[str],
    skip_files: set[str],
) -> tuple[bool, str]:
    """Determine whether a discovered file should stay out of the manifest."""
    if filename in skip_files:
        return True, "file in hard-coded skip list."

    if filename.startswith("~$"):
        return True, "office lock file"

    ext = os.path.splitext(filename)[1].lower()
    if ext not in accepted_extensions:
        return True, f"unsupported file type: {ext or '<none>'}"

    return False, ""


__all__ = ["EXCLUDED_DIRS", "is_excluded_dir", "should_skip_file"]
