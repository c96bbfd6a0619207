from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def find_git_root(start: Path) -> Path | None:
    cur = Path(start)
    # the data dir may not exist yet; walk up from it anyway
    for candidate in (cur, *cur.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def assert_safe_data_dir(data_dir: Path, allow_repo_data_path: bool) -> None:
    """Refuse tracker data that would live inside a git work tree."""
    git_root = find_git_root(data_dir)
    if git_root is None:
        return
    if allow_repo_data_path:
        logger.warning("data dir %s is inside git repo %s (allowed by flag)", data_dir, git_root)
        return
    raise SystemExit(
        "🚫 Refusing to keep tracker data inside a git repo.\n"
        f"   data dir:  {data_dir}\n"
        f"   repo root: {git_root}\n"
        "   Fix: use ~/.config/opptracker/<profile> or pass --allow-repo-data-path"
    )
