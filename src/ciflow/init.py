from __future__ import annotations

"""Template initializer.

CONTRACT
- Inputs: Repo path
- Outputs (required):
  - Writes .ciflow/workflow.yaml
- Invariants:
  - Creates .ciflow directory if missing
  - Does not overwrite existing files (by default)
- Failure:
  - Raises OSError on permission issues
"""

from pathlib import Path

from .config import DEFAULT_WORKFLOW_TEMPLATE, REPO_WORKFLOW_PATH
from .util.paths import copy_template, ensure_dir


def write_templates(repo: Path, force: bool = False) -> Path | None:
    """Returns the written path, or None when an existing file was kept."""
    dest = repo / REPO_WORKFLOW_PATH
    ensure_dir(dest.parent)
    if copy_template(DEFAULT_WORKFLOW_TEMPLATE, dest, overwrite=force):
        return dest
    return None
