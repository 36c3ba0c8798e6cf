"""Compose text in the user's editor."""

import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path

LOG = logging.getLogger("jigit.editor")


class EditorError(Exception):
    """Raised when no editor is configured or the editor fails."""

    pass


def compose(editor: str, name: str, initial: str = "") -> str:
    """Open editor on a temporary file and return what was saved.

    name becomes part of the file name (e.g. TITLE, DESCRIPTION) so the user
    sees what is being edited. Trailing whitespace is stripped.
    """
    if not editor:
        raise EditorError("no editor configured; set $EDITOR or run 'jigit config --set editor vim'")
    fd, tmp = tempfile.mkstemp(prefix=f"jigit-{name}-", suffix=".md")
    path = Path(tmp)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(initial)
        cmd = shlex.split(editor) + [str(path)]
        LOG.debug("Running editor %s", cmd)
        try:
            subprocess.run(cmd, check=True)
        except subprocess.CalledProcessError as e:
            raise EditorError(f"editor exited with status {e.returncode}") from e
        except FileNotFoundError as e:
            raise EditorError(f"editor not found: {editor}") from e
        return path.read_bytes().decode("utf-8").rstrip()
    finally:
        path.unlink(missing_ok=True)
