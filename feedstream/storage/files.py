"""Atomic file replacement shared by the cache and config stores."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional, Union


def write_atomic(
    path: Path,
    data: Union[bytes, BinaryIO],
    mode: Optional[int] = None,
) -> None:
    """Write *data* to a sibling temp file, fsync it, then rename over *path*.

    Readers see either the previous content or the new content, never a
    truncated file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as tmp:
            if isinstance(data, (bytes, bytearray)):
                tmp.write(data)
            else:
                shutil.copyfileobj(data, tmp)
            tmp.flush()
            os.fsync(tmp.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
