import logging
import os
from pathlib import Path

from thrasher.core import NoPictureError
from thrasher.core.tags import Tag

logger = logging.getLogger(__name__)

COVER_FILENAME = "cover.jpg"
COVER_MODE = 0o644


def cover_path(directory: str | Path) -> Path:
    """Location of the cover image for an album directory."""
    return Path(directory) / COVER_FILENAME


def has_cover(directory: str | Path) -> bool:
    return cover_path(directory).exists()


def write_cover(track_path: str | Path, tag: Tag) -> Path:
    """
    Write the first attached picture of `tag` to `<dir>/cover.jpg`.

    `<dir>` is the directory holding `track_path`. The picture bytes are
    written as-is (no re-encoding), replacing any existing file.

    Raises:
        NoPictureError: the tag has no attached-picture frame.
        OSError: the cover file could not be written.
    """
    directory = Path(track_path).parent
    if not tag.pictures:
        raise NoPictureError(str(directory))

    picture = tag.pictures[0]
    target = cover_path(directory)

    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, COVER_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(picture.data)

    logger.debug("Wrote %s (%d bytes, %s)", target, len(picture.data), picture.mime)
    return target
