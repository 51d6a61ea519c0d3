from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from mutagen import MutagenError
from mutagen.id3 import ID3, ID3NoHeaderError, TextFrame

from thrasher.core import TagReadError

logger = logging.getLogger(__name__)

# ID3v2.3/2.4 frame ids first, ID3v2.2 equivalents after.
ARTIST_FRAMES: tuple[str, ...] = ("TPE1", "TP1")
TITLE_FRAMES: tuple[str, ...] = ("TIT2", "TT2")
ALBUM_FRAMES: tuple[str, ...] = ("TALB", "TAL")
YEAR_FRAMES: tuple[str, ...] = ("TDRC", "TYER", "TYE")
GENRE_FRAMES: tuple[str, ...] = ("TCON", "TCO")
PICTURE_FRAMES: tuple[str, ...] = ("APIC", "PIC")


@dataclass(frozen=True, slots=True)
class Picture:
    """An attached-picture frame."""

    mime: str
    data: bytes
    picture_type: int = 3
    description: str = ""


@dataclass(frozen=True, slots=True)
class Tag:
    """
    Parsed ID3 metadata of one file, held in memory.

    Text values are kept raw (untrimmed, untranslated); an absent frame reads
    as the empty string. Normalization is the ingestion pipeline's job.
    """

    path: str
    frames: Mapping[str, str] = field(default_factory=dict)
    pictures: tuple[Picture, ...] = ()

    @property
    def artist(self) -> str:
        return self._first_of(ARTIST_FRAMES)

    @property
    def title(self) -> str:
        return self._first_of(TITLE_FRAMES)

    @property
    def album(self) -> str:
        return self._first_of(ALBUM_FRAMES)

    @property
    def year(self) -> str:
        return self._first_of(YEAR_FRAMES)

    @property
    def genre(self) -> str:
        return self._first_of(GENRE_FRAMES)

    def text_frame(self, frame_id: str) -> str:
        """Return the raw text of a frame by id ("" if absent)."""
        return self.frames.get(frame_id, "")

    def _first_of(self, frame_ids: Iterable[str]) -> str:
        for frame_id in frame_ids:
            if frame_id in self.frames:
                return self.frames[frame_id]
        return ""


def _first_text(frame: Any) -> str:
    """
    Reduce a mutagen text frame to its first value.

    Multi-valued ID3v2.4 frames come back as lists; timestamp frames carry
    ID3TimeStamp objects, which stringify to their ISO text.
    """
    text = getattr(frame, "text", None)
    if not text:
        return ""
    return str(text[0])


def _extract_frames(id3: ID3) -> dict[str, str]:
    frames: dict[str, str] = {}
    for frame in id3.values():
        if not isinstance(frame, TextFrame):
            continue
        # First frame wins (TXXX and friends may repeat under one id).
        frames.setdefault(frame.FrameID, _first_text(frame))
    return frames


def _extract_pictures(id3: ID3) -> tuple[Picture, ...]:
    pictures: list[Picture] = []
    for frame_id in PICTURE_FRAMES:
        for frame in id3.getall(frame_id):
            pictures.append(
                Picture(
                    mime=str(getattr(frame, "mime", "")),
                    data=bytes(frame.data),
                    picture_type=int(frame.type),
                    description=str(frame.desc),
                )
            )
    return tuple(pictures)


def read_tag(path: str | Path) -> Tag:
    """
    Open `path`, parse its ID3 tag and return it.

    The file is closed before this returns. A file with no ID3 tag at all
    yields an empty `Tag`; any other failure raises `TagReadError`.
    """
    path_str = str(path)
    try:
        # translate=False: keep frames exactly as tagged (no "(17)" -> "Rock" rewrite).
        id3 = ID3(path_str, translate=False)
    except ID3NoHeaderError:
        logger.debug("No ID3 tag in %s", path_str)
        return Tag(path=path_str)
    except MutagenError as e:
        raise TagReadError(path_str, e) from e

    return Tag(path=path_str, frames=_extract_frames(id3), pictures=_extract_pictures(id3))
