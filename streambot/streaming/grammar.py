"""Line grammar for model output.

Each logical line of a reply is one of:

    TG_IMAGE <url>; <caption?>              photo with optional caption
    TG_CONCLUSION <body>; <label>; ...      text with one-shot suggestion buttons
    <anything else>                         plain text

Fields are separated by ``;`` with no escaping. A line whose prefix matches but
whose fields do not fit the command shape is plain text, never an error. The
conclusion prefix depends on the deployment grammar (``CONCLUSION `` for the
legacy grammar); only one prefix is recognised at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from streambot.profile import CONCLUSION_PREFIXES

IMAGE_PREFIX = "TG_IMAGE "
FIELD_SEPARATOR = ";"


@dataclass(frozen=True)
class ImageCommand:
    url: str
    caption: str = ""


@dataclass(frozen=True)
class ConclusionCommand:
    body: str
    suggestions: tuple[str, ...]


@dataclass(frozen=True)
class TextLine:
    text: str


Command = Union[ImageCommand, ConclusionCommand, TextLine]


def _parse_image(line: str) -> ImageCommand | None:
    if not line.startswith(IMAGE_PREFIX) or FIELD_SEPARATOR not in line:
        return None
    fields = line[len(IMAGE_PREFIX):].split(FIELD_SEPARATOR)
    url = fields[0].strip()
    if not url:
        return None
    caption = fields[1].strip() if len(fields) > 1 else ""
    return ImageCommand(url=url, caption=caption)


def _parse_conclusion(line: str, prefix: str) -> ConclusionCommand | None:
    if not line.startswith(prefix) or FIELD_SEPARATOR not in line:
        return None
    fields = line[len(prefix):].split(FIELD_SEPARATOR)
    body = fields[0].strip()
    suggestions = tuple(label for label in (f.strip() for f in fields[1:]) if label)
    if not body or not suggestions:
        return None
    return ConclusionCommand(body=body, suggestions=suggestions)


def classify_line(line: str, conclusion_prefix: str = CONCLUSION_PREFIXES["current"]) -> Command | None:
    """Classify one completed line; returns None for blank lines."""
    line = line.strip()
    if not line:
        return None
    return (
        _parse_image(line)
        or _parse_conclusion(line, conclusion_prefix)
        or TextLine(text=line)
    )
