"""Load bundlekit settings from a Java-style ``.properties`` file.

Recognized keys::

    nar.library.directory=./lib
    nar.library.directory.alt=./lib2
    nar.library.directory.custom=/opt/extensions
    nar.working.directory=./work/extensions
    nar.archive.extensions=.nar
    nar.unpack.workers=4
    nar.verify.checksum=false

Every ``nar.library.directory.<suffix>`` key adds an alternate library
directory, in the order the keys appear in the file. Unknown keys are
ignored so the same file can carry settings for other components.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from .settings import Settings

logger = logging.getLogger(__name__)

LIBRARY_DIRECTORY = "nar.library.directory"
LIBRARY_DIRECTORY_PREFIX = LIBRARY_DIRECTORY + "."
WORKING_DIRECTORY = "nar.working.directory"
ARCHIVE_EXTENSIONS = "nar.archive.extensions"
UNPACK_WORKERS = "nar.unpack.workers"
VERIFY_CHECKSUM = "nar.verify.checksum"

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_UNICODE_ESCAPE = re.compile(r"u([0-9a-fA-F]{4})")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_properties(text: str) -> dict[str, str]:
    """Parse ``.properties`` text into an insertion-ordered dict.

    Supports ``#``/``!`` comments, ``=``, ``:`` or whitespace separators,
    backslash line continuations and the usual backslash escapes.
    """
    properties: dict[str, str] = {}
    for logical in _logical_lines(text):
        key, value = _split_key_value(logical)
        properties[_unescape(key)] = _unescape(value)
    return properties


def load_properties(path: str | Path) -> dict[str, str]:
    """Read and parse a ``.properties`` file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Properties file not found at {path}")
    return parse_properties(path.read_text(encoding="utf-8"))


def properties_to_settings_kwargs(properties: dict[str, str]) -> dict[str, Any]:
    """Translate recognized property keys into ``Settings`` keyword arguments."""
    kwargs: dict[str, Any] = {}
    alternates: list[str] = []

    for key, value in properties.items():
        value = value.strip()
        if key == LIBRARY_DIRECTORY:
            if value:
                kwargs["NAR_LIBRARY_DIRECTORY"] = value
        elif key.startswith(LIBRARY_DIRECTORY_PREFIX):
            if value:
                alternates.append(value)
        elif key == WORKING_DIRECTORY:
            if value:
                kwargs["NAR_WORKING_DIRECTORY"] = value
        elif key == ARCHIVE_EXTENSIONS:
            kwargs["NAR_ARCHIVE_EXTENSIONS"] = value
        elif key == UNPACK_WORKERS:
            kwargs["NAR_UNPACK_WORKERS"] = value
        elif key == VERIFY_CHECKSUM:
            kwargs["NAR_VERIFY_CHECKSUM"] = value

    kwargs["NAR_LIBRARY_DIRECTORY_ALT"] = alternates
    return kwargs


def settings_from_properties(path: str | Path, **overrides: Any) -> Settings:
    """Build ``Settings`` from a properties file; keyword overrides win.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If a value is invalid.
    """
    kwargs = properties_to_settings_kwargs(load_properties(path))
    kwargs.update(overrides)
    logger.info(f"Loaded settings from {path}")
    return Settings(**kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ends_with_continuation(line: str) -> bool:
    trailing = len(line) - len(line.rstrip("\\"))
    return trailing % 2 == 1


def _logical_lines(text: str) -> list[str]:
    lines: list[str] = []
    pending: str | None = None
    for raw in text.splitlines():
        line = raw.lstrip()
        if pending is None and (not line or line[0] in "#!"):
            continue
        if pending is not None:
            line = pending + line
            pending = None
        if _ends_with_continuation(line):
            pending = line[:-1]
            continue
        lines.append(line)
    if pending is not None:
        lines.append(pending)
    return lines


def _split_key_value(line: str) -> tuple[str, str]:
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\":
            index += 2
            continue
        if char in "=: \t\f":
            break
        index += 1
    key = line[:index]
    rest = line[index:].lstrip(" \t\f")
    if rest and rest[0] in "=:":
        rest = rest[1:].lstrip(" \t\f")
    return key, rest


def _unescape(value: str) -> str:
    result: list[str] = []
    index = 0
    while index < len(value):
        char = value[index]
        if char != "\\" or index + 1 == len(value):
            result.append(char)
            index += 1
            continue
        nxt = value[index + 1]
        match = _UNICODE_ESCAPE.match(value, index + 1)
        if match:
            result.append(chr(int(match.group(1), 16)))
            index = match.end()
            continue
        result.append(_ESCAPES.get(nxt, nxt))
        index += 2
    return "".join(result)
