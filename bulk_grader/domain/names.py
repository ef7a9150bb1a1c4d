from __future__ import annotations

import re

_EXTENSION_RE = re.compile(r"\.[^.]+$")
_SUFFIX_RE = re.compile(r"[-_](presentation|video|recording|submission|final|v\d+)$", re.IGNORECASE)
_TRAILING_ID_RE = re.compile(r"[-_]\d{4,}$")
_SEPARATOR_RE = re.compile(r"[-_]")


def infer_student_name(filename: str) -> str:
    """Guess a display name from an uploaded file name.

    ``John_Doe_Presentation.mp4`` becomes ``John Doe``. Falls back to the
    file name without its extension when nothing is left after cleanup.
    """
    stem = _EXTENSION_RE.sub("", filename)
    cleaned = _SUFFIX_RE.sub("", stem)
    cleaned = _TRAILING_ID_RE.sub("", cleaned)
    words = [word for word in _SEPARATOR_RE.sub(" ", cleaned).split(" ") if word]
    titled = " ".join(word[:1].upper() + word[1:].lower() for word in words)
    return titled or stem
