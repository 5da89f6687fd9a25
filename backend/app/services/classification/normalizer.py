"""Failure signature normalization.

Two failures that differ only in volatile details (line numbers, timestamps,
ids, machine-specific paths) must produce the same signature hash, so the
error text is reduced to its stable shape before hashing:

* first non-empty line of the error message,
* the top two stack frames, keeping the function name and dropping the
  location (frames without a function keep only the file name),
* timestamps, UUIDs, hex tokens, absolute path prefixes and digit runs
  replaced by fixed placeholders,
* lowercased, whitespace collapsed.
"""
import hashlib
import re
from typing import List, Optional

MAX_FRAMES = 2

_TIMESTAMP_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}(?:[t ]\d{2}:\d{2}(?::\d{2}(?:[.,]\d+)?)?(?:z|[+-]\d{2}:?\d{2})?)?",
    re.IGNORECASE,
)
_UUID_RE = re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.IGNORECASE)
_HEX_RE = re.compile(r"\b(?:0x[0-9a-f]+|[0-9a-f]{16,})\b", re.IGNORECASE)
_UNIX_PATH_RE = re.compile(r"(?<![\w.])/(?:[\w.@+~-]+/)+")
_WINDOWS_PATH_RE = re.compile(r"\b[a-z]:\\(?:[^\\\s:]+\\)+", re.IGNORECASE)
_DIGITS_RE = re.compile(r"\d+")
_WHITESPACE_RE = re.compile(r"\s+")

_PY_FRAME_RE = re.compile(r'^File "(?P<loc>[^"]+)", line \d+, in (?P<func>\S+)')


def _first_line(text: Optional[str]) -> str:
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


def _basename(location: str) -> str:
    return re.split(r"[/\\]", location.strip())[-1]


def _parse_frame(line: str) -> Optional[str]:
    """Return the stable part of a stack frame line, or None if it is not a frame."""
    line = line.strip()
    py = _PY_FRAME_RE.match(line)
    if py:
        return py.group("func")
    if not line.startswith("at "):
        return None
    rest = line[3:].strip()
    if rest.endswith(")") and "(" in rest:
        func = rest[:rest.index("(")].strip()
        if func:
            return func
        rest = rest[rest.index("(") + 1:-1]
    # No function name: keep the file name only
    return _basename(rest)


def top_frames(stack_trace: Optional[str], limit: int = MAX_FRAMES) -> List[str]:
    frames = []
    for line in (stack_trace or "").splitlines():
        frame = _parse_frame(line)
        if frame:
            frames.append(frame)
            if len(frames) >= limit:
                break
    return frames


def _scrub(text: str) -> str:
    text = text.lower()
    text = _TIMESTAMP_RE.sub("<TS>", text)
    text = _UUID_RE.sub("<UUID>", text)
    text = _HEX_RE.sub("<HEX>", text)
    text = _WINDOWS_PATH_RE.sub("<PATH>/", text)
    text = _UNIX_PATH_RE.sub("<PATH>/", text)
    text = _DIGITS_RE.sub("<N>", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize(error_message: Optional[str], stack_trace: Optional[str]) -> str:
    parts = [_first_line(error_message)] + top_frames(stack_trace)
    return _scrub(" | ".join(parts))


def hash_text(normalized_text: str) -> str:
    return hashlib.sha256(normalized_text.encode("utf-8")).hexdigest()


def signature_hash(error_message: Optional[str], stack_trace: Optional[str]) -> str:
    return hash_text(normalize(error_message, stack_trace))


def prepare_text(error_message: Optional[str], stack_trace: Optional[str]) -> str:
    """Lowercased, whitespace-collapsed error text the classifier rules run against.

    Numbers are kept so status codes and timeout values stay matchable.
    """
    combined = f"{error_message or ''} {stack_trace or ''}".lower()
    return _WHITESPACE_RE.sub(" ", combined).strip()
