"""
String Helpers.

File-name and path-segment sanitising for storage object keys.
"""

from __future__ import annotations

import re
import unicodedata

__all__ = [
    "sanitize_file_name",
    "slugify_owner",
]

# ---------------------------------------------------------------------------
# Pre-compiled regex patterns
# ---------------------------------------------------------------------------

# Anything outside this set is replaced with "_" in storage object names.
_RE_UNSAFE_FILE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

_RE_WHITESPACE = re.compile(r"\s+")


def _fold_accents(value: str) -> str:
    return unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")


def sanitize_file_name(name: str) -> str:
    """Return a storage-safe version of an uploaded file name.

    Accents are folded to ASCII and every character outside
    ``[a-zA-Z0-9._-]`` becomes an underscore::

        Foto Frontal (1).jpg  -> Foto_Frontal__1_.jpg
        arcada_superior.stl   -> arcada_superior.stl

    An empty result falls back to ``"arquivo.bin"``.
    """
    cleaned = _RE_UNSAFE_FILE_CHARS.sub("_", _fold_accents(name.strip()))
    return cleaned or "arquivo.bin"


def slugify_owner(name: str) -> str:
    """Owner path segment derived from a patient name when no id exists.

    ``"Ana Souza"`` becomes ``"ana_souza"``.
    """
    return _RE_WHITESPACE.sub("_", _fold_accents(name.strip())).lower()
