"""Content hashing for the ISG cache.

Hashes are SHA-256 hex digests prefixed with ``sha256-`` so the manifest
stays readable when diffed.

Key functions:
- compute_content_hash: Hash of a page's raw content and front matter.
- compute_file_hash: Hash of a dependency file, or None when it is missing.
- compute_inputs_hash: Combined hash over everything a page's output depends on.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

HASH_PREFIX = "sha256-"

# Stands in for a dependency whose file no longer exists.
MISSING_DEPENDENCY = "missing"


def _sha256(parts: Iterable[str | bytes]) -> str:
    digest = hashlib.sha256()
    for part in parts:
        data = part.encode("utf-8") if isinstance(part, str) else part
        digest.update(data)
        digest.update(b"\0")
    return f"{HASH_PREFIX}{digest.hexdigest()}"


def compute_content_hash(content: str, front_matter: dict[str, Any]) -> str:
    """Compute a stable hash of page content plus its front matter.

    Front matter is serialized with sorted keys so mapping order never
    changes the hash. Values JSON cannot represent (dates from YAML, for
    example) are stringified.

    Args:
        content: Raw page source (without the front matter block).
        front_matter: Parsed front matter mapping.

    Returns:
        Hash string like ``sha256-3f2a...``.
    """
    serialized = json.dumps(
        front_matter or {}, sort_keys=True, default=str, ensure_ascii=False
    )
    return _sha256([content, serialized])


def compute_file_hash(path: str | Path) -> str | None:
    """Hash the bytes of a dependency file.

    Args:
        path: Absolute path to a template or partial.

    Returns:
        Hash string, or None if the file does not exist.

    Raises:
        OSError: For read failures other than a missing file.
    """
    try:
        data = Path(path).read_bytes()
    except FileNotFoundError:
        return None
    return _sha256([data])


def compute_inputs_hash(
    content_hash: str, dependency_hashes: Iterable[str | None]
) -> str:
    """Combine a content hash with ordered dependency hashes.

    Args:
        content_hash: Result of :func:`compute_content_hash`.
        dependency_hashes: Per-dependency hashes in dependency order; ``None``
            marks a missing file.

    Returns:
        Hash representing every input of the page.
    """
    normalized = [h if h is not None else MISSING_DEPENDENCY for h in dependency_hashes]
    return _sha256([content_hash, *normalized])
