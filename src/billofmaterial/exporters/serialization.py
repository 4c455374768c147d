"""JSON-safe conversion shared by the exporters."""

import base64
import binascii
import json
import logging
import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel

from billofmaterial.models.schemas import UNASSERTED_LICENSES, DistHashes

logger = logging.getLogger(__name__)

# Subresource Integrity prefixes to SPDX/CycloneDX algorithm names
SRI_ALGORITHMS = {
    "sha1": "SHA1",
    "sha256": "SHA256",
    "sha384": "SHA384",
    "sha512": "SHA512",
}

# SPDX identifiers common on npm; anything else is emitted by name
COMMON_LICENSE_IDS = frozenset({
    "0BSD",
    "AGPL-3.0",
    "Apache-2.0",
    "Artistic-2.0",
    "BlueOak-1.0.0",
    "BSD-2-Clause",
    "BSD-3-Clause",
    "CC-BY-4.0",
    "CC-BY-NC-4.0",
    "CC-BY-SA-4.0",
    "CC0-1.0",
    "EPL-2.0",
    "GPL-2.0",
    "GPL-3.0",
    "ISC",
    "LGPL-2.1",
    "LGPL-3.0",
    "MIT",
    "MPL-2.0",
    "Python-2.0",
    "Unlicense",
    "WTFPL",
    "Zlib",
})

LICENSE_EXPRESSION = re.compile(
    r"^\(?[A-Za-z0-9.+-]+(?:\s+(?:AND|OR|WITH)\s+\(?[A-Za-z0-9.+-]+\)?)*\)?$"
)


def to_jsonable(value: Any) -> Any:
    """Convert a value into plain JSON types.

    Never raises: non-finite floats become ``None`` and values with no JSON
    form are replaced by their string representation.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, datetime):
        return iso_timestamp(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((to_jsonable(v) for v in value), key=str)
    logger.debug(f"Substituting string form for unserialisable {type(value).__name__}")
    return str(value)


def dumps(value: Any, indent: int | None = 2) -> str:
    """Serialize to JSON text after ``to_jsonable``."""
    return json.dumps(to_jsonable(value), indent=indent, ensure_ascii=False, allow_nan=False)


def iso_timestamp(moment: datetime) -> str:
    """UTC timestamp with second precision, e.g. ``2024-05-01T12:00:00Z``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def decode_integrity(integrity: str | None) -> list[tuple[str, str]]:
    """Decode an SRI string into ``(algorithm, hex digest)`` pairs.

    Tokens with an unknown algorithm or invalid base64 are skipped.
    """
    if not integrity:
        return []
    pairs = []
    for token in integrity.split():
        prefix, _, digest = token.partition("-")
        algorithm = SRI_ALGORITHMS.get(prefix.lower())
        if not algorithm or not digest:
            continue
        digest = digest.split("?", 1)[0]
        try:
            pairs.append((algorithm, base64.b64decode(digest, validate=True).hex()))
        except (binascii.Error, ValueError):
            logger.debug(f"Skipping malformed integrity token {token!r}")
    return pairs


def checksums(hashes: DistHashes) -> list[tuple[str, str]]:
    """Every digest known for a tarball, SRI first, then the legacy shasum.

    Nothing is emitted without an integrity string.
    """
    if not hashes.integrity:
        return []
    pairs = decode_integrity(hashes.integrity)
    shasum = (hashes.shasum or "").lower()
    if len(shasum) == 40 and all(c in "0123456789abcdef" for c in shasum):
        if ("SHA1", shasum) not in pairs:
            pairs.append(("SHA1", shasum))
    return pairs


def license_kind(license_id: str | None) -> tuple[str | None, str | None]:
    """Classify a license value as ``id``, ``expression`` or ``name``.

    Returns ``(None, None)`` for values that assert nothing.
    """
    if not license_id or license_id.strip() in UNASSERTED_LICENSES:
        return None, None
    value = license_id.strip()
    if value in COMMON_LICENSE_IDS:
        return "id", value
    if LICENSE_EXPRESSION.match(value) and " " in value:
        return "expression", value
    return "name", value


def spdx_license(license_id: str | None) -> str:
    """License value for an SPDX field, ``NOASSERTION`` when not expressible."""
    kind, value = license_kind(license_id)
    if kind is None or not LICENSE_EXPRESSION.match(value):
        return "NOASSERTION"
    return value
