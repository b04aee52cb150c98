"""Version references — immutable release tags vs moving labels.

A pipeline is published and resolved under a *version reference*:

- **Tag**: a full semantic version, ``v<major>.<minor>.<patch>`` with
  optional pre-release/build suffixes (``v1.4.0``, ``v2.0.0-rc.1``).
  Once published, a tag can never be repointed.
- **Label**: a moving name such as ``main`` or a major alias such as
  ``v1`` / ``v1.4``. Publishing to a label repoints it.

Anything that starts like a tag (``v`` followed by a digit, or a bare
digit) but is not one of the above forms is rejected with
:class:`~cispine.core.errors.InvalidVersionTagError`.

Ordering between tags uses :class:`packaging.version.Version`, so
``v1.10.0`` sorts after ``v1.9.0`` and pre-releases sort before the
final release.

Example::

    ref = parse_version_ref("v1.2.3")
    ref.is_tag          # True
    str(ref.version)    # "1.2.3"
    parse_version_ref("main").is_label  # True
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from packaging.version import InvalidVersion, Version

from cispine.core.errors import InvalidVersionTagError

LATEST = "latest"

_TAG_RE = re.compile(
    r"^v(?P<release>(?:0|[1-9]\d*)\.(?:0|[1-9]\d*)\.(?:0|[1-9]\d*))"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)
_MAJOR_ALIAS_RE = re.compile(r"^v(?:0|[1-9]\d*)(?:\.(?:0|[1-9]\d*))?$")
_LABEL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._/-]*$")
_TAG_LIKE_RE = re.compile(r"^v?\d")


class RefKind(str, Enum):
    """Kind of version reference."""

    TAG = "tag"
    LABEL = "label"


@dataclass(frozen=True)
class VersionRef:
    """A parsed version reference."""

    raw: str
    kind: RefKind
    version: Version | None = None

    @property
    def is_tag(self) -> bool:
        return self.kind == RefKind.TAG

    @property
    def is_label(self) -> bool:
        return self.kind == RefKind.LABEL

    def __str__(self) -> str:
        return self.raw


def parse_version_ref(ref: str) -> VersionRef:
    """Classify *ref* as an immutable tag or a moving label.

    Raises:
        InvalidVersionTagError: If *ref* is empty, reserved, or tag-like
            but malformed.
    """
    if not isinstance(ref, str) or not ref.strip():
        raise InvalidVersionTagError(str(ref), "empty version reference")
    ref = ref.strip()

    if ref == LATEST:
        raise InvalidVersionTagError(ref, f"'{LATEST}' is reserved for resolution")

    match = _TAG_RE.match(ref)
    if match:
        return VersionRef(raw=ref, kind=RefKind.TAG, version=_to_version(ref))

    if _MAJOR_ALIAS_RE.match(ref):
        return VersionRef(raw=ref, kind=RefKind.LABEL)

    if _TAG_LIKE_RE.match(ref):
        if ref[0].isdigit():
            raise InvalidVersionTagError(ref, "release tags must start with 'v'")
        raise InvalidVersionTagError(ref, "expected v<major>.<minor>.<patch>")

    if not _LABEL_RE.match(ref):
        raise InvalidVersionTagError(ref, "labels may only contain letters, digits, '.', '_', '-', '/'")

    return VersionRef(raw=ref, kind=RefKind.LABEL)


def parse_release_tag(tag: str) -> Version:
    """Parse a ``vX.Y.Z`` release tag into a comparable version.

    Raises:
        InvalidVersionTagError: If *tag* is not a full semver tag.
    """
    parsed = parse_version_ref(tag)
    if not parsed.is_tag:
        raise InvalidVersionTagError(tag, "expected v<major>.<minor>.<patch>")
    if parsed.version is None:
        raise InvalidVersionTagError(tag, "expected v<major>.<minor>.<patch>")
    return parsed.version


def strip_tag_prefix(tag: str) -> str:
    """``"v1.2.3"`` -> ``"1.2.3"`` after validating the tag."""
    parse_release_tag(tag)
    return tag[1:]


def highest_tag(refs: list[str]) -> str | None:
    """Return the highest semver tag in *refs*, ignoring labels."""
    tags = []
    for ref in refs:
        parsed = parse_version_ref(ref)
        if parsed.is_tag:
            tags.append(parsed)
    if not tags:
        return None
    return max(tags, key=lambda r: r.version).raw


def _to_version(tag: str) -> Version:
    try:
        return Version(tag[1:])
    except InvalidVersion as e:
        raise InvalidVersionTagError(tag, "pre-release suffix is not orderable") from e
