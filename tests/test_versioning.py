"""
Tests for cispine.versioning — tag/label classification and ordering.
"""

import pytest
from packaging.version import Version

from cispine.core.errors import InvalidVersionTagError
from cispine.versioning import (
    RefKind,
    highest_tag,
    parse_release_tag,
    parse_version_ref,
    strip_tag_prefix,
)


class TestParseVersionRef:
    @pytest.mark.parametrize("ref", ["v1.0.0", "v0.3.12", "v2.0.0-rc.1", "v1.2.3+build.7"])
    def test_tags(self, ref):
        parsed = parse_version_ref(ref)
        assert parsed.kind == RefKind.TAG
        assert parsed.is_tag
        assert parsed.version is not None

    @pytest.mark.parametrize("ref", ["main", "v1", "v1.2", "release/2024", "stable"])
    def test_labels(self, ref):
        parsed = parse_version_ref(ref)
        assert parsed.is_label
        assert parsed.version is None

    @pytest.mark.parametrize("ref", ["1.2.3", "v1.2.3.4", "v01.2.3", "", "   ", "latest", "main branch"])
    def test_invalid(self, ref):
        with pytest.raises(InvalidVersionTagError):
            parse_version_ref(ref)

    def test_missing_v_prefix_message(self):
        with pytest.raises(InvalidVersionTagError, match="start with 'v'"):
            parse_version_ref("1.2.3")

    def test_str_is_raw(self):
        assert str(parse_version_ref("v1.0.0")) == "v1.0.0"


class TestReleaseTags:
    def test_parse_release_tag(self):
        assert parse_release_tag("v1.4.0") == Version("1.4.0")

    def test_label_is_not_release_tag(self):
        with pytest.raises(InvalidVersionTagError):
            parse_release_tag("v1")

    @pytest.mark.parametrize("ref", ["main", "release/2024", "v1.4"])
    def test_non_tag_refs_rejected(self, ref):
        with pytest.raises(InvalidVersionTagError, match="expected v<major>"):
            parse_release_tag(ref)

    def test_strip_tag_prefix(self):
        assert strip_tag_prefix("v1.4.0") == "1.4.0"

    def test_highest_tag_uses_semver_order(self):
        assert highest_tag(["v1.9.0", "v1.10.0", "main", "v1.2.0"]) == "v1.10.0"

    def test_prerelease_sorts_below_release(self):
        assert highest_tag(["v2.0.0-rc.1", "v2.0.0"]) == "v2.0.0"

    def test_highest_tag_without_tags(self):
        assert highest_tag(["main", "v1"]) is None
