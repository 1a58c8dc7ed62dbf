"""
Tests for tree grant configuration.

Tests cover:
- TreeGrant validation
- Loading tree_grants.yaml (missing, malformed, partial)
"""

import pytest

from picfinder.core.images.config import GRANTS_FILENAME, TreeGrant, load_tree_grants


class TestTreeGrant:
    """Tests for TreeGrant dataclass."""

    def test_valid_grant(self, tmp_path):
        grant = TreeGrant(id="camera", path=str(tmp_path), name="Phone camera")
        assert grant.root == tmp_path
        assert grant.display_name == "Phone camera"

    def test_display_name_defaults_to_id(self, tmp_path):
        assert TreeGrant(id="scans", path=str(tmp_path)).display_name == "scans"

    def test_invalid_id_rejected(self, tmp_path):
        """Ids end up in URIs and must be simple tokens."""
        with pytest.raises(ValueError, match="Invalid tree id"):
            TreeGrant(id="my camera/../x", path=str(tmp_path))

    def test_missing_path_rejected(self):
        with pytest.raises(ValueError, match="path is required"):
            TreeGrant(id="camera", path="")

    def test_home_expanded(self):
        grant = TreeGrant(id="pics", path="~/Pictures")
        assert "~" not in str(grant.root)


class TestLoadTreeGrants:
    """Tests for load_tree_grants."""

    def test_missing_file_means_no_grants(self, tmp_path):
        assert load_tree_grants(tmp_path) == {}

    def test_load_grants(self, tmp_path):
        (tmp_path / GRANTS_FILENAME).write_text(
            "grants:\n"
            "  - id: camera\n"
            f"    path: {tmp_path / 'dcim'}\n"
            "    name: Phone camera\n"
            "  - id: scans\n"
            f"    path: {tmp_path / 'scans'}\n"
        )

        grants = load_tree_grants(tmp_path)

        assert set(grants) == {"camera", "scans"}
        assert grants["camera"].display_name == "Phone camera"
        assert grants["scans"].root == tmp_path / "scans"

    def test_invalid_entries_skipped(self, tmp_path):
        """One bad entry should not disable the others."""
        (tmp_path / GRANTS_FILENAME).write_text(
            "grants:\n"
            "  - id: 'bad id'\n"
            "    path: /somewhere\n"
            "  - id: nopath\n"
            "  - id: good\n"
            "    path: /data/good\n"
            "    unknown_key: 1\n"
            "  - id: fine\n"
            "    path: /data/fine\n"
        )

        grants = load_tree_grants(tmp_path)

        assert set(grants) == {"fine"}

    def test_duplicate_ids_keep_first(self, tmp_path):
        (tmp_path / GRANTS_FILENAME).write_text(
            "grants:\n"
            "  - id: camera\n"
            "    path: /first\n"
            "  - id: camera\n"
            "    path: /second\n"
        )
        grants = load_tree_grants(tmp_path)
        assert str(grants["camera"].root) == "/first"

    def test_malformed_yaml(self, tmp_path):
        (tmp_path / GRANTS_FILENAME).write_text("grants: [unclosed\n")
        assert load_tree_grants(tmp_path) == {}

    def test_missing_grants_key(self, tmp_path):
        (tmp_path / GRANTS_FILENAME).write_text("something_else: true\n")
        assert load_tree_grants(tmp_path) == {}

    @pytest.mark.parametrize("content", [
        "just mention grants here\n",
        "- grants\n- more\n",
    ])
    def test_non_mapping_top_level(self, tmp_path, content):
        """A scalar or list document holding the word 'grants' is not a grants file."""
        (tmp_path / GRANTS_FILENAME).write_text(content)
        assert load_tree_grants(tmp_path) == {}
