"""Tests for boss catalog loading."""

from pathlib import Path

import pytest

from vaultdrops.common.catalog import find_boss, load_catalog, slugify
from vaultdrops.common.config import ConfigError


def test_slugify() -> None:
    assert slugify("The Oppressor") == "the-oppressor"
    assert slugify("  Asher's Rise!! ") == "asher-s-rise"
    assert slugify("Voraxis") == "voraxis"


def test_load_catalog(tmp_path: Path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text(
        "bosses:\n"
        "  - name: The Oppressor\n"
        "    drops: [Streamer, Blood Analyser]\n"
        "    tracker_id: oppressor\n"
        "  - name: Voraxis\n"
        "    slug: vorax\n"
        "    drops: [Buoy]\n"
    )
    bosses = load_catalog(path)
    assert [b.slug for b in bosses] == ["the-oppressor", "vorax"]
    assert bosses[0].columns == ["No drop", "Streamer", "Blood Analyser"]
    assert bosses[0].tracker_id == "oppressor"
    assert bosses[1].tracker_id is None


def test_find_boss(tmp_path: Path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text("bosses:\n  - name: Voraxis\n    drops: [Buoy]\n")
    bosses = load_catalog(path)
    assert find_boss(bosses, "voraxis").name == "Voraxis"
    assert find_boss(bosses, "nobody") is None


def test_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text("")
    assert load_catalog(path) == []


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_catalog(tmp_path / "nope.yaml")


def test_invalid_entry_raises(tmp_path: Path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text("bosses:\n  - name: Voraxis\n    drops: not-a-list\n")
    with pytest.raises(ConfigError):
        load_catalog(path)


def test_duplicate_slug_raises(tmp_path: Path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text(
        "bosses:\n  - name: Voraxis\n    drops: []\n  - name: voraxis\n    drops: []\n"
    )
    with pytest.raises(ConfigError, match="Duplicate"):
        load_catalog(path)


def test_bundled_catalog_loads() -> None:
    bosses = load_catalog(Path(__file__).parent.parent / "catalog.yaml")
    assert bosses
    assert all(b.tracker_id for b in bosses)
