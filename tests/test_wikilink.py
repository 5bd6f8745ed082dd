"""Tests for wikilink resolution."""

import pytest

from ctxvault.core.errors import WikilinkAmbiguous, WikilinkNotFound
from ctxvault.services.wikilink import resolve_wikilink, strip_brackets


def test_strip_brackets():
    assert strip_brackets("[[spec]]") == "spec"
    assert strip_brackets("spec") == "spec"
    assert strip_brackets(" [[auth/patterns]] ") == "auth/patterns"


def test_unique_name_resolves(temp_vault, write_file):
    target = write_file("domains/x/a.md", "A")

    assert resolve_wikilink(temp_vault, "[[a]]") == target


def test_ambiguous_name_lists_all_candidates(temp_vault, write_file):
    first = write_file("domains/x/a.md", "A")
    second = write_file("domains/y/a.md", "A too")

    with pytest.raises(WikilinkAmbiguous) as exc_info:
        resolve_wikilink(temp_vault, "[[a]]")

    assert set(exc_info.value.candidates) == {first, second}


def test_path_link_prefers_markdown_file(temp_vault, write_file):
    target = write_file("domains/auth/patterns.md", "patterns")
    write_file("domains/other/patterns.md", "same stem elsewhere")

    assert resolve_wikilink(temp_vault, "[[auth/patterns]]") == target


def test_path_link_with_extension(temp_vault, write_file):
    target = write_file("domains/auth/notes.txt", "notes")

    assert resolve_wikilink(temp_vault, "[[auth/notes.txt]]") == target


def test_stem_matches_any_extension(temp_vault, write_file):
    target = write_file("domains/x/diagram.svg", "<svg/>")

    assert resolve_wikilink(temp_vault, "[[diagram]]") == target


def test_missing_link(temp_vault):
    with pytest.raises(WikilinkNotFound):
        resolve_wikilink(temp_vault, "[[nothing]]")


def test_path_link_cannot_escape_tracked_root(temp_vault, write_file):
    write_file("secret.md", "outside")

    with pytest.raises(WikilinkNotFound):
        resolve_wikilink(temp_vault, "[[../secret]]")
