"""Tests for change classification and token estimation."""

import os
import shutil

import pytest

from ctxvault.services.context import (
    ContextEngine,
    compress_markdown,
    domains_in,
    estimate_tokens,
)


@pytest.mark.parametrize(
    "text,expected",
    [("", 0), ("abc", 0), ("abcd", 1), ("x" * 401, 100), ("é" * 8, 2)],
)
def test_estimate_tokens_is_chars_floor_div_four(text, expected):
    assert estimate_tokens(text) == expected


def test_summary_without_previous_marks_everything_added(temp_vault, write_file):
    write_file("domains/x/a.md", "a" * 400)
    write_file("domains/y/b.md", "b" * 3)
    write_file("domains/top.md", "no domain")
    write_file("outside.md", "not tracked")

    summary = ContextEngine(temp_vault).calculate_context_summary(None)

    assert summary.files_added == ["domains/top.md", "domains/x/a.md", "domains/y/b.md"]
    assert summary.files_modified == []
    assert summary.files_removed == []


def test_summary_tokens_and_domains(temp_vault, write_file):
    write_file("domains/x/a.md", "a" * 400)
    write_file("domains/top.md", "")

    summary = ContextEngine(temp_vault).calculate_context_summary(None)

    # 400 + 1 separator, plus 0 + 1 separator
    assert summary.token_estimate == 402 // 4
    assert summary.domains_loaded == ["x"]
    assert summary.files_added == ["domains/top.md", "domains/x/a.md"]


def test_binary_files_count_for_domains_not_tokens(temp_vault, write_file):
    write_file("domains/img/logo.png", b"\xff\xd8\xff\xe0" * 100)

    summary = ContextEngine(temp_vault).calculate_context_summary(None)

    assert summary.token_estimate == 0
    assert summary.domains_loaded == ["img"]
    assert summary.files_added == ["domains/img/logo.png"]


def test_classification_against_previous_commit(service, write_file):
    write_file("domains/x/keep.md", "same")
    write_file("domains/x/edit.md", "before")
    write_file("domains/x/gone.md", "bye")
    previous = service.commit("base")

    write_file("domains/x/edit.md", "after")
    (service.vault.root / "domains/x/gone.md").unlink()
    write_file("domains/y/new.md", "hello")

    summary = ContextEngine(service.vault).calculate_context_summary(previous)

    assert summary.files_added == ["domains/y/new.md"]
    assert summary.files_modified == ["domains/x/edit.md"]
    assert summary.files_removed == ["domains/x/gone.md"]
    assert summary.domains_loaded == ["x", "y"]


def test_missing_manifest_is_treated_as_empty(service, write_file):
    write_file("domains/x/a.md", "alpha")
    previous = service.commit("base")
    shutil.rmtree(service.vault.objects_dir / previous.hash)

    summary = ContextEngine(service.vault).calculate_context_summary(previous)

    assert summary.files_added == ["domains/x/a.md"]
    assert summary.files_removed == []


def test_modified_files_and_uncommitted_changes(service, write_file):
    engine = ContextEngine(service.vault)
    assert engine.get_modified_files() == []
    assert not engine.has_uncommitted_changes()

    write_file("domains/x/a.md", "alpha")
    assert engine.get_modified_files() == ["domains/x/a.md"]
    assert engine.has_uncommitted_changes()

    service.commit("add a")
    write_file("domains/x/a.md", "alpha v2")
    assert engine.get_modified_files() == ["domains/x/a.md"]


def test_memoized_scan_sees_rewritten_files(service, write_file):
    engine = ContextEngine(service.vault)
    write_file("domains/x/a.md", "one")
    first = engine.calculate_context_summary(None)
    write_file("domains/x/a.md", "three" * 4)
    second = engine.calculate_context_summary(None)

    assert first.token_estimate == 1
    assert second.token_estimate == 5
    assert engine.scan()[0].text == "three" * 4
    engine.clear_cache()
    assert engine.calculate_context_summary(None) == second


def test_load_context_headers_and_compression(temp_vault, write_file):
    write_file("domains/x/a.md", "line  \n\n\n\nend")
    engine = ContextEngine(temp_vault)

    content = engine.load_context()
    assert content == "\n# File: domains/x/a.md\n\nline  \n\n\n\nend\n\n"
    # One pass: a run of four newlines only shrinks by one
    assert engine.load_context(compress=True) == "\n# File: domains/x/a.md\n\nline\n\n\nend\n\n"
    assert compress_markdown("a  \nb\t\n\n\nc") == "a\nb\n\nc"


def test_get_all_files(temp_vault, write_file):
    write_file("domains/b/2.md", "2")
    write_file("domains/a/1.md", "1")
    assert ContextEngine(temp_vault).get_all_files() == ["domains/a/1.md", "domains/b/2.md"]


def test_compare_commits(service, write_file):
    write_file("domains/x/a.md", "a" * 40)
    write_file("domains/x/b.md", "b")
    first = service.commit("first")
    write_file("domains/x/a.md", "a" * 80)
    (service.vault.root / "domains/x/b.md").unlink()
    write_file("domains/y/c.md", "c")
    second = service.commit("second")

    diff = ContextEngine(service.vault).compare_commits(first, second)

    assert diff.files_added == ["domains/y/c.md"]
    assert diff.files_modified == ["domains/x/a.md"]
    assert diff.files_removed == ["domains/x/b.md"]
    assert diff.domains_added == ["y"]
    assert diff.domains_removed == []
    assert diff.token_delta == (
        second.context_summary.token_estimate - first.context_summary.token_estimate
    )


def test_domains_in_ignores_paths_outside_tracked_root():
    paths = ["domains/x/a.md", "domains/top.md", "other/y/b.md", "domains/z/c.md", "domains/x/d"]
    assert domains_in(paths, "domains") == ["x", "z"]


def test_summary_against_previous_is_idempotent(service, write_file):
    write_file("domains/x/keep.md", "same")
    write_file("domains/x/edit.md", "before")
    write_file("domains/x/gone.md", "bye")
    previous = service.commit("base")
    write_file("domains/x/edit.md", "after!")
    (service.vault.root / "domains/x/gone.md").unlink()
    write_file("domains/y/new.md", "hello")

    engine = ContextEngine(service.vault)
    first = engine.calculate_context_summary(previous)
    second = engine.calculate_context_summary(previous)
    fresh = ContextEngine(service.vault).calculate_context_summary(previous)

    assert first == second == fresh
    assert first.files_modified == ["domains/x/edit.md"]


def test_memoized_scan_sees_same_size_rewrite_with_preserved_mtime(temp_vault, write_file):
    path = write_file("domains/x/a.md", "aaaa")
    engine = ContextEngine(temp_vault)
    assert engine.scan()[0].text == "aaaa"
    stat = path.stat()

    path.write_text("bbbb", encoding="utf-8")
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns))

    assert engine.scan()[0].text == "bbbb"
