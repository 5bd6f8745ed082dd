"""Tests for the ctxvault command line."""

import json

import pytest

from ctxvault.cli import build_parser, main


@pytest.fixture
def vault_root(tmp_path, capsys):
    root = tmp_path / "notes"
    assert main(["--vault", str(root), "init", "--name", "notes"]) == 0
    capsys.readouterr()
    return root


def run(root, *args):
    return main(["--vault", str(root), *args])


def test_init_reports_vault(tmp_path, capsys):
    root = tmp_path / "fresh"

    assert main(["--vault", str(root), "init"]) == 0

    out = capsys.readouterr().out
    assert "Initialized ctxvault vault 'fresh'" in out
    assert (root / ".ctxvault" / "HEAD").exists()


def test_init_twice_exits_nonzero(vault_root, capsys):
    assert run(vault_root, "init") == 1
    assert "already initialized" in capsys.readouterr().err


def test_commit_and_log(vault_root, capsys):
    (vault_root / "domains" / "x").mkdir(parents=True)
    (vault_root / "domains" / "x" / "a.md").write_text("a" * 400)

    assert run(vault_root, "commit", "add a", "--author", "human") == 0
    assert "1 added, 0 modified, 0 removed, ~100 tokens" in capsys.readouterr().out

    assert run(vault_root, "commit", "again") == 0
    assert "No changes to commit" in capsys.readouterr().out

    assert run(vault_root, "log", "--json") == 0
    entries = json.loads(capsys.readouterr().out)
    assert [e["message"] for e in entries] == ["add a", "Initial commit"]
    assert entries[0]["author"] == {"type": "human", "name": "tester"}

    assert run(vault_root, "log", "--oneline", "-n", "1") == 0
    assert capsys.readouterr().out.strip().endswith("add a")


def test_status_and_summary(vault_root, capsys):
    assert run(vault_root, "status") == 0
    out = capsys.readouterr().out
    assert "On branch main" in out
    assert "Initial commit" in out

    assert run(vault_root, "summary", "--json") == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["has_global"] is True
    assert summary["branches"][0]["name"] == "main"


def test_branch_checkout_flow(vault_root, capsys):
    assert run(vault_root, "branch", "create", "feat", "-d", "try things") == 0
    assert run(vault_root, "checkout", "feat") == 0
    assert "Switched to branch 'feat'" in capsys.readouterr().out

    assert run(vault_root, "branch") == 0
    listing = capsys.readouterr().out
    assert "* feat" in listing
    assert "try things" in listing

    assert run(vault_root, "branch", "delete", "feat") == 1
    assert "Cannot delete current branch" in capsys.readouterr().err


def test_errors_go_to_stderr_with_exit_code(vault_root, capsys):
    assert run(vault_root, "checkout", "nowhere") == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Error: Commit 'nowhere' not found" in captured.err

    assert run(vault_root, "diff", "--json") == 0
    diff = json.loads(capsys.readouterr().out)
    assert diff["files_added"] == []


def test_outside_vault(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["status"]) == 1
    assert "No ctxvault vault found" in capsys.readouterr().err


def test_dotenv_in_vault_root_sets_author(vault_root, capsys):
    (vault_root / ".env").write_text("CTXVAULT_AUTHOR=human\n")
    (vault_root / "domains" / "x").mkdir(parents=True)
    (vault_root / "domains" / "x" / "a.md").write_text("a")

    assert run(vault_root, "commit", "from env") == 0
    capsys.readouterr()
    assert run(vault_root, "log", "--json", "-n", "1") == 0
    assert json.loads(capsys.readouterr().out)[0]["author"]["type"] == "human"


def test_load_and_resolve(vault_root, capsys):
    (vault_root / "domains" / "x").mkdir(parents=True)
    (vault_root / "domains" / "x" / "spec.md").write_text("s" * 20)

    assert run(vault_root, "load", "[[spec]]", "--pin") == 0
    assert "Loaded: domains/x/spec.md (+5 tokens)" in capsys.readouterr().out

    assert run(vault_root, "resolve", "[[spec]]") == 0
    assert capsys.readouterr().out.strip() == "domains/x/spec.md"

    assert run(vault_root, "unload") == 1


def test_context_json(vault_root, capsys):
    (vault_root / "domains" / "x").mkdir(parents=True)
    (vault_root / "domains" / "x" / "a.md").write_text("hello")

    assert run(vault_root, "context", "--json") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["files"] == ["domains/x/a.md"]


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_bad_env_override_is_reported_not_raised(vault_root, monkeypatch, capsys):
    monkeypatch.setenv("CTXVAULT_MAX_TOKENS", "abc")

    assert run(vault_root, "status") == 1
    assert "Error: invalid configuration: Expected integer in CTXVAULT_MAX_TOKENS" in (
        capsys.readouterr().err
    )
