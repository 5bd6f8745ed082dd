"""Resolve ``[[wikilink]]`` references to files in the tracked tree."""

from __future__ import annotations

from pathlib import Path

from ctxvault.core.errors import WikilinkAmbiguous, WikilinkNotFound
from ctxvault.core.vault import Vault
from ctxvault.services.tree import iter_tracked_files
from ctxvault.utils.logger import get_logger

logger = get_logger("ctxvault.wikilink")


def strip_brackets(link: str) -> str:
    name = link.strip()
    if name.startswith("[["):
        name = name[2:]
    if name.endswith("]]"):
        name = name[:-2]
    return name.strip()


def is_wikilink(value: str) -> bool:
    return value.strip().startswith("[[")


def resolve_wikilink(vault: Vault, link: str) -> Path:
    """Resolve ``link`` to a single file path.

    A name containing ``/`` is first tried as ``<tracked_root>/<name>.md`` and
    then as ``<tracked_root>/<name>``. Otherwise, or when neither exists, every
    tracked file whose stem equals the name is a candidate.

    Raises:
        WikilinkNotFound: No candidate matched.
        WikilinkAmbiguous: More than one file matched; all are listed.
    """
    name = strip_brackets(link)
    tracked_root = vault.tracked_root

    if "/" in name:
        for candidate in (tracked_root / f"{name}.md", tracked_root / name):
            if candidate.is_file() and candidate.resolve().is_relative_to(tracked_root.resolve()):
                return candidate

    matches = [
        tracked.path
        for tracked in iter_tracked_files(vault)
        if tracked.path.stem == name
    ]
    if not matches:
        raise WikilinkNotFound(name)
    if len(matches) > 1:
        logger.debug("Ambiguous wikilink", name=name, candidates=len(matches))
        raise WikilinkAmbiguous(name, matches)
    return matches[0]
