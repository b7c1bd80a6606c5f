"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from infra.config import clear_settings_cache


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Settings are cached per process; start every test from the current env.

    Tests run from an empty directory so a developer's local ``.env`` is never read.
    """
    monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))
    clear_settings_cache()
    yield
    clear_settings_cache()
