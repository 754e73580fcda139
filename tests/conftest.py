from __future__ import annotations

from pathlib import Path

import pytest

from safebin.core.config import Settings
from safebin.services import TrashService


@pytest.fixture()
def trash_dir(tmp_path: Path) -> Path:
    return tmp_path / "trash"


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture()
def settings(trash_dir: Path) -> Settings:
    return Settings(_env_file=None, trash_root=trash_dir, api_token="test-token")


@pytest.fixture()
def service(settings: Settings) -> TrashService:
    return TrashService.from_settings(settings)


@pytest.fixture()
def make_file(workspace: Path):
    def _make(relative: str, content: str = "hello") -> Path:
        path = workspace / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _make


@pytest.fixture()
def auth_headers(settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.api_token}"}
