"""Shared fixtures: a throwaway copy of the sample Android project."""
import shutil
from pathlib import Path

import pytest

from aster.analyzer.discovery import ProjectLayout, discover_inputs
from aster.analyzer.indexer import build_index
from aster.config import reset_config

FIXTURES_DIR = Path(__file__).parent / 'fixtures'
SAMPLE_APP = FIXTURES_DIR / 'android_app'

STRINGS_XML = 'app/src/main/res/values/strings.xml'
COLORS_XML = 'app/src/main/res/values/colors.xml'
MAIN_ACTIVITY = 'app/src/main/java/com/example/MainActivity.java'
UNUSED_LAYOUT = 'app/src/main/res/layout/unused_screen.xml'


@pytest.fixture
def android_project(tmp_path) -> Path:
    """Copy of tests/fixtures/android_app that tests may modify."""
    project = tmp_path / 'project'
    shutil.copytree(SAMPLE_APP, project)
    return project


@pytest.fixture
def build(android_project):
    """Build a fresh index of the project copy."""
    def _build(previous=None, language='all'):
        layout = ProjectLayout.resolve(android_project)
        inputs = discover_inputs(layout, language)
        return build_index(layout.scan_root, inputs, language=language, workers=4, previous=previous)
    return _build


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Each test starts from default configuration."""
    for name in ('ASTER_CACHE_DIR', 'ASTER_IGNORE', 'ASTER_STALE_POLICY',
                 'ASTER_WORKERS', 'ASTER_TRASH_DIR', 'ASTER_PROTECTED_TYPES'):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()
