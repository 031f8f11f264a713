"""Persisted index: round trip, versioning, corruption and staleness."""
import sqlite3

import pytest

from aster.analyzer.cache import SCHEMA_VERSION, IndexStore, changed_files
from aster.errors import IndexCorruptError, IndexVersionError

from conftest import STRINGS_XML


@pytest.fixture
def store(android_project):
    return IndexStore(android_project)


class TestRoundTrip:

    def test_load_returns_the_saved_index(self, build, store):
        index = build()
        store.save(index)
        loaded = store.load()

        assert loaded.equivalent(index)
        assert list(loaded.occurrences()) == list(index.occurrences())
        assert loaded.files == index.files
        assert loaded.fingerprint == index.fingerprint
        assert loaded.built_at == index.built_at
        assert loaded.language == index.language
        assert not loaded.stale

    def test_diagnostics_survive(self, android_project, build, store):
        (android_project / 'app/src/main/res/values/broken.xml').write_text('<resources>')
        index = build()
        store.save(index)
        assert store.load().diagnostics == index.diagnostics

    def test_default_location(self, android_project, store):
        assert store.index_file == android_project.resolve() / '.aster_cache' / 'index.db'

    def test_custom_cache_dir(self, android_project, build, tmp_path):
        custom = IndexStore(android_project, cache_dir=tmp_path / 'elsewhere')
        custom.save(build())
        assert (tmp_path / 'elsewhere' / 'index.db').exists()

    def test_no_temp_files_left_behind(self, build, store):
        store.save(build())
        store.save(build())
        assert [p.name for p in store.cache_dir.iterdir()] == ['index.db']


class TestLoadFailures:

    def test_missing_index(self, store):
        with pytest.raises(FileNotFoundError):
            store.load()

    def test_other_schema_version(self, build, store):
        store.save(build())
        conn = sqlite3.connect(str(store.index_file))
        conn.execute(f'PRAGMA user_version = {SCHEMA_VERSION + 1}')
        conn.commit()
        conn.close()

        with pytest.raises(IndexVersionError) as excinfo:
            store.load()
        assert not isinstance(excinfo.value, IndexCorruptError)

    def test_missing_complete_marker(self, build, store):
        store.save(build())
        conn = sqlite3.connect(str(store.index_file))
        conn.execute("DELETE FROM meta WHERE key = 'complete'")
        conn.commit()
        conn.close()

        with pytest.raises(IndexCorruptError):
            store.load()

    def test_garbage_file(self, store):
        store.cache_dir.mkdir(parents=True)
        store.index_file.write_bytes(b'this is not a database' * 100)
        with pytest.raises(IndexCorruptError):
            store.load()

    def test_truncated_file(self, build, store):
        store.save(build())
        data = store.index_file.read_bytes()
        store.index_file.write_bytes(data[:len(data) // 3])
        with pytest.raises(IndexVersionError):
            store.load()


class TestStaleness:

    def test_fresh_index_is_not_stale(self, build, store):
        index = build()
        assert not store.is_stale(index)

    def test_modified_file(self, android_project, build, store):
        index = build()
        strings = android_project / STRINGS_XML
        strings.write_text(strings.read_text() + '\n')

        assert store.is_stale(index)
        assert changed_files(index) == [STRINGS_XML]

    def test_added_file(self, android_project, build, store):
        index = build()
        paths = list(index.files) + ['app/src/main/res/values/extra.xml']
        (android_project / 'app/src/main/res/values/extra.xml').write_text('<resources/>')

        assert store.is_stale(index, paths)
        assert changed_files(index) == []

    def test_mark_stale(self, build, store):
        store.save(build())
        store.mark_stale()
        assert store.load().stale
        assert store.is_stale(store.load())


class TestMaintenance:

    def test_stats(self, build, store):
        index = build()
        store.save(index)
        stats = store.stats()

        assert stats['schema_version'] == SCHEMA_VERSION
        assert stats['files'] == len(index.files)
        assert stats['identifiers'] == len(index.entries)
        assert stats['definitions'] + stats['usages'] == len(list(index.occurrences()))

    def test_clear(self, build, store):
        store.save(build())
        assert store.clear()
        assert not store.exists()
        assert not store.clear()
