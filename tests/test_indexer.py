"""Index building over the sample project: discovery, merge, incremental reuse."""
import os

import pytest

from aster.analyzer.discovery import ProjectLayout, discover_inputs
from aster.analyzer.indexer import Indexer, ScanInput
from aster.analyzer.models import EntryState, ResourceIdentifier

from conftest import MAIN_ACTIVITY, STRINGS_XML


def rid(text):
    return ResourceIdentifier.parse(text)


class TestDiscovery:

    def test_finds_resources_sources_and_manifest(self, android_project):
        inputs = discover_inputs(ProjectLayout.resolve(android_project))
        by_path = {i.path: (i.kind, i.tag) for i in inputs}

        assert by_path[STRINGS_XML] == ('resource', 'xml')
        assert by_path['app/src/main/res/layout/activity_main.xml'] == ('resource-file', 'resource-file')
        assert by_path[MAIN_ACTIVITY] == ('source', 'java')
        assert by_path['app/src/main/java/com/example/Titles.kt'] == ('source', 'kotlin')
        assert by_path['app/src/main/AndroidManifest.xml'] == ('manifest', 'xml')
        assert len(inputs) == 8
        assert [i.path for i in inputs] == sorted(i.path for i in inputs)

    def test_language_filter(self, android_project):
        inputs = discover_inputs(ProjectLayout.resolve(android_project), language='java')
        assert not any(i.path.endswith('.kt') for i in inputs)
        assert any(i.path.endswith('.java') for i in inputs)

    def test_build_directories_are_skipped(self, android_project):
        generated = android_project / 'app' / 'build' / 'res' / 'values'
        generated.mkdir(parents=True)
        (generated / 'generated.xml').write_text('<resources><string name="gen">x</string></resources>')

        inputs = discover_inputs(ProjectLayout.resolve(android_project))
        assert not any('build' in i.path.split('/') for i in inputs)

    def test_separate_res_root(self, android_project):
        layout = ProjectLayout.resolve(
            android_project / 'app' / 'src' / 'main' / 'java',
            android_project / 'app' / 'src' / 'main' / 'res',
        )
        assert layout.scan_root == (android_project / 'app' / 'src' / 'main').resolve()
        paths = [i.path for i in discover_inputs(layout)]
        assert 'res/values/strings.xml' in paths
        assert 'java/com/example/MainActivity.java' in paths


class TestBuild:

    def test_entry_states(self, build):
        index = build()
        states = {str(i): e.state for i, e in index.entries.items()}

        assert states['string/app_name'] == EntryState.USED  # manifest
        assert states['string/greeting'] == EntryState.USED
        assert states['string/title_main'] == EntryState.USED  # title.main in XML
        assert states['layout/activity_main'] == EntryState.USED
        assert states['color/primary'] == EntryState.USED
        assert states['string/unused_label'] == EntryState.UNUSED  # comment/string only
        assert states['color/unused_color'] == EntryState.UNUSED
        assert states['layout/unused_screen'] == EntryState.UNUSED
        assert states['drawable/ic_unused'] == EntryState.UNUSED
        assert states['id/label'] == EntryState.UNUSED
        assert states['string/not_declared'] == EntryState.UNDECLARED
        assert 'color/black' not in states  # android.R
        assert 'string/commented_out' not in states

    def test_occurrence_locations(self, build):
        index = build()
        greeting = index.entries[rid('string/greeting')]

        definition, = greeting.definitions
        assert definition.location == f'{STRINGS_XML}:4:5'
        assert sorted(u.file_path for u in greeting.usages) == [
            'app/src/main/java/com/example/MainActivity.java',
            'app/src/main/res/layout/activity_main.xml',
        ]

    def test_every_file_has_a_record(self, build):
        index = build()
        assert len(index.files) == 8
        assert index.files[STRINGS_XML].language == 'xml'
        assert index.fingerprint

    def test_occurrences_grouped_by_file(self, build):
        index = build()
        sites = index.occurrences_by_file()

        assert sorted(sites) == sorted({o.file_path for o in index.occurrences()})
        assert sites[STRINGS_XML] == [o for o in index.occurrences() if o.file_path == STRINGS_XML]
        assert sum(len(v) for v in sites.values()) == len(list(index.occurrences()))

    def test_rebuild_is_identical(self, build):
        first, second = build(), build()
        assert first.equivalent(second)
        assert list(first.occurrences()) == list(second.occurrences())
        assert first.fingerprint == second.fingerprint

    def test_malformed_file_is_a_diagnostic(self, android_project, build):
        broken = android_project / 'app' / 'src' / 'main' / 'res' / 'values' / 'broken.xml'
        broken.write_text('<resources><string name="x">oops</resources>')

        index = build()
        assert [d.category for d in index.diagnostics] == ['ExtractionError']
        assert index.diagnostics[0].path == 'app/src/main/res/values/broken.xml'
        assert rid('string/x') not in index.entries
        # The rest of the project is still indexed
        assert rid('string/greeting') in index.entries

    def test_unknown_type_is_a_diagnostic(self, android_project, build):
        source = android_project / 'app' / 'src' / 'main' / 'java' / 'com' / 'example' / 'Odd.java'
        source.write_text('class Odd { int x = R.widget.thing; }')

        index = build()
        assert [d.category for d in index.diagnostics] == ['NormalizationError']


class TestIncrementalBuild:

    def test_unchanged_files_are_reused(self, android_project, build, monkeypatch):
        previous = build()
        scanned = []
        original = Indexer.scan_file

        def spy(self, scan_input):
            scanned.append(scan_input.path)
            return original(self, scan_input)

        monkeypatch.setattr(Indexer, 'scan_file', spy)

        strings = android_project / STRINGS_XML
        strings.write_text(strings.read_text().replace('Hello', 'Hello there'))
        stat = strings.stat()
        os.utime(strings, (stat.st_atime, stat.st_mtime + 5))

        updated = build(previous=previous)
        assert scanned == [STRINGS_XML]
        assert updated.equivalent(build())

    def test_interrupt_propagates(self, android_project, monkeypatch):
        def interrupted(self, scan_input):
            raise KeyboardInterrupt

        monkeypatch.setattr(Indexer, 'scan_file', interrupted)
        indexer = Indexer(android_project, workers=2)
        inputs = [ScanInput(STRINGS_XML, 'resource', 'xml')]
        with pytest.raises(KeyboardInterrupt):
            indexer.build(inputs)
