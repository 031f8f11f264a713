"""Counts and listings over a built index."""
import time

from aster.analyzer.models import Index, Occurrence, OccurrenceKind, ResourceIdentifier
from aster.analyzer.query import Counts, QueryEngine


def rid(text):
    return ResourceIdentifier.parse(text)


def make_index(*occurrences):
    """Index from (identifier, kind, file) triples."""
    index = Index(scan_root='/project', language='all', built_at=time.time())
    for line, (identifier, kind, path) in enumerate(occurrences, start=1):
        index.entry(rid(identifier)).add(
            Occurrence(rid(identifier), kind, path, line, 1, 0, 0)
        )
    return index


DEF = OccurrenceKind.DEFINITION
USE = OccurrenceKind.USAGE


class TestScenarios:

    def test_defined_and_used(self):
        """string/greeting defined in XML and used from code."""
        query = QueryEngine(make_index(
            ('string/greeting', DEF, 'res/values/strings.xml'),
            ('string/greeting', USE, 'src/Main.java'),
        ))
        assert query.counts() == Counts(defined=1, used=1, unused=0, undeclared=0)
        assert query.list_unused() == []

    def test_defined_never_used(self):
        query = QueryEngine(make_index(('string/orphan', DEF, 'res/values/strings.xml')))
        assert query.counts() == Counts(defined=1, used=0, unused=1, undeclared=0)
        assert query.list_unused() == [rid('string/orphan')]

    def test_used_never_defined(self):
        query = QueryEngine(make_index(('string/ghost', USE, 'src/Main.java')))
        assert query.counts() == Counts(defined=0, used=1, unused=0, undeclared=1)
        assert query.list_unused() == []
        assert [e.identifier for e in query.list_undeclared()] == [rid('string/ghost')]

    def test_several_definitions_one_usage(self):
        """Qualified variants (values/, values-fr/) all belong to one used entry."""
        query = QueryEngine(make_index(
            ('string/title', DEF, 'res/values/strings.xml'),
            ('string/title', DEF, 'res/values-fr/strings.xml'),
            ('string/title', USE, 'src/Main.java'),
        ))
        assert query.counts() == Counts(defined=1, used=1, unused=0, undeclared=0)
        assert len(query.resolve(rid('string/title')).definitions) == 2


class TestSampleProject:

    def test_counts(self, build):
        counts = QueryEngine(build()).counts()
        assert counts == Counts(defined=11, used=6, unused=6, undeclared=1)

    def test_counts_are_consistent(self, build):
        index = build()
        counts = QueryEngine(index).counts()
        defined_and_used = sum(1 for e in index.entries.values() if e.definitions and e.usages)
        assert counts.unused == counts.defined - defined_and_used
        assert counts.undeclared == counts.used - defined_and_used

    def test_list_unused_is_sorted(self, build):
        unused = QueryEngine(build()).list_unused()
        assert [str(i) for i in unused] == [
            'color/unused_color',
            'drawable/ic_unused',
            'id/label',
            'id/unused_frame',
            'layout/unused_screen',
            'string/unused_label',
        ]

    def test_filters(self, build):
        query = QueryEngine(build())
        assert query.list_unused(resource_type='string') == [rid('string/unused_label')]
        assert query.list_unused(prefix='unused_') == [
            rid('color/unused_color'), rid('id/unused_frame'),
            rid('layout/unused_screen'), rid('string/unused_label'),
        ]
        assert query.list_unused(prefix='unused_', resource_type='id') == [rid('id/unused_frame')]

    def test_ignore_patterns(self, build):
        query = QueryEngine(build(), ignore=['unused'])
        assert [str(i) for i in query.list_unused()] == ['id/label']
        assert query.counts().unused == 1

    def test_unused_with_sites(self, build):
        entry, = QueryEngine(build()).list_unused_with_sites(resource_type='string')
        definition, = entry.definitions
        assert definition.location == 'app/src/main/res/values/strings.xml:5:5'

    def test_resolve_unknown(self, build):
        assert QueryEngine(build()).resolve(rid('string/nope')) is None
