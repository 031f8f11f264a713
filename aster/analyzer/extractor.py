"""Definition and usage extraction from resource XML and source files."""
import re
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from lxml import etree

from aster.analyzer.models import OccurrenceKind, RawOccurrence
from aster.analyzer.normalizer import FILE_BASED_TYPES, file_resource_name
from aster.analyzer.parser import LanguageParser
from aster.analyzer.xml_scanner import LineIndex, ScanError, TagSpan, scan_tags, widen_to_lines
from aster.errors import ExtractionError


ANDROID_NS = 'http://schemas.android.com/apk/res/android'
TOOLS_NS = 'http://schemas.android.com/tools'
XMLNS_PREFIX = 'xmlns'

# '@string/name', '@+id/name', '@com.app:color/name', '@*android:string/x',
# '?attr/name' and the short theme form '?name' / '?app:name'
RESOURCE_REFERENCE = re.compile(
    r'(?P<sigil>[@?])(?P<private>\*)?(?P<plus>\+)?'
    r'(?:(?P<package>[\w.]+):)?(?:(?P<type>[a-z][\w-]*)/)?(?P<name>[\w.$-]+)'
)

# Value elements allowed directly under <resources>, mapped to their raw type
VALUE_ELEMENTS = {
    'string': 'string',
    'plurals': 'plurals',
    'string-array': 'string-array',
    'integer-array': 'integer-array',
    'array': 'array',
    'color': 'color',
    'dimen': 'dimen',
    'bool': 'bool',
    'integer': 'integer',
    'fraction': 'fraction',
    'style': 'style',
    'attr': 'attr',
    'declare-styleable': 'declare-styleable',
    'drawable': 'drawable',
}


class Extractor(ABC):
    """Scans one file and reports the resource occurrences it contains."""

    tag: str = ''

    @abstractmethod
    def extract(self, path: str, content: bytes) -> Iterator[RawOccurrence]:
        """Yield raw occurrences in document order.

        Raises:
            ExtractionError: If the content cannot be parsed
        """


class ExtractorRegistry:
    """Extractor factories keyed by file-kind or language tag."""

    _factories: Dict[str, Callable[[], Extractor]] = {}

    @classmethod
    def register(cls, *tags: str):
        def decorator(factory):
            for tag in tags:
                cls._factories[tag] = lambda tag=tag, factory=factory: factory(tag)
            return factory
        return decorator

    @classmethod
    def for_tag(cls, tag: str) -> Extractor:
        factory = cls._factories.get(tag)
        if factory is None:
            raise LookupError(f"No extractor registered for tag: {tag}")
        return factory()

    @classmethod
    def tags(cls) -> Tuple[str, ...]:
        return tuple(sorted(cls._factories))


# =========================================================================
# RESOURCE XML
# =========================================================================

@ExtractorRegistry.register('xml')
class ResourceExtractor(Extractor):
    """Resource XML: value declarations, @+id declarations and references.

    lxml decides what each element means; the byte scanner says where it is.
    Both walk the document in the same order, so element ``i`` in one is
    element ``i`` in the other.
    """

    def __init__(self, tag: str = 'xml'):
        self.tag = tag
        self._parser = etree.XMLParser(
            resolve_entities=False,
            remove_comments=False,
            remove_pis=False,
            strip_cdata=False,
            no_network=True,
        )

    def extract(self, path: str, content: bytes) -> Iterator[RawOccurrence]:
        root, pairs = self._parse(path, content)
        lines = LineIndex(content)

        is_values_file = root.tag == 'resources'
        for element, span in pairs:
            if is_values_file and span.depth == 1:
                yield from self._value_definitions(element, span, content, lines)
            elif is_values_file and span.depth == 2 and element.getparent().tag == 'declare-styleable':
                yield from self._styleable_attr(element, span, content, lines)
            yield from self._attribute_references(element, span, lines)
            yield from self._text_references(element, span, content, lines, is_values_file)

    def _parse(self, path: str, content: bytes) -> Tuple[etree._Element, List[Tuple[etree._Element, TagSpan]]]:
        """Parse with lxml and pair each element with its byte span."""
        try:
            root = etree.fromstring(content, self._parser)
        except etree.XMLSyntaxError as e:
            raise ExtractionError(path, f"malformed XML: {e.msg}", getattr(e, 'lineno', None)) from e

        try:
            spans = scan_tags(content)
        except ScanError as e:
            line, _ = LineIndex(content).position(e.offset)
            raise ExtractionError(path, f"cannot locate elements: {e}", line) from e

        elements = [el for el in root.iter() if isinstance(el.tag, str)]
        if len(elements) != len(spans):
            raise ExtractionError(path, "element count mismatch between parser and scanner")
        return root, list(zip(elements, spans))

    # --- Definitions -------------------------------------------------------

    def _value_definitions(self, element, span: TagSpan, content: bytes,
                           lines: LineIndex) -> Iterator[RawOccurrence]:
        local = etree.QName(element).localname
        name = element.get('name')
        if not name:
            return

        if local == 'item':
            raw_type = element.get('type')
            if not raw_type:
                return
        else:
            raw_type = VALUE_ELEMENTS.get(local)
            if raw_type is None:
                return
            if local == 'attr' and ':' in name:
                # <attr name="android:textColor"/> reuses a framework attr
                return

        start, end = widen_to_lines(content, span.start, span.end)
        yield self._occurrence(raw_type, name, OccurrenceKind.DEFINITION, span.start, start, end, lines)

        if local == 'style' and element.get('parent') is None and '.' in name:
            # <style name="Base.Dark"> inherits from Base without naming it
            attribute = span.attribute('name')
            parent = name.rsplit('.', 1)[0]
            yield self._occurrence('style', parent, OccurrenceKind.USAGE,
                                   attribute.start, attribute.start, attribute.end, lines)
        elif local == 'style' and element.get('parent') and not element.get('parent').startswith(('@', '?')):
            attribute = span.attribute('parent')
            parent = element.get('parent')
            if not parent.startswith('android:'):
                yield self._occurrence('style', parent, OccurrenceKind.USAGE,
                                       attribute.start, attribute.start, attribute.end, lines)

    def _styleable_attr(self, element, span: TagSpan, content: bytes,
                        lines: LineIndex) -> Iterator[RawOccurrence]:
        """<declare-styleable name="Outer"><attr name="inner"/> -> styleable/Outer_inner."""
        if etree.QName(element).localname != 'attr':
            return
        name = element.get('name')
        outer = element.getparent().get('name')
        if not name or not outer:
            return

        start, end = widen_to_lines(content, span.start, span.end)
        field_name = f"{outer}_{name.replace(':', '_')}"
        yield self._occurrence('declare-styleable', field_name, OccurrenceKind.DEFINITION,
                               span.start, start, end, lines)
        if ':' in name:
            return
        if element.get('format') is not None or len(element):
            yield self._occurrence('attr', name, OccurrenceKind.DEFINITION, span.start, start, end, lines)
        else:
            yield self._occurrence('attr', name, OccurrenceKind.USAGE, span.start, start, end, lines)

    # --- References --------------------------------------------------------

    def _attribute_references(self, element, span: TagSpan,
                              lines: LineIndex) -> Iterator[RawOccurrence]:
        attribute_spans = [a for a in span.attributes if not _is_namespace_declaration(a.name)]
        values = list(element.items())
        if len(values) != len(attribute_spans):
            return

        for (qualified, value), attribute in zip(values, attribute_spans):
            namespace = etree.QName(qualified).namespace
            if namespace == TOOLS_NS:
                continue
            if namespace and namespace.endswith('/res-auto'):
                # app:customAttr="..." reads the app's own attr
                yield self._occurrence('attr', etree.QName(qualified).localname, OccurrenceKind.USAGE,
                                       attribute.start, attribute.start, attribute.end, lines)
            for reference in _references_in(value):
                kind = OccurrenceKind.DEFINITION if reference.group('plus') else OccurrenceKind.USAGE
                yield self._occurrence(reference_type(reference), reference.group('name'), kind,
                                       attribute.value_start + reference.start(),
                                       attribute.start, attribute.end, lines)

    def _text_references(self, element, span: TagSpan, content: bytes, lines: LineIndex,
                         is_values_file: bool) -> Iterator[RawOccurrence]:
        parts = [element.text or '']
        parts.extend(child.tail or '' for child in element)
        text = ''.join(parts)

        references = _references_in(text)
        local = etree.QName(element).localname
        style_item = (is_values_file and local == 'item' and element.getparent() is not None
                      and element.getparent().tag == 'style')
        if not references and not style_item:
            return

        start, end = widen_to_lines(content, span.start, span.end)
        if style_item:
            name = element.get('name') or ''
            if name and ':' not in name:
                yield self._occurrence('attr', name, OccurrenceKind.USAGE, span.start, start, end, lines)
        for reference in references:
            if reference.group('plus'):
                continue
            yield self._occurrence(reference_type(reference), reference.group('name'),
                                   OccurrenceKind.USAGE, span.start, start, end, lines)

    @staticmethod
    def _occurrence(raw_type: str, raw_name: str, kind: OccurrenceKind, anchor: int,
                    start: int, end: int, lines: LineIndex) -> RawOccurrence:
        line, column = lines.position(anchor)
        return RawOccurrence(raw_type, raw_name, kind, line, column, start, end)


def _is_namespace_declaration(name: str) -> bool:
    return name == XMLNS_PREFIX or name.startswith(XMLNS_PREFIX + ':')


def _references_in(value: str) -> List[re.Match]:
    """App resource references in an attribute value or element text.

    A value is a reference only when the whole value is one. Data binding
    expressions (``@{...}``) may hold several.
    """
    stripped = value.strip()
    if stripped.startswith('@{'):
        candidates = list(RESOURCE_REFERENCE.finditer(value))
    else:
        match = RESOURCE_REFERENCE.fullmatch(stripped)
        if match is None:
            return []
        offset = value.index(stripped)
        candidates = [RESOURCE_REFERENCE.match(value, offset)]

    return [
        m for m in candidates
        if m is not None and not m.group('private') and m.group('package') != 'android'
        and (m.group('type') or m.group('sigil') == '?')
    ]


def reference_type(match: re.Match) -> str:
    """Type of a reference; the short '?name' form always names an attr."""
    return match.group('type') or 'attr'


# =========================================================================
# FILE-BASED RESOURCES
# =========================================================================

@ExtractorRegistry.register('resource-file')
class ResourceFileExtractor(Extractor):
    """res/<type>[-qualifiers]/<name>.<ext> declares <type>/<name>.

    XML files are also scanned for references, except raw files which are
    shipped byte for byte.
    """

    def __init__(self, tag: str = 'resource-file'):
        self.tag = tag
        self._xml = ResourceExtractor()

    def extract(self, path: str, content: bytes) -> Iterator[RawOccurrence]:
        pure = PurePath(path)
        resource_type = pure.parent.name.split('-', 1)[0]
        if resource_type not in FILE_BASED_TYPES:
            raise ExtractionError(path, f"not a file-based resource directory: {pure.parent.name}")

        yield RawOccurrence(resource_type, file_resource_name(pure.name), OccurrenceKind.DEFINITION,
                            line=1, column=1, start=0, end=0, whole_file=True)

        if pure.suffix.lower() == '.xml' and resource_type != 'raw':
            yield from self._xml.extract(path, content)


# =========================================================================
# SOURCE CODE
# =========================================================================

_IDENTIFIER = re.compile(r'^[A-Za-z_$][\w$]*$')
_SKIPPED_LEAF_MARKERS = ('comment', 'string', 'character')


@ExtractorRegistry.register('java', 'kotlin')
class SourceExtractor(Extractor):
    """R.<type>.<name> references in source code.

    Works on the tree-sitter leaf tokens so the same matcher serves every
    grammar: comments and string contents are single leaves and never look
    like an ``R . type . name`` token run.
    """

    def __init__(self, tag: str):
        self.tag = tag

    def extract(self, path: str, content: bytes) -> Iterator[RawOccurrence]:
        try:
            content.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ExtractionError(path, f"not valid UTF-8 at byte {e.start}") from e

        tree = LanguageParser(self.tag).parse_source(content)
        leaves = list(_leaves(tree.root_node))

        for i, leaf in enumerate(leaves):
            if leaf.text != b'R' or not _run_matches(leaves, i):
                continue

            qualifier_start = i
            while (qualifier_start >= 2 and leaves[qualifier_start - 1].text == b'.'
                   and _is_identifier(leaves[qualifier_start - 2])):
                qualifier_start -= 2
            if qualifier_start == i - 2 and leaves[i - 2].text == b'android':
                continue  # framework resources

            type_leaf, name_leaf = leaves[i + 2], leaves[i + 4]
            first = leaves[qualifier_start]
            row, column = leaf.start_point
            yield RawOccurrence(
                raw_type=type_leaf.text.decode('utf-8'),
                raw_name=name_leaf.text.decode('utf-8'),
                kind=OccurrenceKind.USAGE,
                line=row + 1,
                column=column + 1,
                start=first.start_byte,
                end=name_leaf.end_byte,
            )


def _leaves(node) -> Iterator:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.child_count == 0:
            yield current
        elif 'comment' not in current.type:
            stack.extend(reversed(current.children))


def _is_identifier(leaf) -> bool:
    if any(marker in leaf.type for marker in _SKIPPED_LEAF_MARKERS):
        return False
    return bool(_IDENTIFIER.match(leaf.text.decode('utf-8', errors='replace')))


def _run_matches(leaves: List, i: int) -> bool:
    """True when leaves[i:i+5] spell R . <type> . <name>."""
    if i + 4 >= len(leaves) or not _is_identifier(leaves[i]):
        return False
    return (leaves[i + 1].text == b'.' and _is_identifier(leaves[i + 2])
            and leaves[i + 3].text == b'.' and _is_identifier(leaves[i + 4]))


def extract_file(tag: str, path: str, content: bytes,
                 extractor: Optional[Extractor] = None) -> List[RawOccurrence]:
    """Run the extractor for ``tag`` over one file and materialize the result."""
    extractor = extractor or ExtractorRegistry.for_tag(tag)
    return list(extractor.extract(path, content))
