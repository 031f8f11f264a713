"""Byte-offset tag scanner for resource XML.

lxml tells us what a document means but not where each element starts and
ends in the raw bytes. This scanner walks the raw bytes once and records,
for every element in document order, the span of the element and of each
attribute, so removals can cut exactly those bytes and leave the rest of
the file untouched.

It assumes well-formed input; callers validate with lxml first.
"""
import bisect
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


_START_TAG = re.compile(
    rb'<(?P<name>[^\s/>!?]+)'
    rb'(?P<attrs>(?:\s+[^\s=/>]+\s*=\s*(?:"[^"]*"|\'[^\']*\'))*)'
    rb'\s*(?P<close>/?)>'
)
_END_TAG = re.compile(rb'</(?P<name>[^\s>]+)\s*>')
_ATTRIBUTE = re.compile(
    rb'(?P<ws>\s+)(?P<name>[^\s=/>]+)\s*=\s*(?P<quote>["\'])(?P<value>.*?)(?P=quote)',
    re.S,
)


class ScanError(ValueError):
    """Raised when the bytes are not a sequence of well-formed tags."""

    def __init__(self, message: str, offset: int):
        self.offset = offset
        super().__init__(message)


@dataclass(frozen=True)
class AttributeSpan:
    name: str
    raw_value: str
    start: int  # includes the leading whitespace
    end: int
    value_start: int


@dataclass
class TagSpan:
    """Location of one element. ``end`` is the offset after its end tag."""
    name: str
    start: int
    start_tag_end: int
    end: int = -1
    depth: int = 0
    attributes: List[AttributeSpan] = field(default_factory=list)

    def attribute(self, name: str) -> Optional[AttributeSpan]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None


def _skip_to(data: bytes, pos: int, marker: bytes, what: str) -> int:
    end = data.find(marker, pos)
    if end < 0:
        raise ScanError(f"unterminated {what}", pos)
    return end + len(marker)


def _parse_attributes(chunk: bytes, base: int) -> List[AttributeSpan]:
    attributes = []
    for match in _ATTRIBUTE.finditer(chunk):
        attributes.append(AttributeSpan(
            name=match.group('name').decode('utf-8'),
            raw_value=match.group('value').decode('utf-8', errors='replace'),
            start=base + match.start(),
            end=base + match.end(),
            value_start=base + match.start('value'),
        ))
    return attributes


def scan_tags(data: bytes) -> List[TagSpan]:
    """Return every element of the document in start-tag order.

    Raises:
        ScanError: On a tag the scanner cannot read or a mismatched end tag
    """
    tags: List[TagSpan] = []
    stack: List[TagSpan] = []
    pos = 0
    length = len(data)

    while pos < length:
        pos = data.find(b'<', pos)
        if pos < 0:
            break

        if data.startswith(b'<!--', pos):
            pos = _skip_to(data, pos + 4, b'-->', 'comment')
        elif data.startswith(b'<![CDATA[', pos):
            pos = _skip_to(data, pos + 9, b']]>', 'CDATA section')
        elif data.startswith(b'<?', pos):
            pos = _skip_to(data, pos + 2, b'?>', 'processing instruction')
        elif data.startswith(b'<!', pos):
            pos = _skip_doctype(data, pos)
        elif data.startswith(b'</', pos):
            match = _END_TAG.match(data, pos)
            if not match:
                raise ScanError("malformed end tag", pos)
            name = match.group('name').decode('utf-8')
            if not stack or stack[-1].name != name:
                raise ScanError(f"unexpected end tag </{name}>", pos)
            stack.pop().end = match.end()
            pos = match.end()
        else:
            match = _START_TAG.match(data, pos)
            if not match:
                raise ScanError("malformed start tag", pos)
            tag = TagSpan(
                name=match.group('name').decode('utf-8'),
                start=pos,
                start_tag_end=match.end(),
                depth=len(stack),
                attributes=_parse_attributes(match.group('attrs'), match.start('attrs')),
            )
            tags.append(tag)
            if match.group('close'):
                tag.end = match.end()
            else:
                stack.append(tag)
            pos = match.end()

    if stack:
        raise ScanError(f"unclosed element <{stack[-1].name}>", stack[-1].start)
    return tags


def _skip_doctype(data: bytes, pos: int) -> int:
    # A DOCTYPE may carry an internal subset in brackets containing '>'.
    depth = 0
    for index in range(pos + 2, len(data)):
        char = data[index:index + 1]
        if char == b'[':
            depth += 1
        elif char == b']':
            depth -= 1
        elif char == b'>' and depth <= 0:
            return index + 1
    raise ScanError("unterminated declaration", pos)


class LineIndex:
    """Translate byte offsets to 1-based (line, column) pairs."""

    def __init__(self, data: bytes):
        self.data = data
        self.line_starts = [0]
        for match in re.finditer(b'\n', data):
            self.line_starts.append(match.end())

    def position(self, offset: int) -> Tuple[int, int]:
        line = bisect.bisect_right(self.line_starts, offset) - 1
        return line + 1, offset - self.line_starts[line] + 1


def widen_to_lines(data: bytes, start: int, end: int) -> Tuple[int, int]:
    """Grow a span to whole lines when it is alone on them.

    ``    <string name="a">A</string>\\n`` loses its indentation and newline
    too, so no blank line is left behind. Spans sharing a line with other
    content are returned unchanged.
    """
    line_start = data.rfind(b'\n', 0, start) + 1
    if data[line_start:start].strip():
        return start, end

    line_end = data.find(b'\n', end)
    if line_end < 0:
        line_end = len(data)
        trailing = data[end:line_end]
    else:
        trailing = data[end:line_end]
        line_end += 1
    if trailing.strip():
        return start, end

    return line_start, line_end
