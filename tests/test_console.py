"""Terminal-safe output helpers."""
import io

from aster.errors import Diagnostic
from aster.utils.logger import sanitize_for_terminal
from aster.utils.safe_console import SafeConsole


def test_icons_fall_back_to_ascii():
    assert sanitize_for_terminal('✓ done → next', force=True) == '[OK] done -> next'


def test_plain_text_is_untouched():
    assert sanitize_for_terminal('string/app_name', force=True) == 'string/app_name'


def test_diagnostics_table():
    buffer = io.StringIO()
    console = SafeConsole(file=buffer, width=120)
    console.print_diagnostics([
        Diagnostic('ExtractionError', 'res/values/b.xml', 'malformed XML', 3),
        Diagnostic('NormalizationError', 'src/A.java', 'unknown resource type: widget/x', 1),
    ])
    output = buffer.getvalue()
    assert 'Problems (2)' in output
    assert 'res/values/b.xml' in output
    assert output.index('res/values/b.xml') < output.index('src/A.java')


def test_no_diagnostics_prints_nothing():
    buffer = io.StringIO()
    SafeConsole(file=buffer).print_diagnostics([])
    assert buffer.getvalue() == ''


def test_status_spinner_is_rich_default():
    assert 'status' not in vars(SafeConsole)
