"""Terminal-safe output: ASCII fallbacks for icons on non-UTF-8 terminals.

Detects the terminal encoding and replaces the Unicode status icons Aster
prints with ASCII equivalents where the terminal cannot show them.
"""
import locale
import sys


# Unicode to ASCII icon mapping
ICON_MAP = {
    # Status icons
    '✓': '[OK]',      # check mark
    '✔': '[OK]',      # heavy check mark
    '✗': '[FAIL]',    # ballot x
    '✘': '[FAIL]',    # heavy ballot x
    '⚠': '[WARN]',    # warning sign
    '⚡': '[!]',       # high voltage

    # Arrows
    '→': '->',
    '←': '<-',
    '⇒': '=>',

    # Symbols
    '…': '...',
    '•': '*',
    '·': '.',
}


def detect_terminal_encoding() -> str:
    """Detect the terminal's encoding.

    Returns:
        str: Terminal encoding ('utf-8', 'cp1252', 'ascii', etc.)
    """
    if getattr(sys.stdout, 'encoding', None):
        return sys.stdout.encoding.lower()

    try:
        return locale.getpreferredencoding().lower()
    except (LookupError, ValueError):
        return 'ascii'


def is_utf8_capable() -> bool:
    return detect_terminal_encoding().replace('_', '-') in ('utf-8', 'utf8')


def sanitize_for_terminal(text: str, force: bool = False) -> str:
    """Replace Unicode icons with ASCII equivalents if the terminal needs it.

    Args:
        text: Text potentially containing Unicode icons
        force: Sanitize even on a UTF-8 terminal

    Returns:
        str: Text safe for the current terminal
    """
    if not force and is_utf8_capable():
        return text

    sanitized = text
    for unicode_char, ascii_replacement in ICON_MAP.items():
        sanitized = sanitized.replace(unicode_char, ascii_replacement)
    return sanitized
