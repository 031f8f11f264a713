"""Tree-sitter parsers for the source languages that reference resources."""
from tree_sitter import Language, Parser, Tree
import tree_sitter_java as tsjava
import tree_sitter_kotlin as tskotlin


class LanguageParser:
    """Source parser using the tree-sitter v0.22+ API."""

    SUPPORTED_LANGUAGES = {
        '.java': 'java',
        '.kt': 'kotlin',
        '.kts': 'kotlin',
    }

    def __init__(self, language: str):
        """Initialize parser for given language (java, kotlin).

        Args:
            language: One of 'java', 'kotlin'

        Raises:
            ValueError: If language is not supported
        """
        self.language = language
        self.parser = self._create_parser()

    def _create_parser(self) -> Parser:
        """Build a Parser around the grammar's language capsule.

        Returns:
            Configured Parser instance

        Raises:
            ValueError: If language is not supported
        """
        if self.language == 'java':
            lang = Language(tsjava.language())
        elif self.language == 'kotlin':
            lang = Language(tskotlin.language())
        else:
            raise ValueError(f"Unsupported language: {self.language}")

        return Parser(lang)

    def parse_source(self, source_code: bytes) -> Tree:
        """Parse in-memory source bytes."""
        return self.parser.parse(source_code)

    @classmethod
    def extensions_for(cls, language: str) -> list[str]:
        """File extensions handled by a language tag ('all' means every language)."""
        return sorted(
            ext for ext, lang in cls.SUPPORTED_LANGUAGES.items()
            if language == 'all' or lang == language
        )

