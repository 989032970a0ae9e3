import io
import sys
from dataclasses import dataclass
from typing import Optional

from pygments.formatters import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_by_name, get_lexer_for_filename
from pygments.util import ClassNotFound

# Colour style handed to the formatter; only affects the generated CSS,
# since tokens are rendered with class names.
FALLBACK_STYLE = 'default'
TAB_WIDTH = 4


class FormatterSetupError(Exception):
    pass


@dataclass(frozen=True)
class HighlightContext:
    """
    Highlighting configuration shared by every code block of one run.
    Built once by build_context() before any rendering starts.
    """
    formatter: Optional[HtmlFormatter]
    tab_width: int = TAB_WIDTH


def build_context(formatter_factory=HtmlFormatter):
    """
    Constructs the HTML formatter exactly once. On failure the error is
    reported and the context carries no formatter, so every later
    highlight attempt fails on its own instead of silently skipping.
    """
    try:
        formatter = formatter_factory(noclasses=False, style=FALLBACK_STYLE)
    except Exception as e:
        print(f"Error: unable to set up output formatter: {e}", file=sys.stderr)
        formatter = None
    return HighlightContext(formatter=formatter)


def resolve_lexer(code_type, tab_width=TAB_WIDTH):
    """
    Finds a lexer for the language hint of a code block.
    Falls back to the plain text lexer when nothing matches.
    """
    words = (code_type or '').split()
    name = words[0] if words else ''

    # 1. Try language name / alias
    try:
        return get_lexer_by_name(name, tabsize=tab_width)
    except ClassNotFound:
        pass

    # 2. Try it as a filename (e.g. "main.go")
    if name:
        try:
            return get_lexer_for_filename(name, tabsize=tab_width)
        except ClassNotFound:
            pass

    return TextLexer(tabsize=tab_width)


def write_code(context, out, text, code_type):
    """
    Tokenizes `text` and writes the highlighted HTML straight to `out`.
    """
    if context.formatter is None:
        raise FormatterSetupError('unable to set up output formatter')

    lexer = resolve_lexer(code_type, context.tab_width)
    # Coalesce runs of identical token types
    lexer.add_filter('tokenmerge')

    tokens = lexer.get_tokens(text)
    context.formatter.format(tokens, out)


def render_code(context, text, code_type):
    """
    Highlights one code block. Errors are reported but never raised;
    whatever was written before the failure is returned as-is.
    """
    out = io.StringIO()
    try:
        write_code(context, out, text, code_type)
    except Exception as e:
        print(f"Error parsing code block: {e}", file=sys.stderr)
    return out.getvalue()
