"""Tests for lexer resolution and per-block highlighting."""

import io

import pytest
from bs4 import BeautifulSoup
from pygments.formatters import HtmlFormatter
from pygments.lexers import GoLexer, PythonLexer, TextLexer

from codeHighlight import (
    FormatterSetupError,
    HighlightContext,
    build_context,
    render_code,
    resolve_lexer,
    write_code,
)


class BrokenFormatter:
    """Writes a fragment, then fails mid-block."""

    def format(self, tokens, outfile):
        outfile.write('<div class="partial">')
        raise RuntimeError("formatter exploded")


class TestResolveLexer:
    def test_by_name(self) -> None:
        assert isinstance(resolve_lexer("python"), PythonLexer)

    def test_name_is_case_insensitive(self) -> None:
        assert isinstance(resolve_lexer("Python"), PythonLexer)

    def test_by_filename(self) -> None:
        assert isinstance(resolve_lexer("main.go"), GoLexer)

    @pytest.mark.parametrize("hint", ["", None, "nonexistent-lang-xyz", "   "])
    def test_fallback_to_text(self, hint) -> None:
        assert isinstance(resolve_lexer(hint), TextLexer)

    def test_tab_width_passed_to_lexer(self) -> None:
        assert resolve_lexer("python", 4).tabsize == 4


class TestBuildContext:
    def test_formatter_uses_css_classes(self) -> None:
        context = build_context()
        assert isinstance(context.formatter, HtmlFormatter)
        assert context.formatter.noclasses is False
        assert context.tab_width == 4

    def test_factory_called_once(self) -> None:
        calls = []

        def factory(**options):
            calls.append(options)
            return HtmlFormatter(**options)

        build_context(formatter_factory=factory)
        assert len(calls) == 1
        assert calls[0]["noclasses"] is False

    def test_setup_failure_reported(self, capsys) -> None:
        def factory(**options):
            raise ValueError("no formatter today")

        context = build_context(formatter_factory=factory)
        assert context.formatter is None
        err = capsys.readouterr().err
        assert "unable to set up output formatter" in err
        assert "no formatter today" in err


class TestWriteCode:
    def test_python_tokens_have_classes(self) -> None:
        out = io.StringIO()
        write_code(build_context(), out, "def f(): pass\n", "python")

        soup = BeautifulSoup(out.getvalue(), "html.parser")
        keywords = [span.get_text() for span in soup.select("span.k")]
        assert "def" in keywords
        assert soup.select_one("span.nf").get_text() == "f"

    def test_unknown_language_still_highlighted_markup(self) -> None:
        out = io.StringIO()
        write_code(build_context(), out, "hello <world>\n", "nonexistent-lang-xyz")

        html = out.getvalue()
        assert '<div class="highlight">' in html
        assert "hello &lt;world&gt;" in html
        assert "<world>" not in html

    def test_tabs_expanded(self) -> None:
        out = io.StringIO()
        write_code(build_context(), out, "a\tb\n", "text")
        assert "a   b" in out.getvalue()

    def test_missing_formatter_raises(self) -> None:
        context = HighlightContext(formatter=None)
        with pytest.raises(FormatterSetupError, match="unable to set up output formatter"):
            write_code(context, io.StringIO(), "x = 1\n", "python")


class TestRenderCode:
    def test_returns_highlighted_html(self) -> None:
        html = render_code(build_context(), "x = 1\n", "python")
        assert html.startswith('<div class="highlight">')

    def test_failure_logged_and_partial_output_kept(self, capsys) -> None:
        context = HighlightContext(formatter=BrokenFormatter())

        html = render_code(context, "x = 1\n", "python")

        assert html == '<div class="partial">'
        assert "Error parsing code block: formatter exploded" in capsys.readouterr().err

    def test_missing_formatter_logged(self, capsys) -> None:
        html = render_code(HighlightContext(formatter=None), "x = 1\n", "python")

        assert html == ""
        err = capsys.readouterr().err
        assert "Error parsing code block: unable to set up output formatter" in err
