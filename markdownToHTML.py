import functools
import re
import sys

import markdown
from markdown.blockprocessors import HashHeaderProcessor, OListProcessor
from markdown.extensions import Extension
from markdown.inlinepatterns import InlineProcessor, SubstituteTagInlineProcessor
from markdown.preprocessors import Preprocessor
from markdown.treeprocessors import Treeprocessor

from codeHighlight import build_context, render_code

MARKDOWN_EXTENSIONS = [
    'tables',
    'attr_list',
    'def_list',
    'footnotes',
    'smarty',
    'pymdownx.superfences',
    'pymdownx.tilde',
    'pymdownx.caret',
    'pymdownx.arithmatex',
]

BACKSLASH_LINEBREAK_RE = r'\\\n'
# digits glued to a word or slash (dates, paths) are left alone
FRACTION_RE = r'(?<![\w/])(\d+)/(\d+)(?![\w/])'
SYMBOL_RE = r'(?i)\((c|r|tm)\)'
SYMBOL_ENTITIES = {
    'c': '&copy;',
    'r': '&reg;',
    'tm': '&trade;',
}

FENCE_LINE_RE = re.compile(r'^(?P<indent>[> \t]*)(?P<fence>`{3,}|~{3,})[ \t]*(?P<info>.*?)\s*$')
LANGUAGE_RE = re.compile(r'^[\w#.+-]+$')


def build_extension_configs(context):
    return {
        'smarty': {
            'smart_dashes': True,
            'smart_quotes': True,
            'smart_ellipses': True,
        },
        'pymdownx.superfences': {
            # '*' routes every fence, with or without a language, to the hook
            'custom_fences': [
                {
                    'name': '*',
                    'class': 'highlight',
                    'format': functools.partial(format_fence, context),
                },
            ],
        },
        'pymdownx.caret': {'insert': False},
        'pymdownx.arithmatex': {'generic': True},
    }


def format_fence(context, source, language, css_class, options, md, **kwargs):
    return render_code(context, source, language)


def code_unescape(text):
    """
    Reverses the escaping Python-Markdown applies to indented code.
    """
    text = text.replace('&lt;', '<')
    text = text.replace('&gt;', '>')
    # &amp; last, so "&amp;lt;" comes back as "&lt;"
    return text.replace('&amp;', '&')


class SpacedHashHeaderProcessor(HashHeaderProcessor):
    """
    ATX headings that need whitespace after the hashes, so "#tag" stays
    a paragraph.
    """
    RE = re.compile(r'(?:^|\n)(?P<level>#{1,6})(?=[ \t]|\n|$)(?P<header>(?:\\.|[^\\])*?)#*(?:\n|$)')


class StartAwareOListProcessor(OListProcessor):
    # emit start="N" for lists that do not begin at 1
    LAZY_OL = False


class FractionInlineProcessor(InlineProcessor):
    def handleMatch(self, m, data):
        html = f'<sup>{m.group(1)}</sup>&frasl;<sub>{m.group(2)}</sub>'
        return self.md.htmlStash.store(html), m.start(0), m.end(0)


class SymbolInlineProcessor(InlineProcessor):
    def handleMatch(self, m, data):
        entity = SYMBOL_ENTITIES[m.group(1).lower()]
        return self.md.htmlStash.store(entity), m.start(0), m.end(0)


class FenceInfoPreprocessor(Preprocessor):
    """
    Cuts the info string of every opening fence down to its language word,
    so any info string still yields a code block. A first word that is not
    a plain language name is dropped and the block gets the plain text lexer.
    Attribute blocks ("```{.python}") pass through untouched.
    """

    def run(self, lines):
        new_lines = []
        fence = None
        for line in lines:
            m = FENCE_LINE_RE.match(line)
            if m is None:
                new_lines.append(line)
                continue

            marker = m.group('fence')
            info = m.group('info')

            if fence is not None:
                # inside a block; only a bare fence of the same kind closes it
                if marker[0] == fence[0] and len(marker) >= len(fence) and not info:
                    fence = None
                new_lines.append(line)
                continue

            if marker[0] == '`' and '`' in info:
                # inline code span, not a fence
                new_lines.append(line)
                continue

            fence = marker
            if info and not info.startswith('{'):
                word = info.split()[0]
                if not LANGUAGE_RE.match(word):
                    word = ''
                line = f"{m.group('indent')}{marker}{word}"
            new_lines.append(line)
        return new_lines


class CodeBlockVisitor(Treeprocessor):
    """
    Walks the document tree and dispatches on tag name. Every element gets
    the default walk except <pre>, whose <code> child is replaced by
    highlighted markup.
    """

    def __init__(self, md, context):
        super().__init__(md)
        self.context = context

    def run(self, root):
        self.visit(root)

    def visit(self, element):
        tag = element.tag if isinstance(element.tag, str) else ''
        visitor = getattr(self, f'visit_{tag}', self.generic_visit)
        visitor(element)

    def generic_visit(self, element):
        for child in list(element):
            self.visit(child)

    def visit_pre(self, element):
        if len(element) != 1 or element[0].tag != 'code':
            self.generic_visit(element)
            return

        text = code_unescape(element[0].text or '')
        html = render_code(self.context, text, '')

        # Children already handled; the stashed markup stands in for them
        placeholder = self.md.htmlStash.store(html)
        element.clear()
        element.tag = 'p'
        element.text = placeholder


class HighlightedMarkdownExtension(Extension):
    """
    Adjusts Python-Markdown's syntax rules and installs the code block hook.
    """

    def __init__(self, context, **kwargs):
        self.context = context
        super().__init__(**kwargs)

    def extendMarkdown(self, md):
        # Ahead of superfences (25) and whitespace normalization (30)
        md.preprocessors.register(FenceInfoPreprocessor(md), 'fence_info', 35)

        md.parser.blockprocessors.register(SpacedHashHeaderProcessor(md.parser), 'hashheader', 70)
        md.parser.blockprocessors.register(StartAwareOListProcessor(md.parser), 'olist', 40)

        md.inlinePatterns.register(
            SubstituteTagInlineProcessor(BACKSLASH_LINEBREAK_RE, 'br'), 'backslash_linebreak', 185
        )
        md.inlinePatterns.register(FractionInlineProcessor(FRACTION_RE, md), 'fraction', 15)
        md.inlinePatterns.register(SymbolInlineProcessor(SYMBOL_RE, md), 'symbols', 14)

        # Before the inline pass (20) and pymdownx's own indent highlighter (30)
        md.treeprocessors.register(CodeBlockVisitor(md, self.context), 'code_block_hook', 35)


def build_markdown(context):
    return markdown.Markdown(
        extensions=MARKDOWN_EXTENSIONS + [HighlightedMarkdownExtension(context)],
        extension_configs=build_extension_configs(context),
    )


def convert(text, context):
    """
    Converts a Markdown string to an HTML fragment.
    """
    md = build_markdown(context)
    return md.convert(text)


def read_input():
    try:
        data = sys.stdin.buffer.read()
    except OSError as e:
        print(f"Error reading from stdin: {e}", file=sys.stderr)
        sys.exit(1)
    return data.decode('utf-8', errors='replace')


def write_output(html):
    if html and not html.endswith('\n'):
        html += '\n'
    try:
        sys.stdout.buffer.write(html.encode('utf-8'))
        sys.stdout.buffer.flush()
    except OSError as e:
        print(f"Error writing output: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """
    Reads Markdown from stdin and writes highlighted HTML to stdout.
    """
    context = build_context()
    text = read_input()
    html = convert(text, context)
    write_output(html)


if __name__ == "__main__":
    main()
