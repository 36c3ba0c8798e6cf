"""Markdown to Jira wiki markup.

Covers what people write in issue bodies and comments: headings, emphasis,
strikethrough, inline and fenced code, links, images, lists, block quotes
and horizontal rules. Anything else passes through unchanged.
"""

import re

_FENCE = re.compile(r"^\s*(`{3,}|~{3,})\s*([\w+-]*)\s*$")
_HEADING = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_RULE = re.compile(r"^\s*(?:-{3,}|\*{3,}|_{3,})\s*$")
_BULLET = re.compile(r"^(\s*)[-*+]\s+(.*)$")
_NUMBERED = re.compile(r"^(\s*)\d+[.)]\s+(.*)$")
_QUOTE = re.compile(r"^>\s?(.*)$")

_CODE_SPAN = re.compile(r"`([^`]+)`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\(([^)\s]+)\)")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_BOLD = re.compile(r"(\*\*|__)(?=\S)(.+?)(?<=\S)\1")
_ITALIC_STAR = re.compile(r"(?<![\w*])\*(?=\S)([^*]+?)(?<=\S)\*(?![\w*])")
_ITALIC_UNDERSCORE = re.compile(r"(?<!\w)_(?=\S)([^_]+?)(?<=\S)_(?!\w)")
_STRIKE = re.compile(r"~~(?=\S)(.+?)(?<=\S)~~")

# Private-use characters keep converted spans away from later passes.
_BOLD_MARK = "\ue000"
_SLOT = "\ue001{}\ue002"
_SLOT_RE = re.compile("\ue001(\\d+)\ue002")


def _inline(text: str) -> str:
    protected: list[str] = []

    def protect(value: str) -> str:
        protected.append(value)
        return _SLOT.format(len(protected) - 1)

    text = _CODE_SPAN.sub(lambda m: protect("{{" + m.group(1) + "}}"), text)
    text = _IMAGE.sub(lambda m: protect(f"!{m.group(2)}!"), text)
    text = _LINK.sub(lambda m: protect(f"[{m.group(1)}|{m.group(2)}]"), text)
    text = _BOLD.sub(lambda m: f"{_BOLD_MARK}{m.group(2)}{_BOLD_MARK}", text)
    text = _ITALIC_STAR.sub(r"_\1_", text)
    text = _ITALIC_UNDERSCORE.sub(r"_\1_", text)
    text = _STRIKE.sub(r"-\1-", text)
    text = text.replace(_BOLD_MARK, "*")
    return _SLOT_RE.sub(lambda m: protected[int(m.group(1))], text)


def _list_depth(indent: str) -> int:
    return len(indent.replace("\t", "  ")) // 2 + 1


def md_to_jira(markdown: str) -> str:
    """Convert markdown text to Jira wiki markup."""
    out: list[str] = []
    in_code = False
    for line in markdown.splitlines():
        fence = _FENCE.match(line)
        if fence:
            if in_code:
                out.append("{code}")
            else:
                lang = fence.group(2)
                out.append(f"{{code:{lang}}}" if lang else "{code}")
            in_code = not in_code
            continue
        if in_code:
            out.append(line)
            continue

        heading = _HEADING.match(line)
        bullet = _BULLET.match(line)
        numbered = _NUMBERED.match(line)
        quote = _QUOTE.match(line)
        if heading:
            out.append(f"h{len(heading.group(1))}. {_inline(heading.group(2))}")
        elif _RULE.match(line):
            out.append("----")
        elif bullet:
            out.append("*" * _list_depth(bullet.group(1)) + " " + _inline(bullet.group(2)))
        elif numbered:
            out.append("#" * _list_depth(numbered.group(1)) + " " + _inline(numbered.group(2)))
        elif quote:
            out.append(f"bq. {_inline(quote.group(1))}")
        else:
            out.append(_inline(line))

    if in_code:
        out.append("{code}")
    return "\n".join(out)
