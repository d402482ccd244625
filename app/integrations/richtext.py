"""
Rich-text normalization for synced task descriptions.

Providers describe task bodies as Markdown, Atlassian Document Format (ADF),
HTML or plain text. Everything is converted to the TipTap/ProseMirror JSON
document the app renders:

    {"type": "doc", "content": [{"type": "paragraph", "content": [...]}]}

All functions are pure and return ``None`` for empty input.
"""
import re
from html import unescape
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional, Sequence

Node = Dict[str, Any]

_FENCE_RE = re.compile(r"^\s*(```|~~~)\s*([\w+-]*)\s*$")
_HEADING_RE = re.compile(r"^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
_RULE_RE = re.compile(r"^\s{0,3}([-*_])(\s*\1){2,}\s*$")
_TASK_ITEM_RE = re.compile(r"^\s*[-*+]\s+\[([ xX])\]\s+(.*)$")
_BULLET_RE = re.compile(r"^\s*[-*+]\s+(.*)$")
_ORDERED_RE = re.compile(r"^\s*(\d+)[.)]\s+(.*)$")
_QUOTE_RE = re.compile(r"^\s*>\s?(.*)$")

_INLINE_RE = re.compile(
    r"(?P<code>`(?P<code_text>[^`]+)`)"
    r"|(?P<link>\[(?P<link_text>[^\]]+)\]\((?P<link_href>[^)\s]+)\))"
    r"|(?P<bold>\*\*(?P<bold_text>.+?)\*\*|__(?P<bold_alt>.+?)__)"
    r"|(?P<strike>~~(?P<strike_text>.+?)~~)"
    r"|(?P<italic>\*(?P<italic_text>[^*\s][^*]*?)\*|(?<!\w)_(?P<italic_alt>[^_\s][^_]*?)_(?!\w))"
    r"|(?P<url>https?://[^\s<>()\[\]]+)"
)


def _doc(content: List[Node]) -> Optional[Node]:
    if not content:
        return None
    return {"type": "doc", "content": content}


def _text(value: str, marks: Sequence[Node] = ()) -> Node:
    node: Node = {"type": "text", "text": value}
    if marks:
        node["marks"] = [dict(mark) for mark in marks]
    return node


def _paragraph(inline: List[Node]) -> Node:
    node: Node = {"type": "paragraph"}
    if inline:
        node["content"] = inline
    return node


# ================================================================================
# Markdown
# ================================================================================

def parse_inline_markdown(text: str, marks: Sequence[Node] = ()) -> List[Node]:
    """Convert one line of Markdown to text nodes with marks."""
    nodes: List[Node] = []
    position = 0

    for match in _INLINE_RE.finditer(text):
        if match.start() > position:
            nodes.append(_text(text[position:match.start()], marks))

        if match.group("code"):
            nodes.append(_text(match.group("code_text"), [*marks, {"type": "code"}]))
        elif match.group("link"):
            link_mark = {"type": "link", "attrs": {"href": match.group("link_href")}}
            nodes.extend(parse_inline_markdown(match.group("link_text"), [*marks, link_mark]))
        elif match.group("bold"):
            inner = match.group("bold_text") or match.group("bold_alt")
            nodes.extend(parse_inline_markdown(inner, [*marks, {"type": "bold"}]))
        elif match.group("strike"):
            nodes.extend(parse_inline_markdown(match.group("strike_text"), [*marks, {"type": "strike"}]))
        elif match.group("italic"):
            inner = match.group("italic_text") or match.group("italic_alt")
            nodes.extend(parse_inline_markdown(inner, [*marks, {"type": "italic"}]))
        else:
            url = match.group("url").rstrip(".,;:!?")
            nodes.append(_text(url, [*marks, {"type": "link", "attrs": {"href": url}}]))
            trailing = match.group("url")[len(url):]
            if trailing:
                nodes.append(_text(trailing, marks))

        position = match.end()

    if position < len(text):
        nodes.append(_text(text[position:], marks))

    return nodes


def _inline_lines(lines: List[str]) -> List[Node]:
    """Join consecutive paragraph lines with hard breaks."""
    inline: List[Node] = []
    for index, line in enumerate(lines):
        if index:
            inline.append({"type": "hardBreak"})
        inline.extend(parse_inline_markdown(line))
    return inline


def markdown_to_doc(markdown: Optional[str]) -> Optional[Node]:
    """
    Convert Markdown to a TipTap document.

    Supports headings, paragraphs, bullet/ordered/task lists, blockquotes,
    fenced code blocks, horizontal rules and inline bold, italic, strike,
    code and links. Nested lists are flattened.
    """
    if not markdown or not markdown.strip():
        return None

    lines = markdown.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    content: List[Node] = []
    paragraph: List[str] = []
    index = 0

    def flush_paragraph():
        if paragraph:
            content.append(_paragraph(_inline_lines(paragraph)))
            paragraph.clear()

    while index < len(lines):
        line = lines[index]

        fence = _FENCE_RE.match(line)
        if fence:
            flush_paragraph()
            marker, language = fence.group(1), fence.group(2)
            code_lines = []
            index += 1
            while index < len(lines) and not lines[index].strip().startswith(marker):
                code_lines.append(lines[index])
                index += 1
            index += 1  # closing fence
            block: Node = {"type": "codeBlock", "attrs": {"language": language or None}}
            if code_lines:
                block["content"] = [_text("\n".join(code_lines))]
            content.append(block)
            continue

        if not line.strip():
            flush_paragraph()
            index += 1
            continue

        if _RULE_RE.match(line):
            flush_paragraph()
            content.append({"type": "horizontalRule"})
            index += 1
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            flush_paragraph()
            node: Node = {"type": "heading", "attrs": {"level": min(len(heading.group(1)), 3)}}
            inline = parse_inline_markdown(heading.group(2))
            if inline:
                node["content"] = inline
            content.append(node)
            index += 1
            continue

        if _TASK_ITEM_RE.match(line):
            flush_paragraph()
            items = []
            while index < len(lines) and _TASK_ITEM_RE.match(lines[index]):
                item = _TASK_ITEM_RE.match(lines[index])
                items.append({
                    "type": "taskItem",
                    "attrs": {"checked": item.group(1).lower() == "x"},
                    "content": [_paragraph(parse_inline_markdown(item.group(2)))],
                })
                index += 1
            content.append({"type": "taskList", "content": items})
            continue

        if _BULLET_RE.match(line) or _ORDERED_RE.match(line):
            flush_paragraph()
            ordered = _BULLET_RE.match(line) is None
            pattern = _ORDERED_RE if ordered else _BULLET_RE
            items = []
            start = int(_ORDERED_RE.match(line).group(1)) if ordered else None
            while index < len(lines) and pattern.match(lines[index]) and not _TASK_ITEM_RE.match(lines[index]):
                text = pattern.match(lines[index]).groups()[-1]
                items.append({"type": "listItem", "content": [_paragraph(parse_inline_markdown(text))]})
                index += 1
            if ordered:
                content.append({"type": "orderedList", "attrs": {"start": start}, "content": items})
            else:
                content.append({"type": "bulletList", "content": items})
            continue

        if _QUOTE_RE.match(line):
            flush_paragraph()
            quoted = []
            while index < len(lines) and _QUOTE_RE.match(lines[index]):
                quoted.append(_QUOTE_RE.match(lines[index]).group(1))
                index += 1
            inner = markdown_to_doc("\n".join(quoted))
            content.append({"type": "blockquote", "content": inner["content"] if inner else [_paragraph([])]})
            continue

        paragraph.append(line.strip())
        index += 1

    flush_paragraph()
    return _doc(content)


# ================================================================================
# Plain text and HTML
# ================================================================================

def plain_text_to_doc(text: Optional[str]) -> Optional[Node]:
    """Wrap plain text in a document, one paragraph per line."""
    if not text or not text.strip():
        return None

    lines = text.replace("\r\n", "\n").replace("\r", "\n").strip("\n").split("\n")
    return _doc([
        _paragraph([_text(line)] if line.strip() else [])
        for line in lines
    ])


class _HTMLTextExtractor(HTMLParser):
    """Collect text from HTML, turning block boundaries into newlines."""

    BLOCK_TAGS = {"p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre"}
    SKIPPED_TAGS = {"head", "script", "style", "title"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts: List[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIPPED_TAGS:
            self._skip_depth += 1
        elif tag in self.BLOCK_TAGS:
            self.parts.append("\n")

    def handle_endtag(self, tag):
        if tag in self.SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in self.BLOCK_TAGS:
            self.parts.append("\n")

    def handle_data(self, data):
        if not self._skip_depth:
            self.parts.append(data)

    def text(self) -> str:
        raw = unescape("".join(self.parts)).replace("\xa0", " ")
        lines = [re.sub(r"[ \t]+", " ", line).strip() for line in raw.split("\n")]
        return "\n".join(line for line in lines if line)


def html_to_doc(html: Optional[str]) -> Optional[Node]:
    """Strip HTML markup and wrap the remaining text."""
    if not html or not html.strip():
        return None
    extractor = _HTMLTextExtractor()
    extractor.feed(html)
    extractor.close()
    return plain_text_to_doc(extractor.text())


# ================================================================================
# Atlassian Document Format
# ================================================================================

_ADF_BLOCK_RENAMES = {
    "paragraph": "paragraph",
    "heading": "heading",
    "bulletList": "bulletList",
    "orderedList": "orderedList",
    "listItem": "listItem",
    "blockquote": "blockquote",
    "codeBlock": "codeBlock",
    "taskList": "taskList",
    "taskItem": "taskItem",
    "rule": "horizontalRule",
    "hardBreak": "hardBreak",
}

_ADF_MARK_RENAMES = {
    "strong": "bold",
    "em": "italic",
    "code": "code",
    "strike": "strike",
    "underline": "underline",
}

# Container nodes whose children are kept without the wrapper
_ADF_TRANSPARENT = {"panel", "expand", "nestedExpand", "layoutSection", "layoutColumn", "table", "tableRow", "tableCell", "tableHeader", "bodiedExtension"}


def _adf_marks(marks: Optional[List[Node]]) -> List[Node]:
    converted = []
    for mark in marks or []:
        mark_type = mark.get("type")
        if mark_type == "link":
            href = (mark.get("attrs") or {}).get("href")
            if href:
                converted.append({"type": "link", "attrs": {"href": href}})
        elif mark_type in _ADF_MARK_RENAMES:
            converted.append({"type": _ADF_MARK_RENAMES[mark_type]})
    return converted


def _adf_node(node: Node) -> List[Node]:
    node_type = node.get("type")
    attrs = node.get("attrs") or {}

    if node_type == "text":
        text = node.get("text") or ""
        return [_text(text, _adf_marks(node.get("marks")))] if text else []

    if node_type == "mention":
        label = attrs.get("text") or ""
        return [_text(label)] if label else []

    if node_type == "emoji":
        label = attrs.get("text") or attrs.get("shortName") or ""
        return [_text(label)] if label else []

    if node_type in ("inlineCard", "blockCard"):
        url = attrs.get("url")
        if not url:
            return []
        link = _text(url, [{"type": "link", "attrs": {"href": url}}])
        return [link] if node_type == "inlineCard" else [_paragraph([link])]

    if node_type == "date":
        return [_text(str(attrs.get("timestamp", "")))] if attrs.get("timestamp") else []

    children: List[Node] = []
    for child in node.get("content") or []:
        children.extend(_adf_node(child))

    if node_type in _ADF_TRANSPARENT:
        return children

    if node_type not in _ADF_BLOCK_RENAMES:
        return []

    converted: Node = {"type": _ADF_BLOCK_RENAMES[node_type]}
    if node_type == "heading":
        converted["attrs"] = {"level": min(int(attrs.get("level", 1)), 3)}
    elif node_type == "orderedList":
        converted["attrs"] = {"start": attrs.get("order", 1)}
    elif node_type == "codeBlock":
        converted["attrs"] = {"language": attrs.get("language")}
    elif node_type == "taskItem":
        converted["attrs"] = {"checked": attrs.get("state") == "DONE"}
        # TipTap task items hold blocks, ADF task items hold inline nodes
        children = [_paragraph(children)]

    if children:
        converted["content"] = children
    return [converted]


def adf_to_doc(adf: Optional[Node]) -> Optional[Node]:
    """Convert an Atlassian Document Format tree (Jira descriptions)."""
    if not adf or not isinstance(adf, dict):
        return None

    if adf.get("type") != "doc":
        return _doc(_adf_node(adf))

    content: List[Node] = []
    for node in adf.get("content") or []:
        content.extend(_adf_node(node))
    return _doc(content)
