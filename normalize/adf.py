"""
Atlassian Document Format (ADF) helpers.

Jira REST v3 returns worklog and issue comments as a nested document of typed nodes. ``to_plain_text`` flattens
such a document into a single line of text; ``to_rich_document`` builds the document Jira expects when posting.
"""
import re
from typing import Any, Dict

PLACEHOLDER_TEXT = "Work on the ticket documented."

_WHITESPACE = re.compile(r"\s+")
_LINE_BREAK = re.compile(r"\r?\n")


def _node_text(node: Any) -> str:
    if not isinstance(node, dict):
        return ''
    kind = node.get('type')
    attrs = node.get('attrs') if isinstance(node.get('attrs'), dict) else {}
    if kind == 'text' and isinstance(node.get('text'), str):
        return node['text']
    if kind == 'hardBreak':
        return '\n'
    if kind == 'mention' and isinstance(attrs.get('text'), str):
        return attrs['text']
    if kind == 'emoji' and isinstance(attrs.get('shortName'), str):
        return attrs['shortName']
    content = node.get('content')
    if isinstance(content, list):
        return ' '.join(_node_text(child) for child in content).strip()
    # unknown leaf node types contribute nothing
    return ''


def to_plain_text(document: Any) -> str:
    """Return the plain text of an ADF document; strings pass through unchanged."""
    if not document:
        return ''
    if isinstance(document, str):
        return document
    return _WHITESPACE.sub(' ', _node_text(document)).strip()


def to_rich_document(text: str) -> Dict[str, Any]:
    """Build an ADF document with one paragraph per non-blank line of ``text``.

    Jira rejects empty comment documents, so blank input yields a single placeholder paragraph.
    """
    normalized = (text or '').strip()
    lines = [line.strip() for line in _LINE_BREAK.split(normalized)] if normalized else []
    lines = [line for line in lines if line] or [PLACEHOLDER_TEXT]
    return {
        'type': 'doc',
        'version': 1,
        'content': [{'type': 'paragraph', 'content': [{'type': 'text', 'text': line}]} for line in lines],
    }
