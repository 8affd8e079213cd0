"""
Content sanitizer.

Strips editor-only markup from block content before it is persisted:
selection marker wrappers (their content is kept), inline-image resize
handles and the ``selected``/``dragging`` state classes. Active content
(``<script>``, ``<style>``, ``on*`` attributes, ``javascript:`` URLs) is
dropped as well, since persisted HTML is rendered as-is.

``sanitize`` is pure and idempotent.
"""

import logging

from bs4.element import PreformattedString

from wikinexus.editor.tree import parse_fragment, serialize

logger = logging.getLogger(__name__)

MARKER_ATTR = 'data-selection-marker'
IMAGE_CLASS = 'inline-image'
HANDLE_CLASS = 'resize-handle'
STATE_CLASSES = ('selected', 'dragging')
ACTIVE_TAGS = ('script', 'style', 'iframe', 'object', 'embed')
URL_ATTRS = ('href', 'src')


def _is_safe_url(value: str) -> bool:
    # Browsers ignore embedded whitespace/control characters in the scheme
    scheme = ''.join(ch for ch in value.split(':', 1)[0] if ch > ' ').lower()
    return ':' not in value or scheme not in ('javascript', 'vbscript', 'data') or value.lower().startswith('data:image/')


def sanitize(markup: str) -> str:
    if not markup:
        return ''

    soup = parse_fragment(markup)

    # Comments, CDATA sections, processing instructions and doctypes
    for node in soup.find_all(string=lambda s: isinstance(s, PreformattedString)):
        node.extract()

    for tag in soup.find_all(ACTIVE_TAGS):
        if not tag.decomposed:
            tag.decompose()

    for handle in soup.find_all(class_=HANDLE_CLASS):
        if not handle.decomposed:
            handle.decompose()

    for marker in soup.find_all(attrs={MARKER_ATTR: True}):
        marker.unwrap()

    for wrapper in soup.find_all(class_=IMAGE_CLASS):
        classes = [c for c in wrapper.get('class', []) if c not in STATE_CLASSES]
        if classes:
            wrapper['class'] = classes
        else:
            del wrapper['class']

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith('on'):
                del tag[attr]
            elif attr.lower() in URL_ATTRS and not _is_safe_url(str(tag[attr])):
                logger.warning(f"Sanitizer: dropped unsafe {attr} on <{tag.name}>")
                del tag[attr]

    return serialize(soup)


def strip_selection_markers(markup: str) -> str:
    """Remove only the selection marker wrappers, keeping what they wrap."""
    soup = parse_fragment(markup)
    for marker in soup.find_all(attrs={MARKER_ATTR: True}):
        marker.unwrap()
    return serialize(soup)


def is_clean(markup: str) -> bool:
    """True if ``markup`` holds no transient editor state."""
    soup = parse_fragment(markup)
    if soup.find(class_=HANDLE_CLASS) or soup.find(attrs={MARKER_ATTR: True}):
        return False
    for wrapper in soup.find_all(class_=IMAGE_CLASS):
        if any(c in STATE_CLASSES for c in wrapper.get('class', [])):
            return False
    return True
