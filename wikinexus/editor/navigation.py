"""
Cross-reference navigation: deep links between pages and blocks, linkified
URLs and search-term highlighting in rendered block content.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import NavigableString

from wikinexus.editor.events import Scheduler
from wikinexus.editor.tree import find_ancestor, iter_text_nodes, parse_fragment, serialize

logger = logging.getLogger(__name__)

HIGHLIGHT_CLASSES = ('ring-2', 'ring-blue-500', 'ring-offset-2')
HIGHLIGHT_DURATION = 2.0  # seconds
MIN_BARE_BLOCK_ID = 10
SEARCH_HIGHLIGHT_CLASS = 'search-highlight'

URL_PATTERN = re.compile(r'https?://[^\s<>"]+', re.IGNORECASE)
TRAILING_PUNCTUATION = '.,;:!?)]}\'"'
LINKIFY_SKIP_TAGS = ('a', 'script', 'style', 'code', 'pre', 'textarea')
HIGHLIGHT_SKIP_TAGS = ('script', 'style', 'textarea')


def linkify(markup: str) -> str:
    """Turn plain http(s) URLs in text into links opening in a new tab."""
    if not markup:
        return markup or ''
    soup = parse_fragment(markup)

    for node in list(iter_text_nodes(soup)):
        if find_ancestor(node, LINKIFY_SKIP_TAGS, soup) is not None:
            continue
        text = str(node)
        pieces = []
        pos = 0
        for match in URL_PATTERN.finditer(text):
            url = match.group(0).rstrip(TRAILING_PUNCTUATION)
            if len(url) <= len('https://'):
                continue
            start = match.start()
            pieces.append(text[pos:start])
            link = soup.new_tag('a', href=url, target='_blank', rel='noopener noreferrer')
            link.string = url
            pieces.append(link)
            pos = start + len(url)
        if not pieces:
            continue
        pieces.append(text[pos:])
        for piece in pieces:
            if isinstance(piece, str):
                if not piece:
                    continue
                piece = NavigableString(piece)
            node.insert_before(piece)
        node.extract()

    return serialize(soup)


def highlight_search_term(markup: str, term: Optional[str]) -> str:
    """Wrap case-insensitive matches of ``term`` in text (never in tags or attributes)."""
    if not markup or not term:
        return markup or ''
    soup = parse_fragment(markup)
    pattern = re.compile(re.escape(term), re.IGNORECASE)

    for node in list(iter_text_nodes(soup)):
        if find_ancestor(node, HIGHLIGHT_SKIP_TAGS, soup) is not None:
            continue
        if find_ancestor(node, ('mark',), soup,
                         predicate=lambda t: SEARCH_HIGHLIGHT_CLASS in t.get('class', [])) is not None:
            continue
        text = str(node)
        if not pattern.search(text):
            continue
        pos = 0
        for match in pattern.finditer(text):
            if match.start() > pos:
                node.insert_before(NavigableString(text[pos:match.start()]))
            mark = soup.new_tag('mark', attrs={'class': SEARCH_HIGHLIGHT_CLASS})
            mark.string = match.group(0)
            node.insert_before(mark)
            pos = match.end()
        if pos < len(text):
            node.insert_before(NavigableString(text[pos:]))
        node.extract()

    return serialize(soup)


def clear_search_highlights(markup: str) -> str:
    if not markup:
        return markup or ''
    soup = parse_fragment(markup)
    for mark in soup.find_all('mark', class_=SEARCH_HIGHLIGHT_CLASS):
        mark.unwrap()
    soup.smooth()
    return serialize(soup)


def build_deep_link(origin: str, path: str, page_id: str, block_id: Optional[str] = None) -> str:
    """``<origin><path>#<page>`` or ``#<page>:<block>``."""
    fragment = f"{page_id}:{block_id}" if block_id else page_id
    return f"{origin.rstrip('/')}{path or '/'}#{fragment}"


def parse_location_hash(fragment: str) -> Optional[Tuple[str, Optional[str]]]:
    """Split ``page`` or ``page:block`` (leading ``#`` allowed) into (page_id, block_id)."""
    fragment = (fragment or '').lstrip('#')
    if not fragment:
        return None
    page_id, _, block_id = fragment.partition(':')
    if not page_id:
        return None
    return page_id, (block_id or None)


class Viewport(ABC):
    """What the navigator needs from the host UI."""

    @abstractmethod
    def scroll_into_view(self, element_id: str, smooth: bool = True, center: bool = True) -> bool:
        """Scroll to the element; False when it is not rendered."""

    @abstractmethod
    def add_classes(self, element_id: str, classes: Tuple[str, ...]) -> None:
        pass

    @abstractmethod
    def remove_classes(self, element_id: str, classes: Tuple[str, ...]) -> None:
        pass

    @abstractmethod
    def scroll_to_first_match(self, css_class: str) -> bool:
        pass

    @abstractmethod
    def push_history(self, url: str) -> None:
        pass


class CrossReferenceNavigator:
    """
    Reacts to link activations and page loads.

    ``load_page(page_id)`` is supplied by the editor session; once the page is
    rendered the session calls ``document_loaded`` so any pending block scroll
    can run.
    """

    def __init__(self, viewport: Viewport, scheduler: Scheduler,
                 load_page: Callable[[str], None], origin: str, path: str = '/'):
        self.viewport = viewport
        self.scheduler = scheduler
        self._load_page = load_page
        self.origin = origin.rstrip('/')
        self.path = path or '/'
        self.current_page_id: Optional[str] = None
        self.pending_block_id: Optional[str] = None
        self.highlight_term: Optional[str] = None
        self.history: List[str] = []
        self._term_scrolled = False

    def _push(self, page_id: Optional[str], block_id: Optional[str] = None) -> None:
        url = build_deep_link(self.origin, self.path, page_id, block_id) if page_id else f"{self.origin}{self.path}"
        self.history.append(url)
        self.viewport.push_history(url)

    def handle_link(self, href: str) -> bool:
        """Returns True when the link was a same-origin deep link and has been handled."""
        if not href:
            return False
        target = urlsplit(urljoin(f"{self.origin}{self.path}", href))
        base = urlsplit(self.origin)
        if (target.scheme, target.netloc) != (base.scheme, base.netloc) or not target.fragment:
            return False

        fragment = target.fragment
        if ':' in fragment:
            page_id, _, block_id = fragment.partition(':')
            if page_id and block_id:
                self.navigate_to_block(page_id, block_id)
                return True
            return False
        if len(fragment) > MIN_BARE_BLOCK_ID:
            self.scroll_to_block(fragment)
            return True
        return False

    def navigate_to_block(self, page_id: str, block_id: str) -> None:
        if page_id == self.current_page_id:
            self.scroll_to_block(block_id)
            return
        logger.info(f"Navigating to block {block_id} on page {page_id}")
        self.pending_block_id = block_id
        self.current_page_id = page_id
        self._push(page_id, block_id)
        self._load_page(page_id)

    def select_page(self, page_id: Optional[str], highlight_term: Optional[str] = None) -> None:
        """Plain page navigation (tree click or search result)."""
        self.set_highlight_term(highlight_term)
        self.pending_block_id = None
        self.current_page_id = page_id
        self._push(page_id)
        if page_id:
            self._load_page(page_id)

    def open_location(self, url: str) -> Optional[str]:
        """Initial load from a ``#page`` or ``#page:block`` location. Returns the page id."""
        target = parse_location_hash(urlsplit(url).fragment)
        if target is None:
            return None
        page_id, block_id = target
        self.current_page_id = page_id
        self.pending_block_id = block_id
        self._load_page(page_id)
        return page_id

    def scroll_to_block(self, block_id: str) -> bool:
        if not self.viewport.scroll_into_view(block_id, smooth=True, center=True):
            logger.debug(f"Block {block_id} is not on the current page")
            return False
        self.viewport.add_classes(block_id, HIGHLIGHT_CLASSES)
        self.scheduler.call_later(
            HIGHLIGHT_DURATION,
            lambda: self.viewport.remove_classes(block_id, HIGHLIGHT_CLASSES),
        )
        return True

    def document_loaded(self, page_id: str) -> None:
        if page_id != self.current_page_id:
            self.current_page_id = page_id
        if self.pending_block_id:
            block_id = self.pending_block_id
            self.pending_block_id = None
            self.scroll_to_block(block_id)
        elif self.highlight_term and not self._term_scrolled:
            self._term_scrolled = True
            self.viewport.scroll_to_first_match(SEARCH_HIGHLIGHT_CLASS)

    def set_highlight_term(self, term: Optional[str]) -> None:
        self.highlight_term = term or None
        self._term_scrolled = False

    def render_block(self, content: str) -> str:
        """View-mode markup for a block: linkified, with the active term highlighted."""
        html = linkify(content)
        if self.highlight_term:
            html = highlight_search_term(html, self.highlight_term)
        return html
