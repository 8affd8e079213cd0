"""
Formatting engine: rich-text commands as tree transformations over the
captured selection.
"""

import logging
import re
from typing import Callable, Dict, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from wikinexus.editor.sanitizer import IMAGE_CLASS, MARKER_ATTR, HANDLE_CLASS, sanitize
from wikinexus.editor.selection import SelectionTracker
from wikinexus.editor.tree import (
    BLOCK_TAGS, Surface, contains, find_ancestor, inline_run, isolate,
    sibling_runs, top_level, wrap_run,
)

logger = logging.getLogger(__name__)

COMMANDS = (
    'bold', 'italic', 'underline', 'fontSize', 'foreColor', 'hiliteColor',
    'removeFormat', 'createLink', 'formatBlock', 'insertUnorderedList',
    'insertOrderedList',
)
STICKY_COMMANDS = ('foreColor', 'hiliteColor', 'fontSize')

TOGGLE_TAGS = {
    'bold': ('b', ('b', 'strong')),
    'italic': ('i', ('i', 'em')),
    'underline': ('u', ('u',)),
}
INLINE_FORMAT_TAGS = ('b', 'strong', 'i', 'em', 'u', 's', 'strike', 'font', 'span', 'sub', 'sup')
FORMAT_BLOCK_TAGS = ('p', 'div', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'blockquote', 'pre')
LIST_TAGS = ('ul', 'ol')

# Default pixel size of each <font size> ordinal
FONT_SIZE_PX = {1: 10, 2: 13, 3: 16, 4: 18, 5: 24, 6: 32, 7: 48}
FONT_SIZE_BREAKPOINTS = ((10, 1), (13, 2), (16, 3), (18, 4), (24, 5), (32, 6))
DEFAULT_FONT_SIZE = 3
PT_TO_PX = 4 / 3

_FONT_SIZE_STYLE = re.compile(r'font-size\s*:\s*([\d.]+)\s*(px|pt)?', re.IGNORECASE)


def font_size_ordinal(px: float) -> int:
    """Map a pixel size onto the 1-7 font size scale."""
    for limit, ordinal in FONT_SIZE_BREAKPOINTS:
        if px <= limit:
            return ordinal
    return 7


def _plain_span(tag: Tag) -> bool:
    # Spans that carry editor structure are not formatting
    classes = tag.get('class', [])
    return not (tag.has_attr(MARKER_ATTR) or IMAGE_CLASS in classes or HANDLE_CLASS in classes)


def _is_format_element(tag: Tag) -> bool:
    return tag.name in INLINE_FORMAT_TAGS and (tag.name != 'span' or _plain_span(tag))


def merge_style(style: Optional[str], prop: str, value: str) -> str:
    """Set one declaration in an inline ``style``, keeping the others."""
    declarations = [d.strip() for d in (style or '').split(';') if d.strip()]
    kept = [d for d in declarations if d.split(':', 1)[0].strip().lower() != prop]
    kept.append(f"{prop}: {value}")
    return '; '.join(kept) + ';'


class FormattingEngine:
    """
    Applies formatting commands to the selection held by a SelectionTracker.

    ``commit(block_id, clean_markup)`` is called with sanitized content after
    every command; the editor session decides how to persist it.
    """

    def __init__(self, tracker: SelectionTracker,
                 surface_for: Callable[[str], Optional[Surface]],
                 commit: Callable[[str, str], None]):
        self.tracker = tracker
        self._surface_for = surface_for
        self._commit = commit

    def apply_format(self, command: str, value: Optional[str] = None) -> bool:
        if command not in COMMANDS:
            raise ValueError(f"Unknown formatting command: {command}")

        snapshot = self.tracker.snapshot
        if snapshot is None:
            return False
        surface = self._surface_for(snapshot.block_id)
        if surface is None:
            return False

        was_editable = surface.editable
        surface.editable = True
        try:
            nodes = self.tracker.restore()
            if not nodes:
                logger.debug(f"Nothing to format in block {snapshot.block_id}")
                return False
            self._run(surface, command, value, nodes)
            content = sanitize(surface.html())
        finally:
            surface.editable = was_editable

        logger.info(f"Applied {command} to block {snapshot.block_id}")
        self._commit(snapshot.block_id, content)

        if command in STICKY_COMMANDS:
            self.tracker.reselect(nodes)
        else:
            self.tracker.hide()
        return True

    def _run(self, surface: Surface, command: str, value: Optional[str], nodes: List[NavigableString]) -> None:
        soup = surface.soup
        unit = self.tracker.snapshot.marker if self.tracker.snapshot else None

        if command in TOGGLE_TAGS:
            tag_name, variants = TOGGLE_TAGS[command]
            if all(find_ancestor(n, variants, soup) is not None for n in nodes):
                self._strip(soup, nodes, lambda t: t.name in variants, unit)
            else:
                self._wrap(soup, nodes, lambda run: soup.new_tag(tag_name),
                           skip=lambda n: find_ancestor(n, variants, soup) is not None)
        elif command == 'fontSize':
            size = str(max(1, min(7, int(value or DEFAULT_FONT_SIZE))))
            self._set_attribute(soup, nodes, 'font', 'size', size)
        elif command == 'foreColor':
            if value:
                self._set_attribute(soup, nodes, 'font', 'color', value)
        elif command == 'hiliteColor':
            if value:
                self._set_attribute(soup, nodes, 'span', 'style', value,
                                    merge=lambda style, color: merge_style(style, 'background-color', color))
        elif command == 'removeFormat':
            self._strip(soup, nodes, _is_format_element, unit)
        elif command == 'createLink':
            if value:
                self._link(soup, nodes, value)
        elif command == 'formatBlock':
            self._format_block(soup, nodes, (value or 'p').strip('<>').lower())
        elif command == 'insertUnorderedList':
            self._toggle_list(soup, nodes, 'ul')
        elif command == 'insertOrderedList':
            self._toggle_list(soup, nodes, 'ol')

    # -- inline commands -----------------------------------------------------

    def _wrap(self, soup: BeautifulSoup, nodes, make_wrapper, skip=None) -> None:
        targets = [n for n in nodes if skip is None or not skip(n)]
        for run in sibling_runs(targets):
            wrap_run(soup, run, make_wrapper(run))

    def _strip(self, soup: BeautifulSoup, nodes, matches, unit: Optional[Tag]) -> None:
        """Remove matching inline elements around ``nodes``, splitting them where they extend further."""
        for node in nodes:
            while True:
                target = find_ancestor(node, INLINE_FORMAT_TAGS, soup, predicate=matches)
                if target is None:
                    break
                # Elements above the marker are split around the marker as a whole
                if unit is not None and contains(target, unit) and target is not unit:
                    isolate(soup, unit, target)
                else:
                    isolate(soup, node, target)
                target.unwrap()

    def _set_attribute(self, soup: BeautifulSoup, nodes, tag_name: str, attr: str, value: str,
                       merge: Optional[Callable[[Optional[str], str], str]] = None) -> None:
        for run in sibling_runs(nodes):
            parent = run[0].parent
            if (parent.name == tag_name and parent is not soup and _plain_span(parent)
                    and len(parent.contents) == len(run)):
                parent[attr] = merge(parent.get(attr), value) if merge else value
            else:
                new_value = merge(None, value) if merge else value
                wrap_run(soup, run, soup.new_tag(tag_name, attrs={attr: new_value}))

    def _link(self, soup: BeautifulSoup, nodes, href: str) -> None:
        loose = []
        for node in nodes:
            anchor = find_ancestor(node, ('a',), soup)
            if anchor is not None:
                anchor['href'] = href
            else:
                loose.append(node)
        self._wrap(soup, loose, lambda run: soup.new_tag('a', href=href))

    # -- block commands ------------------------------------------------------

    def _block_of(self, soup: BeautifulSoup, node: NavigableString):
        """Nearest retaggable block around ``node``, or the loose inline run it belongs to."""
        container = find_ancestor(node, FORMAT_BLOCK_TAGS + ('li',), soup)
        if container is not None:
            return container
        return inline_run(top_level(soup, node))

    def _distinct_blocks(self, soup: BeautifulSoup, nodes) -> List:
        blocks = []
        for node in nodes:
            block = self._block_of(soup, node)
            if not any(block is seen or (isinstance(block, list) and isinstance(seen, list)
                                          and block[0] is seen[0]) for seen in blocks):
                blocks.append(block)
        return blocks

    def _format_block(self, soup: BeautifulSoup, nodes, tag_name: str) -> None:
        if tag_name not in FORMAT_BLOCK_TAGS:
            raise ValueError(f"Unsupported block format: {tag_name}")
        for block in self._distinct_blocks(soup, nodes):
            if isinstance(block, list):
                wrap_run(soup, block, soup.new_tag(tag_name))
            elif block.name == 'li':
                if not (len(block.contents) == 1 and getattr(block.contents[0], 'name', None) in FORMAT_BLOCK_TAGS):
                    wrap_run(soup, list(block.contents), soup.new_tag(tag_name))
                else:
                    block.contents[0].name = tag_name
            else:
                block.name = tag_name

    def _toggle_list(self, soup: BeautifulSoup, nodes, list_tag: str) -> None:
        items = [find_ancestor(n, ('li',), soup) for n in nodes]
        if all(item is not None for item in items):
            lists = []
            for item in items:
                if not any(item.parent is seen for seen in lists):
                    lists.append(item.parent)
            if all(lst.name == list_tag for lst in lists):
                self._unlist(soup, items)
            else:
                for lst in lists:
                    lst.name = list_tag
            return

        blocks = self._distinct_blocks(soup, nodes)
        first = blocks[0][0] if isinstance(blocks[0], list) else blocks[0]
        new_list = soup.new_tag(list_tag)
        first.insert_before(new_list)
        for block in blocks:
            item = soup.new_tag('li')
            if isinstance(block, list):
                for node in block:
                    item.append(node.extract())
            else:
                for child in list(block.contents):
                    item.append(child.extract())
                block.decompose()
            new_list.append(item)

    def _unlist(self, soup: BeautifulSoup, items: List[Tag]) -> None:
        seen = []
        for item in items:
            if any(item is s for s in seen):
                continue
            seen.append(item)
            lst = item.parent
            isolate(soup, item, lst)
            item.name = 'p'
            lst.unwrap()

    # -- readback ------------------------------------------------------------

    def current_font_size(self) -> int:
        """Font size ordinal (1-7) at the start of the selection."""
        snapshot = self.tracker.snapshot
        if snapshot is None:
            return DEFAULT_FONT_SIZE
        surface = self._surface_for(snapshot.block_id)
        if surface is None:
            return DEFAULT_FONT_SIZE
        nodes = [n for n in snapshot.nodes if contains(surface.root, n)]
        if not nodes:
            return DEFAULT_FONT_SIZE

        element = nodes[0].parent
        while element is not None and element is not surface.root:
            if element.name == 'font' and element.get('size'):
                try:
                    return max(1, min(7, int(element['size'])))
                except ValueError:
                    pass
            match = _FONT_SIZE_STYLE.search(element.get('style', ''))
            if match:
                px = float(match.group(1))
                if (match.group(2) or 'px').lower() == 'pt':
                    px *= PT_TO_PX
                return font_size_ordinal(px)
            element = element.parent
        return font_size_ordinal(FONT_SIZE_PX[DEFAULT_FONT_SIZE])
