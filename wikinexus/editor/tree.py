"""
Block content as a document tree.

Every editable block is held as a BeautifulSoup fragment (a ``Surface``).
Positions inside it are ``Anchor`` objects: a path of child indices from the
surface root to a node, plus an offset that counts characters inside a text
node or children inside an element (the same convention as a DOM Range
boundary). Anchors compare in document order through ``boundary_key``.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup, NavigableString, PageElement, Tag
from bs4.element import PreformattedString

logger = logging.getLogger(__name__)

PARSER = 'html.parser'

# Elements that start their own line; everything else is inline content
BLOCK_TAGS = {
    'p', 'div', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'blockquote', 'pre',
    'ul', 'ol', 'li', 'table', 'hr',
}


def parse_fragment(markup: Optional[str]) -> BeautifulSoup:
    return BeautifulSoup(markup or '', PARSER)


def serialize(root: Tag) -> str:
    """Inner markup of ``root``."""
    return root.decode_contents()


def is_text(node: PageElement) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def child_index(node: PageElement) -> int:
    # bs4 compares tags structurally and strings by value, so look up by identity
    for index, child in enumerate(node.parent.contents):
        if child is node:
            return index
    raise ValueError("Node is not a child of its parent")


def node_path(root: Tag, node: PageElement) -> Tuple[int, ...]:
    path = []
    current = node
    while current is not root:
        if current.parent is None:
            raise ValueError("Node is not attached to this surface")
        path.append(child_index(current))
        current = current.parent
    return tuple(reversed(path))


def node_at(root: Tag, path: Tuple[int, ...]) -> PageElement:
    node = root
    for index in path:
        if not isinstance(node, Tag) or index >= len(node.contents):
            raise ValueError(f"Path {path} does not resolve in this surface")
        node = node.contents[index]
    return node


def node_length(node: PageElement) -> int:
    if is_text(node):
        return len(node)
    if isinstance(node, Tag):
        return len(node.contents)
    return 0


def contains(ancestor: PageElement, node: PageElement) -> bool:
    current = node
    while current is not None:
        if current is ancestor:
            return True
        current = current.parent
    return False


def find_ancestor(node: PageElement, names, stop: Tag, predicate=None) -> Optional[Tag]:
    """Nearest ancestor of ``node`` below ``stop`` whose tag name is in ``names``."""
    current = node.parent
    while current is not None and current is not stop:
        if current.name in names and (predicate is None or predicate(current)):
            return current
        current = current.parent
    return None


def iter_text_nodes(root: Tag) -> Iterator[NavigableString]:
    for node in list(root.descendants):
        if is_text(node) and len(node):
            yield node


def split_text(node: NavigableString, offset: int) -> Tuple[NavigableString, NavigableString]:
    """Replace ``node`` with two text nodes split at ``offset``."""
    head = NavigableString(str(node)[:offset])
    tail = NavigableString(str(node)[offset:])
    node.replace_with(head)
    head.insert_after(tail)
    return head, tail


def copy_tag(soup: BeautifulSoup, tag: Tag) -> Tag:
    """Shallow copy of ``tag``: same name and attributes, no children."""
    attrs = {key: (list(value) if isinstance(value, list) else value)
             for key, value in tag.attrs.items()}
    return soup.new_tag(tag.name, attrs=attrs)


def isolate(soup: BeautifulSoup, node: PageElement, ancestor: Tag) -> None:
    """
    Split every element from ``node``'s parent up to ``ancestor`` so that each
    of them holds nothing but the path to ``node``. Siblings move into shallow
    copies placed before and after. Afterwards ``ancestor`` can be unwrapped
    without touching anything outside ``node``.
    """
    child = node
    while True:
        parent = child.parent
        index = child_index(child)
        before = list(parent.contents[:index])
        after = list(parent.contents[index + 1:])
        if before:
            head = copy_tag(soup, parent)
            for sibling in before:
                head.append(sibling.extract())
            parent.insert_before(head)
        if after:
            tail = copy_tag(soup, parent)
            for sibling in after:
                tail.append(sibling.extract())
            parent.insert_after(tail)
        if parent is ancestor:
            return
        child = parent


@dataclass(frozen=True)
class Anchor:
    path: Tuple[int, ...]
    offset: int

    def resolve(self, root: Tag) -> Tuple[PageElement, int]:
        node = node_at(root, self.path)
        if self.offset < 0 or self.offset > node_length(node):
            raise ValueError(f"Offset {self.offset} out of range for {self.path}")
        return node, self.offset

    @classmethod
    def at(cls, root: Tag, node: PageElement, offset: int) -> 'Anchor':
        return cls(node_path(root, node), offset)


def boundary_key(root: Tag, node: PageElement, offset: int) -> Tuple[int, ...]:
    return node_path(root, node) + (offset,)


@dataclass(frozen=True)
class TextRange:
    start: Anchor
    end: Anchor

    @property
    def collapsed(self) -> bool:
        return self.start == self.end

    def clone(self) -> 'TextRange':
        return TextRange(self.start, self.end)

    @classmethod
    def caret(cls, root: Tag, node: PageElement, offset: int) -> 'TextRange':
        anchor = Anchor.at(root, node, offset)
        return cls(anchor, anchor)

    @classmethod
    def around(cls, root: Tag, node: PageElement) -> 'TextRange':
        """Range selecting the whole content of ``node``."""
        return cls(Anchor.at(root, node, 0), Anchor.at(root, node, node_length(node)))

    @classmethod
    def spanning(cls, root: Tag, first: PageElement, last: PageElement) -> 'TextRange':
        return cls(Anchor.at(root, first, 0), Anchor.at(root, last, node_length(last)))


def covered_text_nodes(root: Tag, text_range: TextRange) -> List[NavigableString]:
    """
    Text nodes lying inside ``text_range``, in document order. Text nodes cut
    by a boundary are split first, so every returned node is covered whole.
    Raises ValueError if the range no longer resolves.
    """
    start_node, start_offset = text_range.start.resolve(root)
    end_node, end_offset = text_range.end.resolve(root)

    if is_text(end_node) and 0 < end_offset < len(end_node):
        head, _ = split_text(end_node, end_offset)
        if start_node is end_node:
            start_node = head
        end_node = head
    if is_text(start_node) and 0 < start_offset < len(start_node):
        _, tail = split_text(start_node, start_offset)
        if end_node is start_node:
            end_offset -= start_offset
            end_node = tail
        start_node, start_offset = tail, 0

    start_key = boundary_key(root, start_node, start_offset)
    end_key = boundary_key(root, end_node, end_offset)
    if start_key > end_key:
        start_key, end_key = end_key, start_key

    nodes = []
    for node in iter_text_nodes(root):
        if start_key <= boundary_key(root, node, 0) and boundary_key(root, node, len(node)) <= end_key:
            nodes.append(node)
    return nodes


def sibling_runs(nodes: List[PageElement]) -> List[List[PageElement]]:
    """Group ``nodes`` into runs of directly adjacent siblings."""
    runs: List[List[PageElement]] = []
    for node in nodes:
        if runs and runs[-1][-1].next_sibling is node:
            runs[-1].append(node)
        else:
            runs.append([node])
    return runs


def wrap_run(soup: BeautifulSoup, run: List[PageElement], wrapper: Tag) -> Tag:
    run[0].insert_before(wrapper)
    for node in run:
        wrapper.append(node.extract())
    return wrapper


def top_level(root: Tag, node: PageElement) -> PageElement:
    """The child of ``root`` that contains ``node``."""
    current = node
    while current.parent is not root:
        if current.parent is None:
            raise ValueError("Node is not attached to this surface")
        current = current.parent
    return current


def inline_run(node: PageElement) -> List[PageElement]:
    """Contiguous inline siblings around ``node`` (stopping at block tags and <br>)."""
    def is_inline(item):
        return not (isinstance(item, Tag) and (item.name in BLOCK_TAGS or item.name == 'br'))

    run = [node]
    previous = node.previous_sibling
    while previous is not None and is_inline(previous):
        run.insert(0, previous)
        previous = previous.previous_sibling
    following = node.next_sibling
    while following is not None and is_inline(following):
        run.append(following)
        following = following.next_sibling
    return run


class InsertionPoint:
    """A stable place to insert nodes: before ``before`` inside ``parent``, or at the end."""

    def __init__(self, parent: Tag, before: Optional[PageElement] = None):
        self.parent = parent
        self.before = before

    def insert(self, node: PageElement) -> None:
        if self.before is not None and self.before.parent is self.parent:
            self.before.insert_before(node)
        else:
            self.parent.append(node)

    @classmethod
    def at(cls, root: Tag, anchor: Optional[Anchor]) -> 'InsertionPoint':
        """Resolve ``anchor`` (splitting a text node if needed); None appends to ``root``."""
        if anchor is None:
            return cls(root)
        node, offset = anchor.resolve(root)
        if is_text(node):
            if offset == 0:
                return cls(node.parent, node)
            if offset >= len(node):
                return cls(node.parent, node.next_sibling)
            _, tail = split_text(node, offset)
            return cls(tail.parent, tail)
        children = node.contents
        return cls(node, children[offset] if offset < len(children) else None)


class Surface:
    """The editable tree of one block."""

    def __init__(self, block_id: str, markup: str = ''):
        self.block_id = block_id
        self.editable = False
        self.soup = parse_fragment(markup)

    @property
    def root(self) -> BeautifulSoup:
        return self.soup

    def html(self) -> str:
        return serialize(self.soup)

    def load(self, markup: str) -> None:
        self.soup = parse_fragment(markup)

    def new_tag(self, name: str, **attrs) -> Tag:
        return self.soup.new_tag(name, attrs=attrs)

    def text(self) -> str:
        return self.soup.get_text()

    def __repr__(self):
        return f"<Surface block={self.block_id} editable={self.editable}>"
