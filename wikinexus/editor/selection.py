"""
Selection tracking for the floating formatting toolbar.

The snapshot and the toolbar are "hot" interaction state: they live here and
are mutated directly, never through the page store, so showing or hiding the
toolbar does not re-render any block.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from bs4 import NavigableString, Tag

from wikinexus.editor.events import Scheduler
from wikinexus.editor.sanitizer import MARKER_ATTR, IMAGE_CLASS
from wikinexus.editor.tree import (
    Surface, TextRange, covered_text_nodes, contains, find_ancestor, wrap_run,
)

logger = logging.getLogger(__name__)

SETTLE_DELAY = 0.01  # seconds; lets the browser finish the selection
TOOLBAR_OFFSET_TOP = 50
TOOLBAR_HALF_WIDTH = 75
TOOLBAR_MIN_LEFT = 10


@dataclass(frozen=True)
class Rect:
    top: float
    left: float
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True)
class DomSelection:
    """What the host UI reports about the live selection."""
    range: TextRange
    rect: Rect
    scroll_x: float = 0.0
    scroll_y: float = 0.0


@dataclass(frozen=True)
class ToolbarPosition:
    top: float
    left: float


def toolbar_position(rect: Rect, scroll_x: float = 0.0, scroll_y: float = 0.0) -> ToolbarPosition:
    top = rect.top + scroll_y - TOOLBAR_OFFSET_TOP
    left = max(TOOLBAR_MIN_LEFT, rect.left + scroll_x + rect.width / 2 - TOOLBAR_HALF_WIDTH)
    return ToolbarPosition(top=top, left=left)


class FloatingToolbar:
    def __init__(self):
        self.visible = False
        self.position: Optional[ToolbarPosition] = None
        self.color_picker_open = False
        self.size_picker_open = False

    def show(self, position: ToolbarPosition) -> None:
        self.visible = True
        self.position = position

    def hide(self) -> None:
        self.visible = False
        self.collapse_pickers()

    def toggle_color_picker(self) -> None:
        self.color_picker_open = not self.color_picker_open
        self.size_picker_open = False

    def toggle_size_picker(self) -> None:
        self.size_picker_open = not self.size_picker_open
        self.color_picker_open = False

    def collapse_pickers(self) -> None:
        self.color_picker_open = False
        self.size_picker_open = False


@dataclass
class SelectionSnapshot:
    block_id: str
    range: TextRange
    text: str
    position: ToolbarPosition
    marker: Optional[Tag] = None
    nodes: List[NavigableString] = field(default_factory=list)


def _selectable(node: NavigableString, root: Tag) -> bool:
    return find_ancestor(node, ('span',), root,
                         predicate=lambda t: IMAGE_CLASS in t.get('class', [])) is None


class SelectionTracker:
    def __init__(self, surface_for: Callable[[str], Optional[Surface]],
                 scheduler: Scheduler, toolbar: Optional[FloatingToolbar] = None):
        self._surface_for = surface_for
        self._scheduler = scheduler
        self.toolbar = toolbar or FloatingToolbar()
        self.snapshot: Optional[SelectionSnapshot] = None

    @property
    def active(self) -> bool:
        return self.snapshot is not None

    def on_mouse_up(self, block_id: str, read_selection: Callable[[], Optional[DomSelection]]) -> None:
        """Capture the selection once it has settled."""
        self._scheduler.call_later(SETTLE_DELAY, lambda: self.capture(block_id, read_selection()))

    def capture(self, block_id: str, selection: Optional[DomSelection]) -> Optional[SelectionSnapshot]:
        if selection is None or selection.range.collapsed:
            self.hide()
            return None

        surface = self._surface_for(block_id)
        if surface is None:
            self.hide()
            return None

        root = surface.root
        try:
            nodes = [n for n in covered_text_nodes(root, selection.range) if _selectable(n, root)]
        except ValueError as e:
            logger.debug(f"Selection in block {block_id} does not resolve: {e}")
            self.hide()
            return None
        if not nodes:
            self.hide()
            return None

        # Node references survive unwrapping the previous marker
        self._release()
        text = ''.join(str(n) for n in nodes)
        marker = self._wrap_in_marker(surface, nodes)
        if marker is not None:
            text_range = TextRange.around(root, marker)
        else:
            text_range = TextRange.spanning(root, nodes[0], nodes[-1])

        position = toolbar_position(selection.rect, selection.scroll_x, selection.scroll_y)
        self.snapshot = SelectionSnapshot(
            block_id=block_id,
            range=text_range.clone(),
            text=text,
            position=position,
            marker=marker,
            nodes=nodes,
        )
        self.toolbar.show(position)
        logger.debug(f"Captured selection in block {block_id}: {len(text)} chars, marker={marker is not None}")
        return self.snapshot

    def _wrap_in_marker(self, surface: Surface, nodes: List[NavigableString]) -> Optional[Tag]:
        # Only when the selection does not cut through an element
        first, last = nodes[0], nodes[-1]
        parent = first.parent
        if last.parent is not parent:
            return None
        run = []
        current = first
        while current is not None:
            run.append(current)
            if current is last:
                break
            current = current.next_sibling
        if current is None:
            return None
        marker = surface.new_tag('span', **{MARKER_ATTR: 'true'})
        return wrap_run(surface.soup, run, marker)

    def restore(self) -> Optional[List[NavigableString]]:
        """Text nodes of the saved selection, re-resolved against the current tree."""
        snapshot = self.snapshot
        if snapshot is None:
            return None
        surface = self._surface_for(snapshot.block_id)
        if surface is None:
            return None
        root = surface.root

        if snapshot.marker is not None and contains(root, snapshot.marker):
            nodes = [n for n in covered_text_nodes(root, TextRange.around(root, snapshot.marker))
                     if _selectable(n, root)]
        else:
            snapshot.marker = None
            try:
                nodes = [n for n in covered_text_nodes(root, snapshot.range) if _selectable(n, root)]
            except ValueError as e:
                logger.debug(f"Saved range no longer resolves: {e}")
                return None
        snapshot.nodes = nodes
        return nodes

    def reselect(self, nodes: List[NavigableString]) -> None:
        """Point the snapshot at ``nodes`` again after the tree was rewritten."""
        snapshot = self.snapshot
        if snapshot is None:
            return
        surface = self._surface_for(snapshot.block_id)
        if surface is None:
            return
        root = surface.root
        if snapshot.marker is not None and contains(root, snapshot.marker):
            snapshot.range = TextRange.around(root, snapshot.marker)
        else:
            attached = [n for n in nodes if contains(root, n)]
            if not attached:
                return
            snapshot.range = TextRange.spanning(root, attached[0], attached[-1])
        snapshot.nodes = nodes

    def _release(self) -> None:
        snapshot = self.snapshot
        if snapshot is not None and snapshot.marker is not None and snapshot.marker.parent is not None:
            snapshot.marker.unwrap()
        self.snapshot = None

    def hide(self) -> None:
        self._release()
        self.toolbar.hide()

    def on_document_mouse_down(self, in_block: bool, in_toolbar: bool) -> None:
        if not in_block and not in_toolbar:
            self.hide()

    def on_key(self, key: str) -> bool:
        if key == 'Escape' and (self.active or self.toolbar.visible):
            self.hide()
            return True
        return False
