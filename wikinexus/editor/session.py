"""
Block editing state machine for one open page.

Each block is either ``viewing`` or ``editing``; at most one block edits at a
time. All storage calls go through the scheduler, so every response handler
first checks that the block it was issued for still exists (and, for saves,
that no newer edit started) before touching state.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from wikinexus.editor.events import EventTarget, Scheduler
from wikinexus.editor.formatting import FormattingEngine
from wikinexus.editor.media import InlineMedia, hydrate
from wikinexus.editor.navigation import CrossReferenceNavigator, Viewport
from wikinexus.editor.sanitizer import sanitize
from wikinexus.editor.selection import DomSelection, SelectionTracker
from wikinexus.editor.tree import Anchor, Surface
from wikinexus.errors import WikiError
from wikinexus.storage import BlockStore, FileUpload

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_TYPE = 'text'


class BlockMode(Enum):
    VIEWING = 'viewing'
    EDITING = 'editing'


@dataclass
class BlockState:
    id: str
    document_id: str
    type: str = DEFAULT_BLOCK_TYPE
    content: str = ''
    order: int = 0
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: Optional[str] = None
    mode: BlockMode = BlockMode.VIEWING
    surface: Optional[Surface] = None
    # Set when persisting this block failed; holds what could not be saved
    unsynced: bool = False
    failed_content: Optional[str] = None
    # Formatted content sent to the server and not yet answered
    pending_content: Optional[str] = None
    generation: int = 0

    def __post_init__(self):
        if self.surface is None:
            self.surface = Surface(self.id, self.content)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'BlockState':
        return cls(
            id=payload['id'],
            document_id=payload.get('documentId', ''),
            type=payload.get('type', DEFAULT_BLOCK_TYPE),
            content=payload.get('content') or '',
            order=payload.get('order', 0),
            attachments=list(payload.get('attachments') or []),
            updated_at=payload.get('updatedAt'),
        )

    def apply_payload(self, payload: Dict[str, Any]) -> None:
        """Take the server's representation without touching the surface."""
        self.content = payload.get('content') or ''
        self.type = payload.get('type', self.type)
        self.order = payload.get('order', self.order)
        if 'attachments' in payload:
            self.attachments = list(payload['attachments'] or [])
        self.updated_at = payload.get('updatedAt', self.updated_at)
        self.unsynced = False
        self.failed_content = None

    @property
    def editing(self) -> bool:
        return self.mode is BlockMode.EDITING


class PageState:
    """The open page and its blocks. Subscribers are told about every change."""

    def __init__(self, page_id: str, title: str = '', parent_id: Optional[str] = None,
                 blocks: Optional[List[BlockState]] = None):
        self.id = page_id
        self.title = title
        self.parent_id = parent_id
        self.blocks: List[BlockState] = blocks or []
        self._subscribers: List[Callable[[Optional[str]], None]] = []
        self.render_count = 0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'PageState':
        blocks = [BlockState.from_payload(b) for b in payload.get('blocks') or []]
        blocks.sort(key=lambda b: b.order)
        return cls(payload['id'], payload.get('title', ''), payload.get('parentId'), blocks)

    def subscribe(self, callback: Callable[[Optional[str]], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def notify(self, block_id: Optional[str] = None) -> None:
        self.render_count += 1
        for callback in list(self._subscribers):
            callback(block_id)

    def block(self, block_id: str) -> Optional[BlockState]:
        return next((b for b in self.blocks if b.id == block_id), None)

    def add_block(self, block: BlockState) -> None:
        self.blocks.append(block)
        self.notify(block.id)

    def remove_block(self, block_id: str) -> Optional[BlockState]:
        block = self.block(block_id)
        if block is not None:
            self.blocks = [b for b in self.blocks if b.id != block_id]
            self.notify(block_id)
        return block


class EditorSession:
    """
    Ties the editor components to one page.

    ``confirm(message) -> bool`` guards destructive actions; ``alert(message)``
    reports the failures the user must see (page creation, attachment upload).
    """

    def __init__(self, store: BlockStore, viewport: Viewport,
                 scheduler: Optional[Scheduler] = None,
                 confirm: Optional[Callable[[str], bool]] = None,
                 alert: Optional[Callable[[str], None]] = None,
                 origin: str = 'http://localhost:8000', path: str = '/',
                 pointer: Optional[EventTarget] = None):
        self.store = store
        self.scheduler = scheduler or Scheduler()
        self.pointer = pointer or EventTarget()
        self._confirm = confirm or (lambda message: True)
        self._alert = alert or (lambda message: logger.warning(f"Alert: {message}"))

        self.page: Optional[PageState] = None
        self.media: Optional[InlineMedia] = None
        self._loading: Optional[str] = None
        self._subscribers: List[Callable[[Optional[str]], None]] = []

        self.tracker = SelectionTracker(self.surface_for, self.scheduler)
        self.formatter = FormattingEngine(self.tracker, self.surface_for, self._commit_format)
        self.navigator = CrossReferenceNavigator(viewport, self.scheduler, self.load, origin, path)

    # -- page state ----------------------------------------------------------

    def subscribe(self, callback: Callable[[Optional[str]], None]) -> None:
        self._subscribers.append(callback)
        if self.page is not None:
            self.page.subscribe(callback)

    def block(self, block_id: str) -> Optional[BlockState]:
        return self.page.block(block_id) if self.page is not None else None

    def surface_for(self, block_id: str) -> Optional[Surface]:
        block = self.block(block_id)
        return block.surface if block is not None else None

    @property
    def editing_block_id(self) -> Optional[str]:
        if self.page is None:
            return None
        return next((b.id for b in self.page.blocks if b.editing), None)

    def _notify(self, block_id: Optional[str] = None) -> None:
        if self.page is not None:
            self.page.notify(block_id)

    def load(self, page_id: str) -> None:
        self._loading = page_id

        def loaded(payload):
            if self._loading != page_id:
                logger.debug(f"Ignoring stale load of page {page_id}")
                return
            self._loading = None
            self._drop_editor_state()
            page = PageState.from_payload(payload)
            for callback in self._subscribers:
                page.subscribe(callback)
            self.page = page
            logger.info(f"Loaded page {page_id} with {len(page.blocks)} blocks")
            page.notify()
            self.navigator.document_loaded(page_id)

        def failed(error: WikiError):
            if self._loading == page_id:
                self._loading = None
            logger.error(f"Failed to load page {page_id}: {error}")

        self.scheduler.submit(lambda: self.store.get_document(page_id), on_success=loaded, on_failure=failed)

    def open_page(self, page_id: Optional[str], highlight_term: Optional[str] = None) -> None:
        self.navigator.select_page(page_id, highlight_term)

    def create_page(self, title: str, parent_id: Optional[str] = None) -> None:
        def created(payload):
            logger.info(f"Created page {payload['id']}")
            self.open_page(payload['id'])

        def failed(error: WikiError):
            logger.error(f"Failed to create page {title!r}: {error}")
            self._alert("Failed to create page")

        self.scheduler.submit(lambda: self.store.create_document(title, parent_id),
                              on_success=created, on_failure=failed)

    def _drop_editor_state(self) -> None:
        if self.media is not None:
            self.media.close()
            self.media = None
        self.tracker.hide()

    # -- edit lifecycle ------------------------------------------------------

    def start_edit(self, block_id: str) -> bool:
        block = self.block(block_id)
        if block is None:
            return False
        if block.editing:
            return True

        current = self.editing_block_id
        if current is not None:
            self.cancel(current)
            block = self.block(block_id)
            if block is None:
                return False

        if self.tracker.snapshot is not None and self.tracker.snapshot.block_id == block_id:
            self.tracker.hide()

        block.mode = BlockMode.EDITING
        block.generation += 1
        block.surface.load(self._latest_content(block))
        block.surface.editable = True
        self.media = InlineMedia(
            block.surface, self.store, self.scheduler, self.pointer,
            on_change=lambda: self._notify(block_id),
            on_file_deleted=lambda file_id: self._forget_attachment(block_id, file_id),
            alert=self._alert,
        )
        logger.debug(f"Editing block {block_id} (generation {block.generation})")
        self._notify(block_id)
        return True

    @staticmethod
    def _latest_content(block: BlockState) -> str:
        if block.unsynced and block.failed_content is not None:
            return block.failed_content
        if block.pending_content is not None:
            return block.pending_content
        return block.content

    def _leave_edit(self, block: BlockState) -> None:
        if self.media is not None and self.media.surface is block.surface:
            self.media.close()
            self.media = None
        if self.tracker.snapshot is not None and self.tracker.snapshot.block_id == block.id:
            self.tracker.hide()
        block.mode = BlockMode.VIEWING
        block.surface.editable = False

    def update_draft(self, block_id: str, markup: str) -> bool:
        """Replace the editing surface's content (typing in the host UI)."""
        block = self.block(block_id)
        if block is None or not block.editing:
            return False
        block.surface.load(markup)
        hydrate(block.surface)
        if self.media is not None:
            self.media.selected_id = None
        return True

    def draft(self, block_id: str) -> Optional[str]:
        block = self.block(block_id)
        if block is None or not block.editing:
            return None
        return sanitize(block.surface.html())

    def save(self, block_id: str) -> bool:
        block = self.block(block_id)
        if block is None or not block.editing:
            return False
        content = sanitize(block.surface.html())
        generation = block.generation

        def saved(payload):
            current = self.block(block_id)
            if current is None or current.generation != generation:
                logger.debug(f"Ignoring stale save response for block {block_id}")
                return
            current.apply_payload(payload)
            if current.editing and sanitize(current.surface.html()) != content:
                # Edited again while the save was in flight
                self._notify(block_id)
                return
            if current.editing:
                self._leave_edit(current)
            current.surface.load(current.content)
            logger.info(f"Saved block {block_id}")
            self._notify(block_id)

        def failed(error: WikiError):
            current = self.block(block_id)
            if current is None:
                return
            current.unsynced = True
            current.failed_content = content
            logger.error(f"Failed to save block {block_id}: {error}")
            self._notify(block_id)

        self.scheduler.submit(lambda: self.store.update_block(block_id, content=content),
                              on_success=saved, on_failure=failed)
        return True

    def cancel(self, block_id: str) -> None:
        block = self.block(block_id)
        if block is None or not block.editing:
            return
        if not block.content:
            self.delete_block(block_id, confirm=False)
            return
        self._leave_edit(block)
        block.surface.load(block.pending_content if block.pending_content is not None else block.content)
        self._notify(block_id)

    def delete_block(self, block_id: str, confirm: bool = True) -> bool:
        block = self.block(block_id)
        if block is None:
            return False
        if confirm and not self._confirm("Delete this block?"):
            return False
        if block.editing:
            self._leave_edit(block)
        if self.tracker.snapshot is not None and self.tracker.snapshot.block_id == block_id:
            self.tracker.hide()
        self.page.remove_block(block_id)

        def failed(error: WikiError):
            logger.error(f"Failed to delete block {block_id}: {error}")

        self.scheduler.submit(
            lambda: self.store.delete_block(block_id),
            on_success=lambda _: logger.info(f"Deleted block {block_id}"),
            on_failure=failed,
        )
        return True

    # -- new blocks ----------------------------------------------------------

    def add_text_block(self, uploads: Optional[List[FileUpload]] = None) -> None:
        """Create an empty block at the end of the page and start editing it."""
        if self.page is None:
            return
        page_id = self.page.id
        order = len(self.page.blocks)

        def created(payload):
            if self.page is None or self.page.id != page_id:
                logger.debug(f"Ignoring block created for page {page_id} after navigation")
                return
            block = BlockState.from_payload(payload)
            self.page.add_block(block)
            self.start_edit(block.id)
            if uploads:
                self.upload_to_block(block.id, uploads)

        def failed(error: WikiError):
            logger.error(f"Failed to add block to page {page_id}: {error}")

        self.scheduler.submit(
            lambda: self.store.create_block(page_id, DEFAULT_BLOCK_TYPE, '', order),
            on_success=created, on_failure=failed,
        )

    def add_block_with_attachments(self, uploads: List[FileUpload]) -> None:
        if not uploads:
            return
        self.add_text_block(uploads=list(uploads))

    # -- attachments ---------------------------------------------------------

    def upload_to_block(self, block_id: str, uploads: List[FileUpload]) -> None:
        def uploaded(attachments):
            block = self.block(block_id)
            if block is None:
                logger.debug(f"Block {block_id} is gone; upload kept on the server only")
                return
            block.attachments.extend(attachments)
            self._notify(block_id)

        def failed(error: WikiError):
            logger.error(f"Failed to upload attachments to block {block_id}: {error}")
            self._alert("Failed to upload attachment")

        self.scheduler.submit(lambda: self.store.upload_files(list(uploads), block_id),
                              on_success=uploaded, on_failure=failed)

    def remove_attachment(self, block_id: str, file_id: str) -> None:
        if not self._confirm("Remove this attachment?"):
            return

        def failed(error: WikiError):
            logger.error(f"Failed to remove attachment {file_id}: {error}")

        self.scheduler.submit(lambda: self.store.delete_file(file_id),
                              on_success=lambda _: self._forget_attachment(block_id, file_id),
                              on_failure=failed)

    def _forget_attachment(self, block_id: str, file_id: str) -> None:
        block = self.block(block_id)
        if block is None:
            return
        block.attachments = [a for a in block.attachments if a.get('id') != file_id]
        self._notify(block_id)

    # -- formatting ----------------------------------------------------------

    def on_mouse_up(self, block_id: str, read_selection: Callable[[], Optional[DomSelection]]) -> None:
        if self.block(block_id) is not None:
            self.tracker.on_mouse_up(block_id, read_selection)

    def apply_format(self, command: str, value: Optional[str] = None) -> bool:
        return self.formatter.apply_format(command, value)

    def _commit_format(self, block_id: str, content: str) -> None:
        block = self.block(block_id)
        if block is None or block.editing:
            # Editing blocks keep the change in their draft until saved
            return
        block.pending_content = content

        def persisted(payload):
            current = self.block(block_id)
            if current is None or current.pending_content != content:
                logger.debug(f"Ignoring stale format response for block {block_id}")
                return
            current.pending_content = None
            if current.editing:
                # The draft already carries this change
                current.content = payload.get('content') or content
                return
            current.apply_payload(payload)
            self._notify(block_id)

        def failed(error: WikiError):
            current = self.block(block_id)
            if current is None or current.pending_content != content:
                return
            current.pending_content = None
            current.unsynced = True
            current.failed_content = content
            logger.error(f"Failed to persist formatting of block {block_id}: {error}")
            self._notify(block_id)

        self.scheduler.submit(lambda: self.store.update_block(block_id, content=content),
                              on_success=persisted, on_failure=failed)

    # -- inline media --------------------------------------------------------

    def insert_image(self, upload: FileUpload, caret: Optional[Anchor] = None) -> bool:
        if self.media is None:
            return False
        self.media.insert_image(upload, caret)
        return True

    # -- input ---------------------------------------------------------------

    def on_key(self, key: str) -> bool:
        if self.media is not None and self.media.on_key(key):
            return True
        return self.tracker.on_key(key)

    def on_document_mouse_down(self, target_block_id: Optional[str], in_toolbar: bool = False) -> None:
        in_block = target_block_id is not None and self.block(target_block_id) is not None
        self.tracker.on_document_mouse_down(in_block, in_toolbar)

    def handle_link(self, href: str) -> bool:
        return self.navigator.handle_link(href)

    # -- rendering -----------------------------------------------------------

    def render_block(self, block_id: str) -> Optional[str]:
        """Current markup of a block: the live surface while editing, view markup otherwise."""
        block = self.block(block_id)
        if block is None:
            return None
        if block.editing:
            return block.surface.html()
        return self.navigator.render_block(sanitize(block.surface.html()))
