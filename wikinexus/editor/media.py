"""
Inline images inside a block surface.

An inline image is a non-editable wrapper element::

    <span class="inline-image" contenteditable="false"
          data-file-id="..." data-wrap="left" style="width: 300px; height: 200px;">
      <img src="/api/files/..." alt="...">
      <span class="resize-handle" data-handle="nw"></span> ... (8 handles)
    </span>

The handles and the ``selected``/``dragging`` classes are editor state and
are stripped by the sanitizer; ``hydrate`` puts the handles back when a block
enters edit mode.
"""

import io
import logging
import re
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from bs4 import Tag
from PIL import Image, UnidentifiedImageError

from wikinexus.editor.events import EventTarget, PointerEvent, Scheduler
from wikinexus.editor.sanitizer import HANDLE_CLASS, IMAGE_CLASS, sanitize
from wikinexus.editor.tree import Anchor, InsertionPoint, Surface, contains, parse_fragment
from wikinexus.errors import ValidationError, WikiError
from wikinexus.storage import BlockStore, FileUpload

logger = logging.getLogger(__name__)

WRAP_MODES = ('left', 'right', 'center', 'inline', 'tight-left', 'tight-right')
DEFAULT_WRAP_MODE = 'left'
HANDLES = ('nw', 'n', 'ne', 'e', 'se', 's', 'sw', 'w')
CORNER_HANDLES = ('nw', 'ne', 'sw', 'se')
MIN_SIZE = 50
MAX_INITIAL_WIDTH = 400
DEFAULT_SIZE = (300, 200)
DELETE_KEYS = ('Delete', 'Backspace')

_PX = re.compile(r'(width|height)\s*:\s*([\d.]+)px', re.IGNORECASE)


class ImageState(Enum):
    UNSELECTED = 'unselected'
    SELECTED = 'selected'
    RESIZING = 'resizing'
    DRAGGING = 'dragging'
    DELETED = 'deleted'


def image_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    """Intrinsic (width, height) of an image, or None if Pillow cannot read it."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Could not read image dimensions: {e}")
        return None


def initial_size(data: bytes) -> Tuple[int, int]:
    size = image_dimensions(data)
    if not size or not size[0] or not size[1]:
        return DEFAULT_SIZE
    width, height = size
    if width > MAX_INITIAL_WIDTH:
        height = round(height * MAX_INITIAL_WIDTH / width)
        width = MAX_INITIAL_WIDTH
    return width, height


def compute_resize(handle: str, start_width: float, start_height: float,
                   dx: float, dy: float, min_size: int = MIN_SIZE) -> Tuple[float, float]:
    """
    New (width, height) after dragging ``handle`` by (dx, dy).

    Corner handles keep the aspect ratio and follow whichever axis moved
    further; neither dimension goes below ``min_size``.
    """
    if handle not in HANDLES:
        raise ValidationError(f"Unknown resize handle: {handle}")

    width, height = start_width, start_height
    if 'e' in handle:
        width = start_width + dx
    if 'w' in handle:
        width = start_width - dx
    if 's' in handle:
        height = start_height + dy
    if 'n' in handle:
        height = start_height - dy

    if handle in CORNER_HANDLES and start_width > 0 and start_height > 0:
        ratio = start_width / start_height
        if abs(dx) >= abs(dy):
            height = width / ratio
        else:
            width = height * ratio
        if width < min_size or height < min_size:
            scale = max(min_size / start_width, min_size / start_height)
            width, height = start_width * scale, start_height * scale
        return width, height

    return max(min_size, width), max(min_size, height)


def read_size(wrapper: Tag) -> Tuple[float, float]:
    found = {name.lower(): float(value) for name, value in _PX.findall(wrapper.get('style', ''))}
    width, height = found.get('width'), found.get('height')
    if width is None or height is None:
        image = wrapper.find('img')
        try:
            width = width or float(image.get('width')) if image is not None else width
            height = height or float(image.get('height')) if image is not None else height
        except (TypeError, ValueError):
            pass
    return (width or DEFAULT_SIZE[0]), (height or DEFAULT_SIZE[1])


def write_size(wrapper: Tag, width: float, height: float) -> None:
    wrapper['style'] = f"width: {round(width)}px; height: {round(height)}px;"


def build_wrapper(surface: Surface, file_id: str, alt: str = '', size: Tuple[int, int] = DEFAULT_SIZE,
                  wrap: str = DEFAULT_WRAP_MODE) -> Tag:
    wrapper = surface.new_tag('span', **{
        'class': IMAGE_CLASS,
        'contenteditable': 'false',
        'data-file-id': file_id,
        'data-wrap': wrap,
    })
    write_size(wrapper, *size)
    wrapper.append(surface.new_tag('img', src=f"/api/files/{file_id}", alt=alt))
    add_handles(surface, wrapper)
    return wrapper


def add_handles(surface: Surface, wrapper: Tag) -> None:
    present = {h.get('data-handle') for h in wrapper.find_all(class_=HANDLE_CLASS)}
    for handle in HANDLES:
        if handle not in present:
            wrapper.append(surface.new_tag('span', **{'class': HANDLE_CLASS, 'data-handle': handle}))


def hydrate(surface: Surface) -> int:
    """Give every inline image in ``surface`` its resize handles. Returns the number of images."""
    wrappers = surface.root.find_all(class_=IMAGE_CLASS)
    for wrapper in wrappers:
        add_handles(surface, wrapper)
    return len(wrappers)


def _add_class(tag: Tag, name: str) -> None:
    classes = list(tag.get('class', []))
    if name not in classes:
        classes.append(name)
    tag['class'] = classes


def _remove_class(tag: Tag, name: str) -> None:
    tag['class'] = [c for c in tag.get('class', []) if c != name]


class InlineMedia:
    """
    Inline image controller for the surface of one block in edit mode.

    ``on_change`` is called whenever the surface content changed (end of a
    resize, wrap mode change, move, insertion, deletion).
    """

    def __init__(self, surface: Surface, store: BlockStore, scheduler: Scheduler,
                 pointer: EventTarget,
                 on_change: Optional[Callable[[], None]] = None,
                 on_file_deleted: Optional[Callable[[str], None]] = None,
                 alert: Optional[Callable[[str], None]] = None):
        self.surface = surface
        self.store = store
        self.scheduler = scheduler
        self.pointer = pointer
        self._on_change = on_change
        self._on_file_deleted = on_file_deleted
        self._alert = alert
        self._states: Dict[str, ImageState] = {}
        self.selected_id: Optional[str] = None
        self.current_wrap: Optional[str] = None
        self._gesture: Optional[Tuple[Callable, Callable]] = None
        self._drag_id: Optional[str] = None
        hydrate(surface)

    # -- lookup --------------------------------------------------------------

    def wrapper(self, file_id: str) -> Optional[Tag]:
        return self.surface.root.find(class_=IMAGE_CLASS, attrs={'data-file-id': file_id})

    def file_ids(self) -> List[str]:
        return [w.get('data-file-id') for w in self.surface.root.find_all(class_=IMAGE_CLASS)]

    def state(self, file_id: str) -> ImageState:
        if file_id in self._states:
            return self._states[file_id]
        return ImageState.UNSELECTED if self.wrapper(file_id) is not None else ImageState.DELETED

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    # -- insertion -----------------------------------------------------------

    def insert_image(self, upload: FileUpload, caret: Optional[Anchor] = None,
                     point: Optional[InsertionPoint] = None) -> None:
        """Upload ``upload`` and insert it at ``caret`` (or at the end) once stored."""
        size = initial_size(upload.data)

        def inserted(attachments):
            attachment = attachments[0]
            wrapper = build_wrapper(self.surface, attachment['id'], alt=attachment.get('filename', ''), size=size)
            self._insertion_point(caret, point).insert(wrapper)
            logger.info(f"Inserted inline image {attachment['id']} into block {self.surface.block_id}")
            self.select(attachment['id'])
            self._changed()

        def failed(error: WikiError):
            logger.error(f"Inline image upload failed for {upload.filename}: {error}")
            if self._alert is not None:
                self._alert(f"Failed to insert image {upload.filename}")

        self.scheduler.submit(
            lambda: self.store.upload_files([upload], self.surface.block_id),
            on_success=inserted, on_failure=failed,
        )

    def _insertion_point(self, caret: Optional[Anchor], point: Optional[InsertionPoint]) -> InsertionPoint:
        # The draft may have been reloaded while the upload was running
        root = self.surface.root
        if point is not None and contains(root, point.parent):
            return point
        try:
            return InsertionPoint.at(root, caret)
        except ValueError:
            logger.warning(f"Caret no longer resolves in block {self.surface.block_id}, appending image")
            return InsertionPoint(root)

    # -- selection -----------------------------------------------------------

    def select(self, file_id: str) -> bool:
        if self._drag_id is not None:
            return False
        wrapper = self.wrapper(file_id)
        if wrapper is None:
            return False
        if self.selected_id and self.selected_id != file_id:
            self.deselect()
        _add_class(wrapper, 'selected')
        self.selected_id = file_id
        self._states[file_id] = ImageState.SELECTED
        self.current_wrap = wrapper.get('data-wrap', DEFAULT_WRAP_MODE)
        return True

    def deselect(self) -> None:
        if self.selected_id is None:
            return
        wrapper = self.wrapper(self.selected_id)
        if wrapper is not None:
            _remove_class(wrapper, 'selected')
        self._states.pop(self.selected_id, None)
        self.selected_id = None
        self.current_wrap = None

    # -- wrap mode -----------------------------------------------------------

    def set_wrap_mode(self, mode: str, file_id: Optional[str] = None) -> None:
        if mode not in WRAP_MODES:
            raise ValidationError(f"Unknown wrap mode: {mode}")
        file_id = file_id or self.selected_id
        wrapper = self.wrapper(file_id) if file_id else None
        if wrapper is None:
            return
        wrapper['data-wrap'] = mode
        if file_id == self.selected_id:
            self.current_wrap = mode
        self._changed()

    def wrap_mode(self, file_id: str) -> Optional[str]:
        wrapper = self.wrapper(file_id)
        return wrapper.get('data-wrap', DEFAULT_WRAP_MODE) if wrapper is not None else None

    # -- resize --------------------------------------------------------------

    def size(self, file_id: str) -> Optional[Tuple[float, float]]:
        wrapper = self.wrapper(file_id)
        return read_size(wrapper) if wrapper is not None else None

    def begin_resize(self, file_id: str, handle: str, x: float, y: float) -> bool:
        if handle not in HANDLES:
            raise ValidationError(f"Unknown resize handle: {handle}")
        wrapper = self.wrapper(file_id)
        if wrapper is None or self._gesture is not None:
            return False
        self.select(file_id)
        start_width, start_height = read_size(wrapper)
        self._states[file_id] = ImageState.RESIZING

        def on_move(event: PointerEvent):
            width, height = compute_resize(handle, start_width, start_height, event.x - x, event.y - y)
            write_size(wrapper, width, height)

        def on_up(event: PointerEvent):
            self._end_gesture()
            if self._states.get(file_id) == ImageState.RESIZING:
                self._states[file_id] = ImageState.SELECTED
            logger.debug(f"Resized inline image {file_id} to {read_size(wrapper)}")
            self._changed()

        self.pointer.add_listener('pointermove', on_move)
        self.pointer.add_listener('pointerup', on_up)
        self._gesture = (on_move, on_up)
        return True

    def _end_gesture(self) -> None:
        if self._gesture is None:
            return
        on_move, on_up = self._gesture
        self.pointer.remove_listener('pointermove', on_move)
        self.pointer.remove_listener('pointerup', on_up)
        self._gesture = None

    # -- drag and drop -------------------------------------------------------

    def start_drag(self, file_id: str) -> Optional[str]:
        """Mark the image as dragging and return its markup as the transfer payload."""
        wrapper = self.wrapper(file_id)
        if wrapper is None:
            return None
        payload = sanitize(str(wrapper))
        _add_class(wrapper, 'dragging')
        self._drag_id = file_id
        self._states[file_id] = ImageState.DRAGGING
        return payload

    def end_drag(self) -> None:
        if self._drag_id is None:
            return
        wrapper = self.wrapper(self._drag_id)
        if wrapper is not None:
            _remove_class(wrapper, 'dragging')
        self._states.pop(self._drag_id, None)
        if self._drag_id == self.selected_id and wrapper is not None:
            self._states[self._drag_id] = ImageState.SELECTED
        self._drag_id = None

    def drop(self, anchor: Optional[Anchor], payload: Optional[str] = None,
             uploads: Iterable[FileUpload] = ()) -> bool:
        if payload:
            return self._move(anchor, payload)
        images = [u for u in uploads if u.content_type.startswith('image/')]
        if not images:
            return False
        point = InsertionPoint.at(self.surface.root, anchor)
        for upload in images:
            self.insert_image(upload, caret=anchor, point=point)
        return True

    def _move(self, anchor: Optional[Anchor], payload: str) -> bool:
        moved = parse_fragment(payload).find(class_=IMAGE_CLASS)
        if moved is None:
            self.end_drag()
            return False
        file_id = moved.get('data-file-id')
        original = self.wrapper(file_id)
        if original is None:
            self.end_drag()
            return False

        point = InsertionPoint.at(self.surface.root, anchor)
        if contains(original, point.parent) or point.before is original:
            # Dropped onto itself
            self.end_drag()
            return False

        self.end_drag()
        original.extract()
        moved.extract()
        add_handles(self.surface, moved)
        point.insert(moved)
        self._states.pop(file_id, None)
        self.selected_id = None
        self.select(file_id)
        self._changed()
        return True

    # -- deletion ------------------------------------------------------------

    def delete_image(self, file_id: str) -> bool:
        wrapper = self.wrapper(file_id)
        if wrapper is None:
            return False
        if self.selected_id == file_id:
            self.selected_id = None
            self.current_wrap = None
        if self._gesture is not None:
            self._end_gesture()
        wrapper.decompose()
        self._states[file_id] = ImageState.DELETED
        logger.info(f"Removed inline image {file_id} from block {self.surface.block_id}")

        def deleted(_result):
            if self._on_file_deleted is not None:
                self._on_file_deleted(file_id)

        def failed(error: WikiError):
            logger.error(f"Failed to delete file {file_id} for removed inline image: {error}")

        self.scheduler.submit(lambda: self.store.delete_file(file_id), on_success=deleted, on_failure=failed)
        self._changed()
        return True

    def delete_selected(self) -> bool:
        if self.selected_id is None:
            return False
        return self.delete_image(self.selected_id)

    def on_key(self, key: str) -> bool:
        if key in DELETE_KEYS and self.selected_id is not None:
            return self.delete_selected()
        return False

    def close(self) -> None:
        """Drop editor state before the surface leaves edit mode."""
        self._end_gesture()
        self.end_drag()
        self.deselect()
