import io

from PIL import Image

from wikinexus.editor.navigation import Viewport


class FakeClock:
    """Manually advanced clock for Scheduler tests."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def png_bytes(width, height):
    buffer = io.BytesIO()
    Image.new('RGB', (width, height), color=(200, 30, 30)).save(buffer, format='PNG')
    return buffer.getvalue()


def block_payload(block_id, content='', order=0, document_id='p1', attachments=None):
    return {
        'id': block_id,
        'documentId': document_id,
        'type': 'text',
        'content': content,
        'order': order,
        'attachments': attachments or [],
    }


def page_payload(page_id='p1', blocks=None, title='Home'):
    return {'id': page_id, 'title': title, 'parentId': None, 'blocks': blocks or []}


IMAGE_MARKUP = (
    '<span class="inline-image" contenteditable="false" data-file-id="{id}" data-wrap="left" '
    'style="width: 200px; height: 100px;"><img alt="" src="/api/files/{id}"/></span>'
)


def image_markup(file_id='f1'):
    return IMAGE_MARKUP.format(id=file_id)


class RecordingViewport(Viewport):
    """Viewport that records calls; every block id in ``rendered`` can be scrolled to."""

    def __init__(self, rendered=()):
        self.rendered = set(rendered)
        self.classes = {}
        self.scrolled = []
        self.history = []
        self.match_scrolls = 0

    def scroll_into_view(self, element_id, smooth=True, center=True):
        if element_id not in self.rendered:
            return False
        self.scrolled.append(element_id)
        return True

    def add_classes(self, element_id, classes):
        self.classes.setdefault(element_id, set()).update(classes)

    def remove_classes(self, element_id, classes):
        self.classes.setdefault(element_id, set()).difference_update(classes)

    def scroll_to_first_match(self, css_class):
        self.match_scrolls += 1
        return True

    def push_history(self, url):
        self.history.append(url)
