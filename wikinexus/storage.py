"""
Storage collaborators.

``BlockStore`` is what the editor engine talks to. ``WikiRepository`` does the
actual work against the database and the upload folder; ``LocalStore`` exposes
it as a ``BlockStore`` for in-process use, ``WikiClient`` (client.py) over HTTP.
"""

import logging
import mimetypes
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from werkzeug.utils import secure_filename

from wikinexus.editor.sanitizer import sanitize
from wikinexus.errors import NotFoundError, ValidationError
from wikinexus.models import BLOCK_TYPES, ContentBlock, Document, UploadedFile, db

logger = logging.getLogger(__name__)

UNSET = object()

# MIME types a browser can show without downloading
INLINE_VIEWABLE = {
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/webp',
    'image/svg+xml',
    'application/pdf',
    'text/plain',
    'text/html',
}


def serve_as_attachment(mime_type: str, download: bool = False) -> bool:
    return download or mime_type not in INLINE_VIEWABLE


@dataclass
class FileUpload:
    """A file to be uploaded."""
    filename: str
    data: bytes
    content_type: str = ''

    def __post_init__(self):
        if not self.content_type:
            self.content_type = mimetypes.guess_type(self.filename)[0] or 'application/octet-stream'


@dataclass
class FilePayload:
    """A stored file as served back."""
    filename: str
    mime_type: str
    data: bytes
    as_attachment: bool = False


class BlockStore(ABC):
    """Storage operations the editor depends on. Payloads use the API's camelCase keys."""

    @abstractmethod
    def get_document(self, document_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def create_document(self, title: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    def create_block(self, document_id: str, block_type: str, content: str, order: int) -> Dict[str, Any]:
        pass

    @abstractmethod
    def update_block(self, block_id: str, content: Optional[str] = None,
                     block_type: Optional[str] = None, order: Optional[int] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_block(self, block_id: str) -> None:
        pass

    @abstractmethod
    def upload_files(self, uploads: List[FileUpload], block_id: Optional[str] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def delete_file(self, file_id: str) -> None:
        pass

    @abstractmethod
    def fetch_file(self, file_id: str, download: bool = False) -> FilePayload:
        """File bytes; ``download`` asks for attachment disposition."""
        pass


def _validate_title(title) -> str:
    if not title or not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required and must be a string")
    return title.strip()


def _validate_order(order) -> int:
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError("order must be an integer")
    return order


def _validate_type(block_type) -> str:
    if block_type not in BLOCK_TYPES:
        raise ValidationError(f"Unknown block type: {block_type}")
    return block_type


class WikiRepository:
    """Database and upload-folder operations. Must be used inside an application context."""

    def __init__(self, upload_folder, max_upload_size: Optional[int] = None):
        self.upload_folder = Path(upload_folder)
        self.max_upload_size = max_upload_size

    # -- documents -----------------------------------------------------------

    def list_documents(self, search: Optional[str] = None, parent_id=UNSET) -> List[Document]:
        query = Document.query
        if search:
            term = search.lower()
            query = query.filter(db.or_(
                db.func.lower(Document.title).contains(term, autoescape=True),
                Document.blocks.any(db.func.lower(ContentBlock.content).contains(term, autoescape=True)),
            ))
        elif parent_id is None or parent_id == 'null':
            query = query.filter(Document.parent_id.is_(None))
        elif parent_id is not UNSET and parent_id:
            query = query.filter(Document.parent_id == parent_id)
        return query.order_by(Document.created_at.desc()).all()

    def document_tree(self) -> List[Dict[str, Any]]:
        roots = Document.query.filter(Document.parent_id.is_(None)).order_by(Document.created_at).all()
        return [root.to_tree() for root in roots]

    def get_document(self, document_id: str) -> Document:
        document = db.session.get(Document, document_id)
        if document is None:
            raise NotFoundError('Document', document_id)
        return document

    def create_document(self, title, parent_id: Optional[str] = None) -> Document:
        title = _validate_title(title)
        if parent_id == 'null':
            parent_id = None
        if parent_id:
            self.get_document(parent_id)
        document = Document(title=title, parent_id=parent_id or None)
        db.session.add(document)
        db.session.commit()
        logger.info(f"Created document {document.id} ({title!r})")
        return document

    def update_document(self, document_id: str, title=None, parent_id=UNSET) -> Document:
        document = self.get_document(document_id)
        if title is not None:
            document.title = _validate_title(title)
        if parent_id is not UNSET:
            parent_id = parent_id or None
            if parent_id is not None:
                self._check_reparent(document, parent_id)
            document.parent_id = parent_id
        db.session.commit()
        logger.info(f"Updated document {document_id}")
        return document

    def _check_reparent(self, document: Document, parent_id: str) -> None:
        parent = self.get_document(parent_id)
        while parent is not None:
            if parent.id == document.id:
                raise ValidationError("A page cannot be moved below itself")
            parent = parent.parent

    def delete_document(self, document_id: str) -> None:
        document = self.get_document(document_id)
        files = []
        stack = [document]
        while stack:
            current = stack.pop()
            stack.extend(current.children)
            for block in current.blocks:
                files.extend(block.attachments)
        for record in files:
            db.session.delete(record)
        db.session.delete(document)
        db.session.commit()
        for record in files:
            self._remove_from_disk(record)
        logger.info(f"Deleted document {document_id} with {len(files)} files")

    # -- blocks --------------------------------------------------------------

    def get_block(self, block_id: str) -> ContentBlock:
        block = db.session.get(ContentBlock, block_id)
        if block is None:
            raise NotFoundError('Block', block_id)
        return block

    def create_block(self, document_id, block_type, content, order) -> ContentBlock:
        if not isinstance(document_id, str) or not document_id:
            raise ValidationError("documentId, type, content, and order are required")
        if not isinstance(content, str):
            raise ValidationError("documentId, type, content, and order are required")
        _validate_type(block_type)
        _validate_order(order)
        self.get_document(document_id)

        block = ContentBlock(document_id=document_id, type=block_type, content=sanitize(content), order=order)
        db.session.add(block)
        db.session.commit()
        logger.info(f"Created block {block.id} in document {document_id} at order {order}")
        return block

    def update_block(self, block_id: str, content=None, block_type=None, order=None) -> ContentBlock:
        block = self.get_block(block_id)
        if content is not None:
            if not isinstance(content, str):
                raise ValidationError("content must be a string")
            block.content = sanitize(content)
        if block_type is not None:
            block.type = _validate_type(block_type)
        if order is not None:
            block.order = _validate_order(order)
        db.session.commit()
        logger.debug(f"Updated block {block_id}")
        return block

    def delete_block(self, block_id: str) -> None:
        block = self.get_block(block_id)
        files = list(block.attachments)
        for record in files:
            db.session.delete(record)
        db.session.delete(block)
        db.session.commit()
        for record in files:
            self._remove_from_disk(record)
        logger.info(f"Deleted block {block_id}")

    # -- files ---------------------------------------------------------------

    def save_uploads(self, uploads: Iterable[FileUpload], block_id: Optional[str] = None) -> List[UploadedFile]:
        uploads = list(uploads)
        if not uploads:
            raise ValidationError("No file provided")
        if block_id:
            self.get_block(block_id)
        if self.max_upload_size:
            for upload in uploads:
                if len(upload.data) > self.max_upload_size:
                    raise ValidationError(f"File {upload.filename} exceeds the upload size limit")

        self.upload_folder.mkdir(parents=True, exist_ok=True)
        records = []
        written = []
        try:
            for upload in uploads:
                safe_name = secure_filename(upload.filename or '') or 'file'
                suffix = Path(safe_name).suffix.lower()
                stored_name = f"{uuid.uuid4().hex}{suffix}"
                target = self.upload_folder / stored_name
                target.write_bytes(upload.data)
                written.append(target)

                record = UploadedFile(
                    filename=upload.filename or safe_name,
                    stored_name=stored_name,
                    mime_type=upload.content_type,
                    size=len(upload.data),
                    path=stored_name,
                    block_id=block_id or None,
                )
                db.session.add(record)
                records.append(record)
            db.session.commit()
        except Exception:
            db.session.rollback()
            for target in written:
                target.unlink(missing_ok=True)
            raise
        logger.info(f"Stored {len(records)} file(s) for block {block_id}")
        return records

    def get_file(self, file_id: str) -> UploadedFile:
        record = db.session.get(UploadedFile, file_id)
        if record is None:
            raise NotFoundError('File', file_id)
        return record

    def file_path(self, record: UploadedFile) -> Path:
        path = self.upload_folder / record.path
        if not path.exists():
            raise NotFoundError('File on disk', record.id)
        return path

    def inline_references(self, file_id: str) -> List[ContentBlock]:
        marker = f'data-file-id="{file_id}"'
        return ContentBlock.query.filter(ContentBlock.content.contains(marker, autoescape=True)).all()

    def delete_file(self, file_id: str) -> None:
        record = self.get_file(file_id)
        referencing = self.inline_references(file_id)
        if referencing:
            logger.warning(
                f"Deleting file {file_id} still shown inline in block(s) "
                f"{', '.join(b.id for b in referencing)}"
            )
        db.session.delete(record)
        db.session.commit()
        self._remove_from_disk(record)
        logger.info(f"Deleted file {file_id}")

    def _remove_from_disk(self, record: UploadedFile) -> None:
        path = self.upload_folder / record.path
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete file {path}: {e}")


class LocalStore(BlockStore):
    """In-process BlockStore over a Flask app's database."""

    def __init__(self, app):
        self.app = app

    def _repository(self) -> WikiRepository:
        return self.app.extensions['wikinexus']

    def get_document(self, document_id):
        with self.app.app_context():
            return self._repository().get_document(document_id).to_dict()

    def create_document(self, title, parent_id=None):
        with self.app.app_context():
            return self._repository().create_document(title, parent_id).to_dict()

    def create_block(self, document_id, block_type, content, order):
        with self.app.app_context():
            return self._repository().create_block(document_id, block_type, content, order).to_dict()

    def update_block(self, block_id, content=None, block_type=None, order=None):
        with self.app.app_context():
            return self._repository().update_block(block_id, content, block_type, order).to_dict()

    def delete_block(self, block_id):
        with self.app.app_context():
            self._repository().delete_block(block_id)

    def upload_files(self, uploads, block_id=None):
        with self.app.app_context():
            return [r.to_dict() for r in self._repository().save_uploads(uploads, block_id)]

    def delete_file(self, file_id):
        with self.app.app_context():
            self._repository().delete_file(file_id)

    def fetch_file(self, file_id, download=False):
        with self.app.app_context():
            repository = self._repository()
            record = repository.get_file(file_id)
            data = repository.file_path(record).read_bytes()
            return FilePayload(filename=record.filename, mime_type=record.mime_type, data=data,
                               as_attachment=serve_as_attachment(record.mime_type, download))
