"""
Database models: pages (documents), their content blocks and uploaded files.
"""

import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

BLOCK_TYPES = ('text',)


def _now():
    return datetime.now(timezone.utc)


def _new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class BaseModel(db.Model):
    __abstract__ = True

    id = db.Column(db.String(36), primary_key=True, default=_new_id, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_now, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)


class Document(BaseModel):
    __tablename__ = 'documents'

    title = db.Column(db.String(255), nullable=False)
    parent_id = db.Column(db.String(36), db.ForeignKey('documents.id'), nullable=True, index=True)

    parent = db.relationship('Document', remote_side='Document.id', back_populates='children')
    children = db.relationship(
        'Document',
        back_populates='parent',
        order_by='Document.created_at',
        cascade='all, delete-orphan',
    )
    blocks = db.relationship(
        'ContentBlock',
        back_populates='document',
        order_by='ContentBlock.order',
        cascade='all, delete-orphan',
    )

    def to_dict(self, include_blocks=True):
        data = {
            'id': self.id,
            'title': self.title,
            'parentId': self.parent_id,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'children': [{'id': c.id, 'title': c.title} for c in self.children],
        }
        if include_blocks:
            data['blocks'] = [b.to_dict() for b in self.blocks]
        return data

    def to_tree(self):
        return {
            'id': self.id,
            'title': self.title,
            'children': [c.to_tree() for c in self.children],
        }


class ContentBlock(BaseModel):
    __tablename__ = 'content_blocks'

    document_id = db.Column(db.String(36), db.ForeignKey('documents.id'), nullable=False, index=True)
    type = db.Column(db.String(50), nullable=False, default='text')
    content = db.Column(db.Text, nullable=False, default='')
    order = db.Column(db.Integer, nullable=False, default=0)

    document = db.relationship('Document', back_populates='blocks')
    attachments = db.relationship(
        'UploadedFile',
        back_populates='block',
        order_by='UploadedFile.created_at',
    )

    __table_args__ = (
        db.Index('idx_block_document_order', 'document_id', 'order'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'documentId': self.document_id,
            'type': self.type,
            'content': self.content,
            'order': self.order,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'attachments': [a.to_dict() for a in self.attachments],
        }


class UploadedFile(BaseModel):
    __tablename__ = 'uploaded_files'

    filename = db.Column(db.String(255), nullable=False)
    stored_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(255), nullable=False, default='application/octet-stream')
    size = db.Column(db.Integer, nullable=False, default=0)
    path = db.Column(db.String(512), nullable=False)
    block_id = db.Column(db.String(36), db.ForeignKey('content_blocks.id', ondelete='SET NULL'),
                         nullable=True, index=True)

    block = db.relationship('ContentBlock', back_populates='attachments')

    def to_dict(self):
        return {
            'id': self.id,
            'filename': self.filename,
            'storedName': self.stored_name,
            'mimeType': self.mime_type,
            'size': self.size,
            'path': self.path,
            'blockId': self.block_id,
            'url': f"/api/files/{self.id}",
            'createdAt': _iso(self.created_at),
        }
