"""
JSON API blueprint mounted at /api.
"""

import logging

from flask import Blueprint, current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

from wikinexus.core.renderer import render_document
from wikinexus.errors import ValidationError, WikiError
from wikinexus.storage import UNSET, FileUpload, WikiRepository, serve_as_attachment
from wikinexus.version_info import __version__ as VERSION

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__)

def repository() -> WikiRepository:
    return current_app.extensions['wikinexus']


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid request body")
    return data


def register_error_handlers(app):
    @app.errorhandler(WikiError)
    def handle_wiki_error(error):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error}")
        else:
            logger.debug(f"{request.method} {request.path} -> {error.status_code}: {error}")
        return jsonify({'error': str(error)}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        if not request.path.startswith('/api/'):
            return error
        return jsonify({'error': error.description}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"500 Error on {request.path}: {error}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


# ------------------------
# Documents
# ------------------------

@api_bp.route('/documents', methods=['GET'])
def list_documents():
    search = request.args.get('search')
    parent_id = request.args.get('parentId', UNSET)
    documents = repository().list_documents(search=search, parent_id=parent_id)
    return jsonify([d.to_dict() for d in documents])


@api_bp.route('/documents', methods=['POST'])
def create_document():
    data = request.form if request.form else (request.get_json(silent=True) or {})
    document = repository().create_document(data.get('title'), data.get('parentId') or None)
    return jsonify(document.to_dict()), 201


@api_bp.route('/documents/tree', methods=['GET'])
def document_tree():
    return jsonify(repository().document_tree())


@api_bp.route('/documents/<document_id>', methods=['GET'])
def get_document(document_id):
    return jsonify(repository().get_document(document_id).to_dict())


@api_bp.route('/documents/<document_id>', methods=['PUT'])
def update_document(document_id):
    data = _json_body()
    document = repository().update_document(
        document_id,
        title=data.get('title'),
        parent_id=data['parentId'] if 'parentId' in data else UNSET,
    )
    return jsonify(document.to_dict())


@api_bp.route('/documents/<document_id>', methods=['DELETE'])
def delete_document(document_id):
    repository().delete_document(document_id)
    return jsonify({'success': True})


@api_bp.route('/documents/<document_id>/rendered', methods=['GET'])
def rendered_document(document_id):
    document = repository().get_document(document_id).to_dict()
    highlight = request.args.get('highlight') or None
    return jsonify(render_document(document, current_app.config['FEATURES'], highlight=highlight))


# ------------------------
# Blocks
# ------------------------

@api_bp.route('/blocks', methods=['POST'])
def create_block():
    data = _json_body()
    block = repository().create_block(
        data.get('documentId'), data.get('type'), data.get('content'), data.get('order'),
    )
    return jsonify(block.to_dict()), 201


@api_bp.route('/blocks/<block_id>', methods=['PUT'])
def update_block(block_id):
    data = _json_body()
    block = repository().update_block(
        block_id, content=data.get('content'), block_type=data.get('type'), order=data.get('order'),
    )
    return jsonify(block.to_dict())


@api_bp.route('/blocks/<block_id>', methods=['DELETE'])
def delete_block(block_id):
    repository().delete_block(block_id)
    return jsonify({'success': True})


# ------------------------
# Files
# ------------------------

@api_bp.route('/uploads', methods=['POST'])
def upload_files():
    files = request.files.getlist('file')
    uploads = [
        FileUpload(filename=f.filename or '', data=f.read(), content_type=f.mimetype or '')
        for f in files if f and f.filename
    ]
    records = repository().save_uploads(uploads, request.form.get('blockId') or None)
    return jsonify([r.to_dict() for r in records]), 201


@api_bp.route('/uploads/<file_id>', methods=['DELETE'])
def delete_upload(file_id):
    repository().delete_file(file_id)
    return jsonify({'success': True})


@api_bp.route('/files/<file_id>', methods=['GET'])
def serve_file(file_id):
    repo = repository()
    record = repo.get_file(file_id)
    path = repo.file_path(record)
    force_download = serve_as_attachment(record.mime_type, request.args.get('download') == 'true')
    return send_file(
        path,
        mimetype=record.mime_type,
        as_attachment=force_download,
        download_name=record.filename,
    )


@api_bp.route('/version')
def get_version():
    return jsonify({'version': VERSION})


@api_bp.route('/features')
def list_features():
    return jsonify(current_app.config['FEATURES'].describe())
