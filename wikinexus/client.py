"""
HTTP implementation of BlockStore, talking to a running WikiNexus server.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from wikinexus.errors import ApiError, NotFoundError
from wikinexus.storage import BlockStore, FilePayload, FileUpload

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20  # seconds


class WikiClient(BlockStore):
    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}/api{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise ApiError(f"{method} {path} failed: {e}") from e

        if not response.ok:
            try:
                message = response.json().get('error', response.reason)
            except ValueError:
                message = response.reason
            logger.error(f"{method} {url} returned {response.status_code}: {message}")
            if response.status_code == 404:
                raise NotFoundError('Resource', path)
            raise ApiError(message, status=response.status_code)
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        return self._request(method, path, **kwargs).json()

    # -- documents -----------------------------------------------------------

    def list_documents(self, search: Optional[str] = None, parent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {}
        if search:
            params['search'] = search
        if parent_id:
            params['parentId'] = parent_id
        return self._json('GET', '/documents', params=params)

    def document_tree(self) -> List[Dict[str, Any]]:
        return self._json('GET', '/documents/tree')

    def get_document(self, document_id):
        return self._json('GET', f"/documents/{document_id}")

    def create_document(self, title, parent_id=None):
        data = {'title': title}
        if parent_id:
            data['parentId'] = parent_id
        return self._json('POST', '/documents', data=data)

    def rename_document(self, document_id: str, title: str) -> Dict[str, Any]:
        return self._json('PUT', f"/documents/{document_id}", json={'title': title})

    def delete_document(self, document_id: str) -> None:
        self._request('DELETE', f"/documents/{document_id}")

    def rendered_document(self, document_id: str, highlight: Optional[str] = None) -> Dict[str, Any]:
        params = {'highlight': highlight} if highlight else {}
        return self._json('GET', f"/documents/{document_id}/rendered", params=params)

    # -- blocks --------------------------------------------------------------

    def create_block(self, document_id, block_type, content, order):
        return self._json('POST', '/blocks', json={
            'documentId': document_id,
            'type': block_type,
            'content': content,
            'order': order,
        })

    def update_block(self, block_id, content=None, block_type=None, order=None):
        body = {}
        if content is not None:
            body['content'] = content
        if block_type is not None:
            body['type'] = block_type
        if order is not None:
            body['order'] = order
        return self._json('PUT', f"/blocks/{block_id}", json=body)

    def delete_block(self, block_id):
        self._request('DELETE', f"/blocks/{block_id}")

    # -- files ---------------------------------------------------------------

    def upload_files(self, uploads: List[FileUpload], block_id=None):
        files = [('file', (u.filename, u.data, u.content_type)) for u in uploads]
        data = {'blockId': block_id} if block_id else {}
        return self._json('POST', '/uploads', files=files, data=data)

    def delete_file(self, file_id):
        self._request('DELETE', f"/uploads/{file_id}")

    def fetch_file(self, file_id, download=False):
        params = {'download': 'true'} if download else None
        response = self._request('GET', f"/files/{file_id}", params=params)
        filename = file_id
        disposition = response.headers.get('Content-Disposition', '')
        if 'filename=' in disposition:
            filename = disposition.split('filename=', 1)[1].split(';', 1)[0].strip().strip('"')
        return FilePayload(
            filename=filename,
            mime_type=response.headers.get('Content-Type', 'application/octet-stream').split(';', 1)[0],
            data=response.content,
            as_attachment=disposition.startswith('attachment'),
        )

    def version(self) -> str:
        return self._json('GET', '/version')['version']
