import unittest
import sys
from pathlib import Path
from unittest.mock import MagicMock

import requests

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from wikinexus.client import WikiClient
from wikinexus.errors import ApiError, NotFoundError
from wikinexus.storage import FileUpload


def make_response(status=200, json_data=None, content=b'', headers=None, reason='OK'):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    response.content = content
    response.headers = headers or {}
    if json_data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = json_data
    return response


class TestWikiClient(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = WikiClient('http://wiki.local/', timeout=5, session=self.session)

    def test_get_document(self):
        self.session.request.return_value = make_response(json_data={'id': 'p1', 'blocks': []})

        self.assertEqual(self.client.get_document('p1'), {'id': 'p1', 'blocks': []})
        self.session.request.assert_called_once_with('GET', 'http://wiki.local/api/documents/p1', timeout=5)

    def test_update_block_sends_only_given_fields(self):
        self.session.request.return_value = make_response(json_data={'id': 'b1'})

        self.client.update_block('b1', content='<p>x</p>')

        self.session.request.assert_called_once_with(
            'PUT', 'http://wiki.local/api/blocks/b1', timeout=5, json={'content': '<p>x</p>'},
        )

    def test_upload_files(self):
        self.session.request.return_value = make_response(status=201, json_data=[{'id': 'f1'}])
        upload = FileUpload('a.png', b'png')

        self.assertEqual(self.client.upload_files([upload], 'b1'), [{'id': 'f1'}])

        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs['files'], [('file', ('a.png', b'png', 'image/png'))])
        self.assertEqual(kwargs['data'], {'blockId': 'b1'})

    def test_server_error(self):
        self.session.request.return_value = make_response(
            status=500, json_data={'error': 'Internal server error'}, reason='INTERNAL SERVER ERROR')

        with self.assertRaises(ApiError) as ctx:
            self.client.update_block('b1', content='x')

        self.assertEqual(ctx.exception.status, 500)
        self.assertIn('Internal server error', str(ctx.exception))

    def test_not_found(self):
        self.session.request.return_value = make_response(status=404, json_data={'error': 'gone'})

        with self.assertRaises(NotFoundError):
            self.client.get_document('missing')

    def test_connection_error(self):
        self.session.request.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(ApiError) as ctx:
            self.client.delete_block('b1')

        self.assertIsNone(ctx.exception.status)

    def test_fetch_file(self):
        self.session.request.return_value = make_response(
            content=b'hello',
            headers={
                'Content-Disposition': 'attachment; filename=notes.txt',
                'Content-Type': 'text/plain; charset=utf-8',
            },
        )

        payload = self.client.fetch_file('f1', download=True)

        self.session.request.assert_called_once_with(
            'GET', 'http://wiki.local/api/files/f1', timeout=5, params={'download': 'true'})
        self.assertEqual(payload.filename, 'notes.txt')
        self.assertEqual(payload.mime_type, 'text/plain')
        self.assertEqual(payload.data, b'hello')
        self.assertTrue(payload.as_attachment)

    def test_fetch_file_inline(self):
        self.session.request.return_value = make_response(
            content=b'png',
            headers={'Content-Disposition': 'inline; filename=pic.png', 'Content-Type': 'image/png'},
        )

        payload = self.client.fetch_file('f2')

        self.session.request.assert_called_once_with(
            'GET', 'http://wiki.local/api/files/f2', timeout=5, params=None)
        self.assertEqual(payload.filename, 'pic.png')
        self.assertFalse(payload.as_attachment)

    def test_version(self):
        self.session.request.return_value = make_response(json_data={'version': '1.0.0'})
        self.assertEqual(self.client.version(), '1.0.0')


if __name__ == '__main__':
    unittest.main()
