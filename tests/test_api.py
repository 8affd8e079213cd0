import io
import shutil
import tempfile
import unittest
import sys
from pathlib import Path

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tests.helpers import FakeClock, RecordingViewport, png_bytes
from wikinexus.app import create_app
from wikinexus.editor.events import Scheduler
from wikinexus.editor.session import EditorSession
from wikinexus.errors import NotFoundError
from wikinexus.models import db
from wikinexus.storage import FileUpload, LocalStore


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp(prefix='wikinexus-test-'))
        self.upload_folder = self.tmp / 'uploads'
        self.app = create_app({
            'testing': True,
            'database_uri': f"sqlite:///{self.tmp / 'test.db'}",
            'upload_folder': str(self.upload_folder),
            'max_upload_size': 1024 * 1024,
        })
        self.client = self.app.test_client()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.engine.dispose()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def create_document(self, title, parent_id=None):
        payload = {'title': title}
        if parent_id:
            payload['parentId'] = parent_id
        response = self.client.post('/api/documents', json=payload)
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def create_block(self, document_id, content='', order=0):
        response = self.client.post('/api/blocks', json={
            'documentId': document_id, 'type': 'text', 'content': content, 'order': order,
        })
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def upload(self, name, data, content_type, block_id=None):
        form = {'file': (io.BytesIO(data), name, content_type)}
        if block_id:
            form['blockId'] = block_id
        response = self.client.post('/api/uploads', data=form, content_type='multipart/form-data')
        self.assertEqual(response.status_code, 201)
        return response.get_json()[0]


class TestDocuments(ApiTestCase):
    def test_create_and_get(self):
        document = self.create_document('Home')

        response = self.client.get(f"/api/documents/{document['id']}")

        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['title'], 'Home')
        self.assertIsNone(data['parentId'])
        self.assertEqual(data['blocks'], [])
        self.assertEqual(data['children'], [])

    def test_create_from_form(self):
        response = self.client.post('/api/documents', data={'title': 'Form page'})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()['title'], 'Form page')

    def test_title_is_required(self):
        response = self.client.post('/api/documents', json={'title': '  '})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json(), {'error': 'Title is required and must be a string'})

    def test_unknown_document(self):
        response = self.client.get('/api/documents/nope')
        self.assertEqual(response.status_code, 404)
        self.assertIn('not found', response.get_json()['error'])

    def test_unknown_parent(self):
        response = self.client.post('/api/documents', json={'title': 'Orphan', 'parentId': 'nope'})
        self.assertEqual(response.status_code, 404)

    def test_rename(self):
        document = self.create_document('Draft')
        response = self.client.put(f"/api/documents/{document['id']}", json={'title': 'Final'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['title'], 'Final')

    def test_invalid_body(self):
        document = self.create_document('Draft')
        response = self.client.put(f"/api/documents/{document['id']}", data='not json',
                                   content_type='text/plain')
        self.assertEqual(response.status_code, 400)

    def test_hierarchy(self):
        root = self.create_document('Home')
        child = self.create_document('Guide', root['id'])

        parent = self.client.get(f"/api/documents/{root['id']}").get_json()
        self.assertEqual(parent['children'], [{'id': child['id'], 'title': 'Guide'}])

        roots = self.client.get('/api/documents?parentId=null').get_json()
        self.assertEqual([d['id'] for d in roots], [root['id']])

        children = self.client.get(f"/api/documents?parentId={root['id']}").get_json()
        self.assertEqual([d['id'] for d in children], [child['id']])

        tree = self.client.get('/api/documents/tree').get_json()
        self.assertEqual(tree, [{
            'id': root['id'], 'title': 'Home',
            'children': [{'id': child['id'], 'title': 'Guide', 'children': []}],
        }])

    def test_move_below_itself_is_rejected(self):
        root = self.create_document('Home')
        child = self.create_document('Guide', root['id'])

        response = self.client.put(f"/api/documents/{root['id']}", json={'parentId': child['id']})

        self.assertEqual(response.status_code, 400)

        response = self.client.put(f"/api/documents/{child['id']}", json={'parentId': None})
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.get_json()['parentId'])

    def test_search_matches_title_or_content(self):
        root = self.create_document('Home')
        physics = self.create_document('Physics', root['id'])
        self.create_block(physics['id'], '<p>Notes on Quantum mechanics</p>')

        by_content = self.client.get('/api/documents?search=quantum').get_json()
        self.assertEqual([d['id'] for d in by_content], [physics['id']])

        by_title = self.client.get('/api/documents?search=HOME').get_json()
        self.assertEqual([d['id'] for d in by_title], [root['id']])

        self.assertEqual(self.client.get('/api/documents?search=%25').get_json(), [])

    def test_delete_cascades(self):
        root = self.create_document('Home')
        child = self.create_document('Guide', root['id'])
        block = self.create_block(child['id'], '<p>x</p>')
        record = self.upload('notes.txt', b'hello', 'text/plain', block['id'])

        response = self.client.delete(f"/api/documents/{root['id']}")

        self.assertEqual(response.get_json(), {'success': True})
        self.assertEqual(self.client.get(f"/api/documents/{child['id']}").status_code, 404)
        self.assertEqual(self.client.get(f"/api/files/{record['id']}").status_code, 404)
        self.assertFalse((self.upload_folder / record['storedName']).exists())


class TestBlocks(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.document = self.create_document('Home')

    def test_create_sanitizes(self):
        block = self.create_block(self.document['id'], '<p onclick="steal()">Hi</p><script>x()</script>')

        self.assertEqual(block['content'], '<p>Hi</p>')
        self.assertEqual(block['documentId'], self.document['id'])
        self.assertEqual(block['attachments'], [])

    def test_escaped_text_is_stored_escaped(self):
        block = self.create_block(self.document['id'], '&amp;lt;img src=x onerror=alert(1)&amp;gt;')

        self.assertEqual(block['content'], '&amp;lt;img src=x onerror=alert(1)&amp;gt;')
        blocks = self.client.get(f"/api/documents/{self.document['id']}").get_json()['blocks']
        self.assertEqual(blocks[0]['content'], block['content'])

    def test_missing_fields(self):
        response = self.client.post('/api/blocks', json={'documentId': self.document['id']})
        self.assertEqual(response.status_code, 400)

    def test_unknown_type(self):
        response = self.client.post('/api/blocks', json={
            'documentId': self.document['id'], 'type': 'video', 'content': '', 'order': 0,
        })
        self.assertEqual(response.status_code, 400)

    def test_unknown_document(self):
        response = self.client.post('/api/blocks', json={
            'documentId': 'nope', 'type': 'text', 'content': '', 'order': 0,
        })
        self.assertEqual(response.status_code, 404)

    def test_update_strips_editor_state(self):
        block = self.create_block(self.document['id'])

        response = self.client.put(f"/api/blocks/{block['id']}", json={
            'content': '<p><span data-selection-marker="true">Hello</span></p>',
        })

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['content'], '<p>Hello</p>')

    def test_blocks_are_ordered(self):
        second = self.create_block(self.document['id'], '<p>2</p>', order=1)
        first = self.create_block(self.document['id'], '<p>1</p>', order=0)

        blocks = self.client.get(f"/api/documents/{self.document['id']}").get_json()['blocks']

        self.assertEqual([b['id'] for b in blocks], [first['id'], second['id']])

    def test_delete_removes_attachments(self):
        block = self.create_block(self.document['id'])
        record = self.upload('notes.txt', b'hello', 'text/plain', block['id'])
        self.assertTrue((self.upload_folder / record['storedName']).exists())

        self.assertEqual(self.client.delete(f"/api/blocks/{block['id']}").status_code, 200)

        self.assertEqual(self.client.put(f"/api/blocks/{block['id']}", json={'content': ''}).status_code, 404)
        self.assertFalse((self.upload_folder / record['storedName']).exists())


class TestFiles(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.document = self.create_document('Home')
        self.block = self.create_block(self.document['id'])

    def test_upload_is_attached_to_block(self):
        record = self.upload('pic.png', png_bytes(4, 4), 'image/png', self.block['id'])

        self.assertEqual(record['mimeType'], 'image/png')
        self.assertEqual(record['blockId'], self.block['id'])
        self.assertEqual(record['url'], f"/api/files/{record['id']}")
        self.assertTrue(record['storedName'].endswith('.png'))

        blocks = self.client.get(f"/api/documents/{self.document['id']}").get_json()['blocks']
        self.assertEqual([a['id'] for a in blocks[0]['attachments']], [record['id']])

    def test_multiple_files(self):
        response = self.client.post('/api/uploads', data={
            'file': [
                (io.BytesIO(b'a'), 'a.txt', 'text/plain'),
                (io.BytesIO(b'b'), 'b.txt', 'text/plain'),
            ],
        }, content_type='multipart/form-data')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(sorted(r['filename'] for r in response.get_json()), ['a.txt', 'b.txt'])

    def test_no_file(self):
        response = self.client.post('/api/uploads', data={'blockId': ''}, content_type='multipart/form-data')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json(), {'error': 'No file provided'})

    def test_too_large(self):
        response = self.client.post('/api/uploads', data={
            'file': (io.BytesIO(b'x' * (2 * 1024 * 1024)), 'big.bin', 'application/octet-stream'),
        }, content_type='multipart/form-data')
        self.assertEqual(response.status_code, 413)

    def test_inline_and_attachment_disposition(self):
        image = self.upload('pic.png', png_bytes(4, 4), 'image/png')
        archive = self.upload('bundle.zip', b'PK\x03\x04', 'application/zip')

        response = self.client.get(f"/api/files/{image['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, 'image/png')
        self.assertTrue(response.headers['Content-Disposition'].startswith('inline'))
        self.assertIn('pic.png', response.headers['Content-Disposition'])
        response.close()

        response = self.client.get(f"/api/files/{image['id']}?download=true")
        self.assertTrue(response.headers['Content-Disposition'].startswith('attachment'))
        response.close()

        response = self.client.get(f"/api/files/{archive['id']}")
        self.assertTrue(response.headers['Content-Disposition'].startswith('attachment'))
        self.assertEqual(response.data, b'PK\x03\x04')
        response.close()

    def test_delete_upload(self):
        record = self.upload('notes.txt', b'hello', 'text/plain', self.block['id'])

        response = self.client.delete(f"/api/uploads/{record['id']}")

        self.assertEqual(response.get_json(), {'success': True})
        self.assertFalse((self.upload_folder / record['storedName']).exists())
        self.assertEqual(self.client.get(f"/api/files/{record['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/uploads/{record['id']}").status_code, 404)

    def test_missing_file_on_disk(self):
        record = self.upload('notes.txt', b'hello', 'text/plain')
        (self.upload_folder / record['storedName']).unlink()

        response = self.client.get(f"/api/files/{record['id']}")

        self.assertEqual(response.status_code, 404)


class TestMisc(ApiTestCase):
    def test_version_and_health(self):
        self.assertEqual(self.client.get('/api/version').get_json(), {'version': '1.0.0'})
        self.assertEqual(self.client.get('/health').get_json()['status'], 'ok')

    def test_unknown_api_route_is_json(self):
        response = self.client.get('/api/nothing-here')
        self.assertEqual(response.status_code, 404)
        self.assertIn('error', response.get_json())

    def test_features(self):
        names = [f['name'] for f in self.client.get('/api/features').get_json()]
        self.assertEqual(names, ['STD_LINKIFY', 'STD_HEADING_ANCHORS', 'STD_SEARCH_HIGHLIGHT'])

    def test_rendered_document(self):
        document = self.create_document('Home')
        block = self.create_block(document['id'], '<h2>Intro</h2><p>see https://example.com for the intro</p>')

        data = self.client.get(f"/api/documents/{document['id']}/rendered?highlight=intro").get_json()

        self.assertEqual(data['highlight'], 'intro')
        self.assertEqual([b['id'] for b in data['blocks']], [block['id']])
        self.assertIn(f'<div class="content-block" id="{block["id"]}">', data['html'])
        self.assertIn('<h2 id="intro">', data['html'])
        self.assertIn('href="https://example.com"', data['html'])
        self.assertIn('<mark class="search-highlight">intro</mark>', data['html'])

    def test_rendered_keeps_text_escaped(self):
        document = self.create_document('Home')
        self.create_block(document['id'], '&lt;img src=x onerror=alert(1)&gt; intro')

        data = self.client.get(f"/api/documents/{document['id']}/rendered?highlight=intro").get_json()

        self.assertNotIn('<img', data['html'])
        self.assertIn('&lt;img src=x onerror=alert(1)&gt; <mark class="search-highlight">intro</mark>', data['html'])

    def test_rendered_without_highlight(self):
        document = self.create_document('Home')
        self.create_block(document['id'], '<p>intro</p>')

        data = self.client.get(f"/api/documents/{document['id']}/rendered").get_json()

        self.assertIsNone(data['highlight'])
        self.assertNotIn('<mark', data['html'])


class TestLocalStore(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.store = LocalStore(self.app)

    def test_round_trip(self):
        document = self.store.create_document('Home')
        block = self.store.create_block(document['id'], 'text', '<p>x</p>', 0)
        files = self.store.upload_files([FileUpload('notes.txt', b'hello')], block['id'])

        payload = self.store.fetch_file(files[0]['id'])
        self.assertEqual(payload.filename, 'notes.txt')
        self.assertEqual(payload.mime_type, 'text/plain')
        self.assertEqual(payload.data, b'hello')
        self.assertFalse(payload.as_attachment)
        self.assertTrue(self.store.fetch_file(files[0]['id'], download=True).as_attachment)

        self.store.delete_file(files[0]['id'])
        with self.assertRaises(NotFoundError):
            self.store.fetch_file(files[0]['id'])

    def test_deleting_inline_file_warns(self):
        document = self.store.create_document('Home')
        block = self.store.create_block(document['id'], 'text', '', 0)
        record = self.store.upload_files([FileUpload('pic.png', png_bytes(4, 4))], block['id'])[0]
        self.store.update_block(block['id'], content=f'<span class="inline-image" data-file-id="{record["id"]}"></span>')

        with self.assertLogs('wikinexus.storage', level='WARNING'):
            self.store.delete_file(record['id'])

    def test_editor_session_end_to_end(self):
        document = self.store.create_document('Home')
        scheduler = Scheduler(FakeClock())
        session = EditorSession(self.store, RecordingViewport(), scheduler=scheduler)

        session.load(document['id'])
        scheduler.run_until_idle()
        session.add_text_block()
        scheduler.run_until_idle()
        block_id = session.editing_block_id
        self.assertIsNotNone(block_id)

        session.update_draft(block_id, '<p>hello <span data-selection-marker="true">world</span></p>')
        session.insert_image(FileUpload('pic.png', png_bytes(40, 20)))
        scheduler.run_until_idle()
        session.save(block_id)
        scheduler.run_until_idle()

        stored = self.store.get_document(document['id'])['blocks']
        self.assertEqual(len(stored), 1)
        content = stored[0]['content']
        self.assertTrue(content.startswith('<p>hello world</p>'))
        file_id = stored[0]['attachments'][0]['id']
        self.assertIn(f'data-file-id="{file_id}"', content)
        self.assertNotIn('resize-handle', content)
        self.assertFalse(session.block(block_id).editing)


if __name__ == '__main__':
    unittest.main()
