import io
import unittest
import sys
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from wikinexus import cli


class TestCli(unittest.TestCase):
    def test_version(self):
        out = io.StringIO()
        with redirect_stdout(out):
            self.assertEqual(cli.main(['--version']), 0)
        self.assertIn('WikiNexus v1.0.0', out.getvalue())

    @patch('wikinexus.cli.start_server')
    def test_start_is_default(self, start_server):
        self.assertEqual(cli.main([]), 0)
        start_server.assert_called_once()

    @patch('wikinexus.cli.start_server', side_effect=RuntimeError("port in use"))
    def test_start_failure(self, _start_server):
        with patch('sys.stderr', new=io.StringIO()) as err:
            self.assertEqual(cli.main(['--port', '9000', 'start']), 1)
        self.assertIn('port in use', err.getvalue())

    @patch('wikinexus.cli.init_db')
    def test_init_db(self, init_db):
        self.assertEqual(cli.main(['init-db']), 0)
        init_db.assert_called_once()


if __name__ == '__main__':
    unittest.main()
