import sys
import datetime
from pathlib import Path

import pytest

# Add project root to sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

TESTS_DIR = PROJECT_ROOT / 'tests'
OUTPUT_FILE = TESTS_DIR / 'latest_results.log'


class Tee:
    """Write to several streams at once."""

    def __init__(self, *streams):
        self.streams = streams

    def write(self, text):
        for stream in self.streams:
            stream.write(text)
            stream.flush()

    def flush(self):
        for stream in self.streams:
            stream.flush()

    def isatty(self):
        return False


def run_tests_with_pytest(extra_args=None):
    """
    Run the WikiNexus test suite and mirror the output into tests/latest_results.log.
    Extra arguments (e.g. ``-k session``) are passed on to pytest.
    """
    args = ["-v", "-ra", str(TESTS_DIR)] + list(extra_args or [])
    print(f"Running tests via Pytest: {' '.join(args)}")
    print(f"Output will be saved to: {OUTPUT_FILE}")

    with open(OUTPUT_FILE, 'w', encoding='utf-8') as log:
        log.write(f"Test Run: {datetime.datetime.now()}\n")
        log.write("=" * 60 + "\n\n")
        log.flush()

        original_stdout, original_stderr = sys.stdout, sys.stderr
        sys.stdout = Tee(original_stdout, log)
        sys.stderr = Tee(original_stderr, log)
        try:
            exit_code = pytest.main(args)
        finally:
            sys.stdout, sys.stderr = original_stdout, original_stderr

        log.write("\n" + "=" * 60 + "\n")
        log.write(f"Run Completed. Exit Code: {exit_code}\n")

    return exit_code == 0


if __name__ == "__main__":
    success = run_tests_with_pytest(sys.argv[1:])
    sys.exit(0 if success else 1)
