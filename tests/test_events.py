import unittest
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tests.helpers import FakeClock
from wikinexus.editor.events import EventTarget, PointerEvent, Scheduler
from wikinexus.errors import ApiError


class TestScheduler(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.scheduler = Scheduler(self.clock)

    def test_timer_runs_when_due(self):
        callback = MagicMock()
        self.scheduler.call_later(0.5, callback)

        self.scheduler.run_pending()
        callback.assert_not_called()

        self.clock.advance(0.5)
        self.scheduler.run_pending()
        callback.assert_called_once()
        self.assertFalse(self.scheduler.pending)

    def test_cancelled_timer_does_not_run(self):
        callback = MagicMock()
        handle = self.scheduler.call_later(0.1, callback)
        handle.cancel()
        self.clock.advance(1)
        self.scheduler.run_pending()
        callback.assert_not_called()

    def test_submit_delivers_result_on_next_tick(self):
        on_success = MagicMock()
        request = MagicMock(return_value={'id': 'b1'})

        self.scheduler.submit(request, on_success=on_success)
        request.assert_not_called()

        self.scheduler.run_pending()
        on_success.assert_called_once_with({'id': 'b1'})

    def test_submit_failure(self):
        on_success = MagicMock()
        on_failure = MagicMock()
        error = ApiError("down", status=503)

        self.scheduler.submit(MagicMock(side_effect=error), on_success, on_failure)
        self.scheduler.run_pending()

        on_success.assert_not_called()
        on_failure.assert_called_once_with(error)

    def test_unhandled_failure_is_logged(self):
        self.scheduler.submit(MagicMock(side_effect=ApiError("down")))
        with self.assertLogs('wikinexus.editor.events', level='ERROR'):
            self.scheduler.run_pending()

    def test_programming_errors_propagate(self):
        self.scheduler.submit(MagicMock(side_effect=KeyError('x')))
        with self.assertRaises(KeyError):
            self.scheduler.run_pending()

    def test_callbacks_queued_while_running_wait(self):
        order = []

        def first():
            order.append('first')
            self.scheduler.call_soon(lambda: order.append('second'))

        self.scheduler.call_soon(first)
        self.scheduler.run_pending()
        self.assertEqual(order, ['first'])

        self.scheduler.run_until_idle()
        self.assertEqual(order, ['first', 'second'])


class TestEventTarget(unittest.TestCase):
    def test_add_dispatch_remove(self):
        target = EventTarget()
        listener = MagicMock()

        target.add_listener('pointermove', listener)
        self.assertEqual(target.dispatch('pointermove', PointerEvent(1, 2)), 1)
        listener.assert_called_once_with(PointerEvent(1, 2))

        target.remove_listener('pointermove', listener)
        self.assertEqual(target.listener_count(), 0)
        self.assertEqual(target.dispatch('pointermove', PointerEvent(3, 4)), 0)


if __name__ == '__main__':
    unittest.main()
