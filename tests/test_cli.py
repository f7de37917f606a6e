import contextlib
import io
import tempfile
import unittest
from pathlib import Path

from p2pshare.__main__ import parse_args, run

from .fake_tracker import FakeTracker


class CommandLineTest(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.share = Path(self._tmp.name)

    async def asyncTearDown(self):
        self._tmp.cleanup()

    async def run_list(self, tracker: FakeTracker):
        await tracker.start()
        self.addAsyncCleanup(tracker.stop)
        args = parse_args(['--tracker', f'127.0.0.1:{tracker.port}', '--share', str(self.share),
                           '--timeout', '5', 'list'])
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            status = await run(args)
        return status, out.getvalue()

    async def test_list_prints_entries(self):
        status, out = await self.run_list(FakeTracker(files={'alpha.txt': 100}))
        self.assertEqual(status, 0)
        self.assertIn('alpha.txt', out)

    async def test_failed_quit_exits_nonzero(self):
        tracker = FakeTracker(files={'alpha.txt': 100}, goodbye='LATER')
        status, out = await self.run_list(tracker)
        self.assertEqual(status, 1)
        self.assertIn('alpha.txt', out)
        self.assertIn('QUIT', tracker.received)

    async def test_tracker_error_exits_nonzero(self):
        status, _ = await self.run_list(FakeTracker(list_reply='ERROR L0'))
        self.assertEqual(status, 1)
