from __future__ import annotations

import os
import tempfile
import threading
import time
import unittest
from email.utils import formatdate
from pathlib import Path

from starlette.datastructures import Headers

from devserve.files import FileStreamer, ServedSet, is_not_modified, with_mtime


class ServedSetTests(unittest.TestCase):
    def test_first_serve_is_reported_once_per_canonical_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            target = root / "a.txt"
            target.write_text("a", encoding="utf-8")
            served = ServedSet()

            self.assertTrue(served.first_serve(str(target)))
            self.assertFalse(served.first_serve(str(root / "." / "a.txt")))
            self.assertIn(str(target), served)
            self.assertEqual(len(served), 1)

    def test_concurrent_first_serves_yield_one_winner(self) -> None:
        served = ServedSet()
        results: list[bool] = []
        lock = threading.Lock()

        def hit() -> None:
            first = served.first_serve("/tmp/same-file")
            with lock:
                results.append(first)

        threads = [threading.Thread(target=hit) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results.count(True), 1)


class ConditionalTests(unittest.TestCase):
    def test_etag_match(self) -> None:
        response = Headers({"etag": '"abc"', "last-modified": formatdate(0, usegmt=True)})

        self.assertTrue(is_not_modified(response, Headers({"if-none-match": '"abc"'})))
        self.assertTrue(is_not_modified(response, Headers({"if-none-match": 'W/"abc", "zzz"'})))
        self.assertFalse(is_not_modified(response, Headers({"if-none-match": '"zzz"'})))

    def test_if_modified_since(self) -> None:
        response = Headers({"last-modified": formatdate(1_000_000, usegmt=True)})

        self.assertTrue(is_not_modified(response, Headers({"if-modified-since": formatdate(1_000_000, usegmt=True)})))
        self.assertFalse(is_not_modified(response, Headers({"if-modified-since": formatdate(999_000, usegmt=True)})))
        self.assertFalse(is_not_modified(response, Headers({})))


class FileStreamerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()
        self.file = self.root / "app.js"
        self.file.write_text("console.log(1)\n", encoding="utf-8")
        self.old = 1_500_000_000
        os.utime(self.file, (self.old, self.old))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_with_mtime_overrides_only_modification_time(self) -> None:
        st = os.stat(self.file)

        fake = with_mtime(st, 1234.75)

        self.assertEqual(fake.st_mtime, 1234.75)
        self.assertEqual(fake[8], 1234)
        self.assertEqual(fake.st_size, st.st_size)
        self.assertEqual(fake.st_mode, st.st_mode)

    def test_first_serve_reports_now_then_real_mtime(self) -> None:
        streamer = FileStreamer()
        start = int(time.time())

        first = streamer.respond(str(self.file), Headers({}))
        second = streamer.respond(str(self.file), Headers({}))
        third = streamer.respond(str(self.file), Headers({}))

        self.assertNotEqual(first.headers["last-modified"], formatdate(self.old, usegmt=True))
        self.assertEqual(second.headers["last-modified"], formatdate(self.old, usegmt=True))
        self.assertEqual(second.headers["last-modified"], third.headers["last-modified"])
        self.assertEqual(second.headers["etag"], third.headers["etag"])
        self.assertGreaterEqual(int(time.time()), start)

    def test_first_serve_time_is_not_truncated(self) -> None:
        streamer = FileStreamer()
        start = time.time()

        reported = streamer.reported_stat(str(self.file), os.stat(self.file))

        self.assertGreaterEqual(reported.st_mtime, start)

    def test_path_with_nul_byte_is_404(self) -> None:
        response = FileStreamer().respond(str(self.root) + "/a\x00b.txt", Headers({}))

        self.assertEqual(response.status_code, 404)

    def test_no_cache_mode_always_reports_now(self) -> None:
        streamer = FileStreamer(no_cache=True)

        streamer.respond(str(self.file), Headers({}))
        again = streamer.respond(str(self.file), Headers({}))

        self.assertNotEqual(again.headers["last-modified"], formatdate(self.old, usegmt=True))
        self.assertEqual(again.headers["cache-control"], "no-cache, no-store, must-revalidate")

    def test_conditional_request_after_baseline_is_304(self) -> None:
        streamer = FileStreamer()
        streamer.respond(str(self.file), Headers({}))
        baseline = streamer.respond(str(self.file), Headers({}))

        cached = streamer.respond(str(self.file), Headers({"if-none-match": baseline.headers["etag"]}))

        self.assertEqual(cached.status_code, 304)

    def test_vanished_file_is_404_and_serve_hook_runs_for_served_files(self) -> None:
        seen: list[str] = []
        streamer = FileStreamer(on_serve=seen.append)

        missing = streamer.respond(str(self.root / "gone.js"), Headers({}))
        streamer.respond(str(self.file), Headers({}))

        self.assertEqual(missing.status_code, 404)
        self.assertEqual(seen, [str(self.file)])


if __name__ == "__main__":
    unittest.main()
