from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest import mock

from devserve import cli


class ParseArgsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = cli.parse_args([tmp])

        self.assertEqual(config.directory, tmp)
        self.assertFalse(config.pushstate)
        self.assertFalse(config.live_reload)
        self.assertEqual(config.fallback, "")

    def test_flags_map_onto_config(self) -> None:
        config = cli.parse_args([
            "site",
            "--port", "8080",
            "--pushstate",
            "--live-reload",
            "--no-archive",
            "--list-directories-first",
            "--case-insensitive",
            "--fallback", "http://localhost:9000",
            "--time-fmt", "%H:%M:%S",
        ])

        self.assertEqual(config.port, 8080)
        self.assertTrue(config.pushstate)
        self.assertTrue(config.live_reload)
        self.assertTrue(config.no_archive)
        self.assertTrue(config.list_directories_first)
        self.assertTrue(config.case_insensitive)
        self.assertEqual(config.fallback, "http://localhost:9000")
        self.assertEqual(config.time_fmt, "%H:%M:%S")


class MainTests(unittest.TestCase):
    def test_configuration_error_exits_before_binding(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            missing = str(Path(tmp) / "absent")
            with mock.patch("devserve.cli.uvicorn.run") as run, mock.patch("sys.stderr"):
                code = cli.main([missing, "--quiet"])

        self.assertEqual(code, 1)
        run.assert_not_called()

    def test_runs_uvicorn_with_configured_address(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with mock.patch("devserve.cli.uvicorn.run") as run:
                code = cli.main([tmp, "--host", "127.0.0.1", "--port", "4000", "--quiet"])

        self.assertEqual(code, 0)
        self.assertEqual(run.call_args.kwargs["host"], "127.0.0.1")
        self.assertEqual(run.call_args.kwargs["port"], 4000)


if __name__ == "__main__":
    unittest.main()
