"""Tests for the singleton lock (lock.py) and the analysis boundary (analyzer.py)."""

import json
import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from linux_helper.analyzer import CommandAnalyzer, parse_analysis
from linux_helper.errors import AnalysisError, LockError
from linux_helper.lock import LockFile


class TestLockFile:

    def test_acquire_writes_pid(self, tmp_path):
        path = tmp_path / "daemon.lock"
        lock = LockFile(str(path))
        lock.acquire()
        assert path.read_text() == str(os.getpid())
        assert lock.holder_pid() == os.getpid()

    def test_second_acquire_fails(self, tmp_path):
        path = str(tmp_path / "daemon.lock")
        LockFile(path).acquire()
        with pytest.raises(LockError, match="already running"):
            LockFile(path).acquire()

    def test_release_removes_file_and_is_idempotent(self, tmp_path):
        path = tmp_path / "daemon.lock"
        lock = LockFile(str(path))
        lock.acquire()
        lock.release()
        lock.release()
        assert not path.exists()

    def test_release_without_acquire_leaves_foreign_lock(self, tmp_path):
        path = tmp_path / "daemon.lock"
        path.write_text("12345")
        LockFile(str(path)).release()
        assert path.exists()


def _completed(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestAnalyzer:

    def test_parse_analysis(self):
        analysis = parse_analysis(json.dumps({
            "summary": "Disk is full",
            "suggestions": [{"title": "Check usage", "command": "df -h", "description": "x"}],
        }))
        assert analysis.summary == "Disk is full"
        assert analysis.suggestions[0].command == "df -h"

    def test_parse_rejects_garbage(self):
        with pytest.raises(AnalysisError):
            parse_analysis("I think you should run ls")
        with pytest.raises(AnalysisError):
            parse_analysis('{"suggestions": "ls"}')

    def test_command_receives_screenshot_path(self, sample_frame):
        analyzer = CommandAnalyzer(["analyze", "--fast"], timeout=5)
        out = json.dumps({"summary": "ok", "suggestions": []})
        with patch("linux_helper.analyzer.subprocess.run", return_value=_completed(out)) as run:
            analysis = analyzer.analyze(sample_frame)
        assert run.call_args[0][0] == ["analyze", "--fast", sample_frame.filepath]
        assert run.call_args[1]["timeout"] == 5
        assert analysis.summary == "ok"

    def test_non_zero_exit(self, sample_frame):
        analyzer = CommandAnalyzer(["analyze"])
        with patch("linux_helper.analyzer.subprocess.run",
                   return_value=_completed(returncode=1, stderr="quota exceeded")):
            with pytest.raises(AnalysisError, match="quota exceeded"):
                analyzer.analyze(sample_frame)

    def test_timeout(self, sample_frame):
        analyzer = CommandAnalyzer(["analyze"], timeout=1)
        with patch("linux_helper.analyzer.subprocess.run",
                   side_effect=subprocess.TimeoutExpired("analyze", 1)):
            with pytest.raises(AnalysisError, match="timed out"):
                analyzer.analyze(sample_frame)

    def test_missing_binary(self, sample_frame):
        analyzer = CommandAnalyzer(["analyze"])
        with patch("linux_helper.analyzer.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(AnalysisError, match="not found"):
                analyzer.analyze(sample_frame)
