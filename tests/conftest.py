import io
import os
import subprocess

import pytest
from compact_mcp import config
from compact_mcp.services import compiler

COMPILER = "/opt/compact/bin/compact"


class FakeProcess:
    """Stands in for a compiler subprocess.Popen handle."""

    def __init__(self, returncode, stdout, stderr, hangs=None):
        self.returncode = returncode
        self.stdout = io.StringIO(stdout)
        self.stderr = io.StringIO(stderr)
        self.hangs = hangs
        self.killed = False
        self.wait_timeouts = []

    def wait(self, timeout=None):
        self.wait_timeouts.append(timeout)
        if self.killed:
            return -9
        if self.hangs:
            raise self.hangs
        return self.returncode

    def kill(self):
        self.killed = True


class FakeCompiler:
    """Stands in for subprocess.run (version checks) and subprocess.Popen (compiles)."""

    def __init__(self, version="compact 0.26.0", returncode=0, stdout="", stderr="", raises=None):
        self.version = version
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.raises = raises
        self.compile_calls = []

    def run(self, args, **kwargs):
        return subprocess.CompletedProcess(args, 0, stdout=self.version + "\n", stderr="")

    def popen(self, args, **kwargs):
        staged_text = None
        if os.path.isfile(args[2]):
            with open(args[2], encoding="utf-8") as f:
                staged_text = f.read()
        call = {"args": args, "kwargs": kwargs, "staged_text": staged_text, "process": None}
        self.compile_calls.append(call)
        if self.raises and not isinstance(self.raises, subprocess.TimeoutExpired):
            raise self.raises
        call["process"] = FakeProcess(self.returncode, self.stdout, self.stderr, hangs=self.raises)
        return call["process"]


@pytest.fixture
def fake_compiler(monkeypatch):
    fake = FakeCompiler()
    monkeypatch.setattr(config, "COMPILER_PATH", COMPILER)
    monkeypatch.setattr(compiler.subprocess, "run", fake.run)
    monkeypatch.setattr(compiler.subprocess, "Popen", fake.popen)
    return fake


@pytest.fixture
def no_compiler(monkeypatch, tmp_path):
    empty = tmp_path / "empty-path"
    empty.mkdir()
    monkeypatch.setattr(config, "COMPILER_PATH", None)
    monkeypatch.setenv("PATH", str(empty))
