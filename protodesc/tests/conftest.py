"""Unit tests configuration file."""

import textwrap

import pytest


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


@pytest.fixture
def write_protos(tmp_path):
    """Write {relative path: source} into a fresh directory and return it."""

    def write(files, root="protos"):
        directory = tmp_path / root
        for name, source in files.items():
            path = directory / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(source), encoding="utf-8")
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    return write
