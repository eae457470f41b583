import os
import time

import pytest

from desktopimage.config.config import Configuration, WatchRule
from desktopimage.generate_once import generate_once
from desktopimage.monitor import monitor


def wait_for(predicate, timeout=5.0, interval=0.05):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def write_atomically(path, text):
    tmp = path.with_name(path.name + '.tmp')
    tmp.write_text(text)
    os.replace(tmp, path)


@pytest.fixture(autouse=True)
def refreshes(monkeypatch):
    """Record desktop database refreshes instead of running the utility."""
    calls = []
    monkeypatch.setattr(monitor, 'update_desktop_database', lambda d: calls.append(str(d)))
    monkeypatch.setattr(generate_once, 'update_desktop_database', lambda d: calls.append(str(d)))
    return calls


@pytest.fixture
def make_rule(tmp_path):
    def _make(name='rule', categories='Application', icon_path=''):
        app_dir = tmp_path / name / 'apps'
        desktop_dir = tmp_path / name / 'desktop'
        app_dir.mkdir(parents=True)
        return WatchRule(
            app_path=str(app_dir),
            desktop_path=str(desktop_dir),
            categories=categories,
            icon_path=icon_path
        )
    return _make


@pytest.fixture
def pool():
    pool = monitor.WatcherPool()
    yield pool
    pool.stop()


def config_of(*rules, auto_grant_executable=False):
    return Configuration(auto_grant_executable=auto_grant_executable, rules=tuple(rules))
