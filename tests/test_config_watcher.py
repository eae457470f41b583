import queue
import time
from pathlib import Path

import pytest

from conftest import wait_for, write_atomically
from desktopimage.config.config import ConfigStore
from desktopimage.config.watcher import ConfigWatcher
from desktopimage.monitor.monitor import Reconciler, WatcherPool

RULE = """
[[Watcher]]
app_path = "{app}"
desktop_path = "{desktop}"
categories = "Application"
"""


@pytest.fixture
def store(tmp_path):
    store = ConfigStore(tmp_path / 'etc' / 'config.toml')
    store.load()
    return store


@pytest.fixture
def config_watcher(store):
    watcher = ConfigWatcher(store)
    yield watcher
    watcher.stop()


def rule_text(base, name):
    app = base / name / 'apps'
    app.mkdir(parents=True)
    return RULE.format(app=app, desktop=base / name / 'desktop'), app, base / name / 'desktop'


def test_change_is_published_to_every_subscriber(store, config_watcher, tmp_path):
    first = config_watcher.subscribe()
    second = config_watcher.subscribe()
    config_watcher.start()

    text, app, _ = rule_text(tmp_path, 'a')
    write_atomically(store.path, text)

    config = first.get(timeout=5)
    assert config.active_rules[0].app_path == str(app)
    assert second.get(timeout=5) is config
    assert store.current is config


def test_malformed_edit_keeps_previous_config(store, config_watcher, tmp_path):
    updates = config_watcher.subscribe()
    config_watcher.start()
    before = store.current

    write_atomically(store.path, '[[Watcher]\napp_path = \n')

    with pytest.raises(queue.Empty):
        updates.get(timeout=1)
    assert store.current is before


def test_other_files_are_ignored(store, config_watcher):
    updates = config_watcher.subscribe()
    config_watcher.start()

    (store.path.parent / 'other.toml').write_text('auto_grant_executable = true\n')

    with pytest.raises(queue.Empty):
        updates.get(timeout=1)


def test_adding_a_rule_reconciles_the_pool(store, config_watcher, tmp_path):
    first_text, first_app, first_desktop = rule_text(tmp_path, 'first')
    second_text, second_app, second_desktop = rule_text(tmp_path, 'second')
    write_atomically(store.path, first_text)
    config = store.load().config

    pool = WatcherPool()
    pool.start(config)
    reconciler = Reconciler(pool, config_watcher.subscribe())
    reconciler.start()
    config_watcher.start()
    try:
        assert pool.active_count == 1
        write_atomically(store.path, first_text + second_text)
        assert wait_for(lambda: pool.active_count == 2
                        and len(store.current.active_rules) == 2)

        (first_app / 'One.AppImage').write_bytes(b'')
        (second_app / 'Two.AppImage').write_bytes(b'')
        assert wait_for((Path(first_desktop) / 'One.desktop').exists)
        assert wait_for((Path(second_desktop) / 'Two.desktop').exists)
    finally:
        reconciler.stop()
        pool.stop()
    assert pool.active_count == 0


def next_usable(updates, timeout=5):
    """Skip snapshots published while an in-place write was half done."""
    deadline = time.monotonic() + timeout
    while True:
        config = updates.get(timeout=max(deadline - time.monotonic(), 0.01))
        if config.usable:
            return config


def test_in_place_write_is_reloaded(store, config_watcher, tmp_path):
    updates = config_watcher.subscribe()
    config_watcher.start()

    text, app, _ = rule_text(tmp_path, 'inplace')
    store.path.write_text(text)

    config = next_usable(updates)
    assert config.active_rules[0].app_path == str(app)
    assert wait_for(lambda: store.current.usable)


def test_non_utf8_edit_is_survived(store, config_watcher, tmp_path):
    updates = config_watcher.subscribe()
    config_watcher.start()
    before = store.current

    store.path.with_name('raw.tmp').write_bytes(b'# caf\xe9\n')
    store.path.with_name('raw.tmp').replace(store.path)
    with pytest.raises(queue.Empty):
        updates.get(timeout=1)
    assert store.current == before

    text, app, _ = rule_text(tmp_path, 'after')
    write_atomically(store.path, text)
    assert next_usable(updates).active_rules[0].app_path == str(app)
