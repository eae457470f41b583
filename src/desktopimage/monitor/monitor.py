#!/usr/bin/env python3
"""
AppImage Desktop File Monitor

Watches every configured AppImage directory and keeps a matching .desktop
file in the rule's desktop directory. Edits to the configuration file tear
down the running watchers and start a fresh set for the new rules.
"""

import argparse
import logging
import os
import queue
import shutil
import signal
import stat
import subprocess
import sys
import threading
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from desktopimage.config.config import DEFAULT_CONFIG_PATH, ConfigStore
from desktopimage.config.watcher import ConfigWatcher
from desktopimage.entry.desktop_entry import (
    DesktopEntry,
    app_name_from,
    desktop_file_path,
    is_appimage,
)
from desktopimage.errors import DesktopImageError, EnvironmentCheckError, WatchError
from desktopimage.logging_setup import configure_logging

logger = logging.getLogger(__name__)

UPDATE_DESKTOP_DATABASE = 'update-desktop-database'

CREATED = 'created'
REMOVED = 'removed'

_STOP = object()


def update_desktop_database(desktop_dir):
    """Refresh the desktop database cache for desktop_dir."""
    try:
        subprocess.run([UPDATE_DESKTOP_DATABASE, str(desktop_dir)],
                       capture_output=True, check=True)
        logger.info(f"Updated desktop database for {desktop_dir}")
    except subprocess.CalledProcessError as e:
        logger.warning(f"Failed to update desktop database: {e}")
    except FileNotFoundError:
        logger.warning(f"{UPDATE_DESKTOP_DATABASE} not found")


def grant_executable(appimage_path):
    mode = os.stat(appimage_path).st_mode
    os.chmod(appimage_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def write_entry(rule, appimage_path, auto_grant_executable=False):
    """Write the .desktop file for appimage_path under rule; True on success."""
    app_name = app_name_from(appimage_path)
    desktop_file = desktop_file_path(rule, app_name)
    entry = DesktopEntry.for_appimage(rule, Path(appimage_path).name)
    try:
        entry.write(desktop_file)
    except (OSError, UnicodeError) as e:
        logger.error(f"Error creating .desktop file for {app_name}: {e}")
        return False
    logger.info(f"Created .desktop file for {app_name} on {rule.desktop_path}")

    if auto_grant_executable:
        try:
            grant_executable(appimage_path)
            logger.info(f"Granted executable permission to {appimage_path}")
        except OSError as e:
            logger.warning(f"Could not make {appimage_path} executable: {e}")
    return True


class AppImageHandler(FileSystemEventHandler):
    """Turns watchdog events for *.AppImage files into queued work items."""

    def __init__(self, events):
        self.events = events

    def on_created(self, event):
        if not event.is_directory and is_appimage(event.src_path):
            self.events.put((CREATED, event.src_path))

    def on_deleted(self, event):
        if not event.is_directory and is_appimage(event.src_path):
            self.events.put((REMOVED, event.src_path))

    def on_moved(self, event):
        if event.is_directory:
            return
        if is_appimage(event.src_path):
            self.events.put((REMOVED, event.src_path))
        if is_appimage(event.dest_path):
            self.events.put((CREATED, event.dest_path))


class DirectoryWatch:
    """The watch loop for a single rule.

    The loop thread blocks on its queue until the observer delivers an event
    or cancel() puts the stop marker there. Events are handled one at a time
    in delivery order.
    """

    def __init__(self, rule, auto_grant_executable=False):
        self.rule = rule
        self.auto_grant_executable = auto_grant_executable
        self.done = threading.Event()
        self._events = queue.Queue()
        self._cancelled = threading.Event()
        self._observer = None
        self._thread = None

    @property
    def is_active(self):
        return (self._thread is not None and self._thread.is_alive()
                and not self._cancelled.is_set())

    def start(self):
        app_dir = Path(self.rule.app_path)
        if not app_dir.is_dir():
            raise WatchError(f"App directory {app_dir} does not exist")

        try:
            Path(self.rule.desktop_path).mkdir(parents=True, exist_ok=True)
            observer = Observer()
            observer.schedule(AppImageHandler(self._events), str(app_dir), recursive=False)
            observer.start()
        except OSError as e:
            raise WatchError(f"Cannot watch {app_dir}: {e}") from e

        self._observer = observer
        self._thread = threading.Thread(target=self._run, name=f"watch:{app_dir}", daemon=True)
        self._thread.start()
        logger.info(f"Starting file watcher on: {self.rule.app_path} => {self.rule.desktop_path}")

    def cancel(self):
        self._cancelled.set()
        self._events.put(_STOP)

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self):
        try:
            while True:
                item = self._events.get()
                if item is _STOP or self._cancelled.is_set():
                    break
                kind, path = item
                try:
                    self.handle_event(kind, path)
                except Exception:
                    logger.exception(f"Error handling {kind} event for {path}")
        finally:
            self._observer.stop()
            self._observer.join()
            logger.info(f"Stopped AppImage watcher on {self.rule.app_path}")
            self.done.set()

    def handle_event(self, kind, path):
        if kind == CREATED:
            logger.info(f"New AppImage detected: {path}")
            self.create_entry(path)
        elif kind == REMOVED:
            logger.info(f"AppImage removed: {path}")
            self.remove_entry(path)

    def create_entry(self, appimage_path):
        if write_entry(self.rule, appimage_path, self.auto_grant_executable):
            update_desktop_database(self.rule.desktop_path)
            return True
        return False

    def remove_entry(self, appimage_path):
        app_name = app_name_from(appimage_path)
        desktop_file = desktop_file_path(self.rule, app_name)
        try:
            os.remove(desktop_file)
        except OSError as e:
            logger.error(f"Error removing .desktop file for {app_name}: {e}")
            return False
        logger.info(f"Removed .desktop file for {app_name}")
        update_desktop_database(self.rule.desktop_path)
        return True


class WatcherPool:
    """One DirectoryWatch per active rule of the current configuration."""

    def __init__(self):
        self._watches = []
        self._lock = threading.Lock()

    @property
    def active_count(self):
        with self._lock:
            return sum(1 for watch in self._watches if watch.is_active)

    @property
    def watches(self):
        with self._lock:
            return list(self._watches)

    def _start_watches(self, config):
        started = []
        for rule in config.active_rules:
            watch = DirectoryWatch(rule, config.auto_grant_executable)
            try:
                watch.start()
            except WatchError as e:
                logger.warning(f"Skipping watcher {rule.app_path} => {rule.desktop_path}: {e}")
                continue
            started.append(watch)
        return started

    def start(self, config):
        """Start a watch loop for every active rule; returns how many started."""
        started = self._start_watches(config)
        with self._lock:
            self._watches.extend(started)
        logger.info(f"{len(started)} AppImage watcher(s) running")
        return len(started)

    def _detach(self):
        with self._lock:
            watches, self._watches = self._watches, []
        return watches

    def reload(self, config):
        """Cancel every running loop, then start a fresh set for config."""
        old = self._detach()
        for watch in old:
            watch.cancel()
        count = self.start(config)
        for watch in old:
            watch.join()
        return count

    def stop(self):
        watches = self._detach()
        for watch in watches:
            watch.cancel()
        for watch in watches:
            watch.join()
        logger.info("App file watchers stopped")


class Reconciler:
    """Applies every configuration published on updates to the pool."""

    def __init__(self, pool, updates):
        self.pool = pool
        self.updates = updates
        self._thread = None

    def start(self):
        self._thread = threading.Thread(target=self._run, name='reconciler', daemon=True)
        self._thread.start()

    def stop(self):
        if self._thread is None:
            return
        self.updates.put(_STOP)
        self._thread.join()
        self._thread = None

    def _run(self):
        while True:
            config = self.updates.get()
            if config is _STOP:
                break
            logger.info("Configuration changed, restarting AppImage watchers")
            try:
                self.pool.reload(config)
            except Exception:
                logger.exception("Error restarting AppImage watchers")


def check_environment():
    if not sys.platform.startswith('linux'):
        raise EnvironmentCheckError(
            f"Unsupported operating system: {sys.platform}. This program can only run on Linux."
        )
    if shutil.which(UPDATE_DESKTOP_DATABASE) is None:
        raise EnvironmentCheckError(
            f"Required desktop utility '{UPDATE_DESKTOP_DATABASE}' is not installed or not in PATH."
        )
    logger.info("Environment check passed: Linux system with desktop utilities available.")


def install_signal_handlers(shutdown):
    def _handle(signum, frame):
        logger.info(f"Shutdown signal received ({signal.Signals(signum).name}).")
        shutdown.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run(store, config, shutdown, pool=None):
    """Run the watchers until shutdown is set; returns the exit status."""
    if pool is None:
        pool = WatcherPool()
    if config.usable:
        pool.start(config)
    else:
        logger.info(f"Nothing to watch yet. Edit {store.path} to add a [[Watcher]] entry.")

    config_watcher = ConfigWatcher(store)
    reconciler = Reconciler(pool, config_watcher.subscribe())
    reconciler.start()
    try:
        config_watcher.start()
    except OSError as e:
        logger.error(f"Error initializing config file watcher: {e}")
        reconciler.stop()
        pool.stop()
        return 1

    logger.info("AppImage monitor running")
    shutdown.wait()

    config_watcher.stop()
    reconciler.stop()
    pool.stop()
    logger.info("All tasks stopped. Exiting.")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Keep .desktop files in sync with AppImages in watched directories."
    )
    parser.add_argument('--config', type=Path, default=DEFAULT_CONFIG_PATH,
                        help=f"configuration file (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--log-file', help="also write log lines to this file")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        check_environment()
        store = ConfigStore(args.config)
        result = store.load()
    except DesktopImageError as e:
        logger.error(f"{e}")
        return 1

    logger.info(f"Starting AppImage monitor ({result.state.value})")
    shutdown = threading.Event()
    install_signal_handlers(shutdown)
    return run(store, result.config, shutdown)


if __name__ == "__main__":
    sys.exit(main())
