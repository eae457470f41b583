"""
Configuration file watcher

Watches the directory holding the configuration file and reloads it whenever
the file is written or recreated. Each successful reload is published as a
new Configuration on every subscriber queue.
"""

import logging
import queue
import threading
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from desktopimage.errors import ConfigError

logger = logging.getLogger(__name__)

_STOP = object()


class ConfigFileHandler(FileSystemEventHandler):
    """Forwards events that touch the configuration file to a queue."""

    def __init__(self, config_path, events):
        self.file_name = Path(config_path).name
        self.events = events

    def _matches(self, path):
        return Path(path).name == self.file_name

    def on_created(self, event):
        if not event.is_directory and self._matches(event.src_path):
            self.events.put(('created', event.src_path))

    def on_modified(self, event):
        if not event.is_directory and self._matches(event.src_path):
            self.events.put(('modified', event.src_path))

    def on_moved(self, event):
        # editors that save through a temporary file and rename it into place
        if not event.is_directory and self._matches(event.dest_path):
            self.events.put(('created', event.dest_path))


class ConfigWatcher:
    def __init__(self, store):
        self.store = store
        self._events = queue.Queue()
        self._subscribers = []
        self._lock = threading.Lock()
        self._observer = None
        self._thread = None

    def subscribe(self):
        """Return a queue that receives every successfully reloaded Configuration."""
        updates = queue.Queue()
        with self._lock:
            self._subscribers.append(updates)
        return updates

    def start(self):
        config_dir = self.store.path.parent
        handler = ConfigFileHandler(self.store.path, self._events)
        self._observer = Observer()
        self._observer.schedule(handler, str(config_dir), recursive=False)
        self._observer.start()

        self._thread = threading.Thread(target=self._run, name='config-watcher', daemon=True)
        self._thread.start()
        logger.info(f"Started config file watcher on {config_dir}")

    def stop(self):
        if self._thread is None:
            return
        self._events.put(_STOP)
        self._thread.join()
        self._thread = None
        logger.info("Config file watcher stopped")

    def _publish(self, config):
        with self._lock:
            subscribers = list(self._subscribers)
        for updates in subscribers:
            updates.put(config)

    def _handle(self, kind):
        logger.info(f"Configuration file {self.store.path} {kind}, reloading...")
        try:
            config = self.store.reload()
        except ConfigError as e:
            logger.error(f"Error reloading configuration, keeping the previous one: {e}")
            return
        logger.info(f"Configuration reloaded successfully. New config: {config}")
        self._publish(config)

    def _run(self):
        try:
            while True:
                item = self._events.get()
                if item is _STOP:
                    break
                kind, _path = item
                self._handle(kind)
        finally:
            logger.info("Stopping config file watcher.")
            self._observer.stop()
            self._observer.join()
