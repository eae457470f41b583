#!/usr/bin/env python3
"""
AppImage Desktop File Generator

One-off pass over every configured AppImage directory that writes the
.desktop files the monitor would have written for AppImages already there.
"""

import argparse
import logging
import sys
from pathlib import Path

from desktopimage.config.config import DEFAULT_CONFIG_PATH, ConfigStore, LoadState
from desktopimage.entry.desktop_entry import APPIMAGE_SUFFIX
from desktopimage.errors import DesktopImageError
from desktopimage.logging_setup import configure_logging
from desktopimage.monitor.monitor import update_desktop_database, write_entry

logger = logging.getLogger(__name__)


def generate_for_rule(rule, auto_grant_executable=False):
    """Write entries for the AppImages in rule.app_path; returns how many."""
    app_dir = Path(rule.app_path)
    if not app_dir.is_dir():
        logger.warning(f"App directory {app_dir} does not exist, skipping")
        return 0

    appimages = sorted(p for p in app_dir.glob(f"*{APPIMAGE_SUFFIX}") if p.is_file())
    if not appimages:
        logger.info(f"No AppImages found in {app_dir}")
        return 0

    logger.info(f"Found {len(appimages)} AppImages in {app_dir}")
    Path(rule.desktop_path).mkdir(parents=True, exist_ok=True)

    written = 0
    for appimage in appimages:
        logger.info(f"Processing: {appimage.name}")
        if write_entry(rule, appimage, auto_grant_executable):
            written += 1
    return written


def generate_all(config):
    """Run generate_for_rule over every active rule, refreshing each output directory once."""
    total = 0
    refreshed = set()
    for rule in config.active_rules:
        written = generate_for_rule(rule, config.auto_grant_executable)
        total += written
        if written and rule.desktop_path not in refreshed:
            update_desktop_database(rule.desktop_path)
            refreshed.add(rule.desktop_path)
    return total


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Generate .desktop files for AppImages already in the watched directories."
    )
    parser.add_argument('--config', type=Path, default=DEFAULT_CONFIG_PATH)
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        result = ConfigStore(args.config).load()
    except DesktopImageError as e:
        logger.error(f"{e}")
        return 1

    if result.state is not LoadState.LOADED:
        logger.info("No complete watcher entry configured, nothing to generate")
        return 0

    total = generate_all(result.config)
    logger.info(f"Desktop file generation complete: {total} file(s) written")
    return 0


if __name__ == "__main__":
    sys.exit(main())
