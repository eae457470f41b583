"""
Desktop entry files

Builds, writes and reads back the .desktop launcher written for each AppImage.
"""

import contextlib
import os
from dataclasses import dataclass
from pathlib import Path

APPIMAGE_SUFFIX = '.AppImage'
DESKTOP_SUFFIX = '.desktop'
SECTION_HEADER = '[Desktop Entry]'


def is_appimage(path):
    return str(path).endswith(APPIMAGE_SUFFIX)


def app_name_from(file_name):
    """'Foo.AppImage' -> 'Foo'"""
    name = os.path.basename(str(file_name))
    if name.endswith(APPIMAGE_SUFFIX):
        name = name[:-len(APPIMAGE_SUFFIX)]
    return name


def desktop_file_path(rule, app_name):
    return Path(rule.desktop_path) / f"{app_name}{DESKTOP_SUFFIX}"


@dataclass(frozen=True)
class DesktopEntry:
    name: str
    exec_path: str
    categories: str
    icon: str = ''
    terminal: bool = False
    type: str = 'Application'

    @classmethod
    def for_appimage(cls, rule, file_name):
        """Entry for an AppImage called file_name inside rule.app_path."""
        file_name = os.path.basename(str(file_name))
        return cls(
            name=app_name_from(file_name),
            exec_path=os.path.join(rule.app_path, file_name),
            categories=rule.categories,
            icon=rule.icon_path
        )

    def render(self):
        lines = [
            SECTION_HEADER,
            f"Type={self.type}",
            f"Name={self.name}",
            f"Exec={self.exec_path}",
            f"Terminal={'true' if self.terminal else 'false'}",
            f"Categories={self.categories}",
        ]
        if self.icon:
            lines.append(f"Icon={self.icon}")
        return '\n'.join(lines) + '\n'

    def write(self, path):
        """Write the entry as UTF-8; nothing is left behind if this raises."""
        path = Path(path)
        # encoded before the file is opened
        data = self.render().encode('utf-8')
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError:
            with contextlib.suppress(OSError):
                path.unlink()
            raise
        os.chmod(path, 0o644)
        return path

    @classmethod
    def parse(cls, text):
        """Read back the keys of the [Desktop Entry] group."""
        values = {}
        in_section = False
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if line.startswith('['):
                in_section = line == SECTION_HEADER
                continue
            if in_section and '=' in line:
                key, value = line.split('=', 1)
                values[key.strip()] = value.strip()

        if 'Name' not in values or 'Exec' not in values:
            raise ValueError("Not a desktop entry: missing Name or Exec")

        return cls(
            name=values['Name'],
            exec_path=values['Exec'],
            categories=values.get('Categories', ''),
            icon=values.get('Icon', ''),
            terminal=values.get('Terminal', 'false').lower() == 'true',
            type=values.get('Type', 'Application')
        )

    @classmethod
    def read(cls, path):
        return cls.parse(Path(path).read_text(encoding='utf-8'))
