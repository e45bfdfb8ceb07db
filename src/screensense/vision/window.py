"""Active window detection.

Uses ``osascript`` on macOS and ``xdotool``/``xprop`` on Linux. When no window
has focus, or the platform tools are missing, detection returns ``None``.
"""

from __future__ import annotations

import re
import shutil
import subprocess
import sys
from typing import Optional

from loguru import logger

from .models import BoundingBox, WindowInfo

_FRONTMOST_SCRIPT = """
tell application "System Events"
    set frontApp to first application process whose frontmost is true
    set appName to name of frontApp
    try
        set frontWin to front window of frontApp
        set winTitle to title of frontWin
        set winPos to position of frontWin
        set winSize to size of frontWin
        return "APP:" & appName & "|TITLE:" & winTitle & "|X:" & (item 1 of winPos) & "|Y:" & (item 2 of winPos) & "|W:" & (item 1 of winSize) & "|H:" & (item 2 of winSize)
    on error
        return "APP:" & appName & "|TITLE:|X:0|Y:0|W:0|H:0"
    end try
end tell
"""

_URL_PATTERN = re.compile(r"https?://\S+")


def parse_window_line(line: str) -> Optional[WindowInfo]:
    """Parse an ``APP:..|TITLE:..|X:..|Y:..|W:..|H:..`` record."""
    fields: dict[str, str] = {}
    for part in line.strip().split("|"):
        key, sep, value = part.partition(":")
        if sep:
            fields[key.strip().upper()] = value.strip()

    app_name = fields.get("APP")
    if not app_name:
        return None

    bounds = None
    try:
        x, y = int(fields.get("X", 0)), int(fields.get("Y", 0))
        width, height = int(fields.get("W", 0)), int(fields.get("H", 0))
        if width > 0 and height > 0:
            bounds = BoundingBox(x, y, x + width, y + height)
    except ValueError:
        bounds = None

    title = fields.get("TITLE", "")
    url_match = _URL_PATTERN.search(title)
    return WindowInfo(
        app_name=app_name,
        title=title,
        url=url_match.group(0) if url_match else None,
        bounds=bounds,
    )


class WindowDetector:
    """Detect the focused application window."""

    def __init__(self, timeout: float = 2.0) -> None:
        self.timeout = timeout

    def detect_active_window(self) -> Optional[WindowInfo]:
        try:
            if sys.platform == "darwin":
                return self._detect_macos()
            if sys.platform.startswith("linux"):
                return self._detect_linux()
        except (subprocess.SubprocessError, OSError) as exc:
            logger.warning(f"Active window detection failed: {exc}")
            return None

        logger.debug(f"Active window detection unsupported on {sys.platform}")
        return None

    def _run(self, cmd: list[str]) -> str:
        return subprocess.check_output(  # noqa: S603
            cmd, stderr=subprocess.DEVNULL, timeout=self.timeout, text=True
        ).strip()

    def _detect_macos(self) -> Optional[WindowInfo]:
        output = self._run(["osascript", "-e", _FRONTMOST_SCRIPT])
        return parse_window_line(output) if output else None

    def _detect_linux(self) -> Optional[WindowInfo]:
        if not shutil.which("xdotool"):
            logger.debug("xdotool not installed; no window context")
            return None

        window_id = self._run(["xdotool", "getactivewindow"])
        if not window_id:
            return None

        title = self._run(["xdotool", "getwindowname", window_id])
        geometry = self._run(["xdotool", "getwindowgeometry", "--shell", window_id])
        values = dict(
            line.split("=", 1) for line in geometry.splitlines() if "=" in line
        )

        app_name = title.rsplit(" - ", 1)[-1] if " - " in title else title
        if shutil.which("xprop"):
            wm_class = self._run(["xprop", "-id", window_id, "WM_CLASS"])
            classes = re.findall(r'"([^"]*)"', wm_class)
            if classes:
                app_name = classes[-1]

        record = (
            f"APP:{app_name or 'unknown'}|TITLE:{title}|X:{values.get('X', 0)}|Y:{values.get('Y', 0)}"
            f"|W:{values.get('WIDTH', 0)}|H:{values.get('HEIGHT', 0)}"
        )
        return parse_window_line(record)
