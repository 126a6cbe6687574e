"""Local browser launcher.

Opens the session URL in a Chrome/Chromium app window when one is installed,
so code-server gets a chrome-less window and keyboard shortcuts, and falls back
to the system default browser otherwise.
"""

import logging
import os
import shutil
import subprocess
import webbrowser
from pathlib import Path

logger = logging.getLogger(__name__)


class BrowserLauncher:
    """Open URLs locally. Failures are logged, never raised."""

    CHROME_COMMANDS = [
        "google-chrome",
        "google-chrome-stable",
        "chromium",
        "chromium-browser",
    ]

    CHROME_PATHS = [
        Path("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"),
        Path("/mnt/c/Program Files (x86)/Google/Chrome/Application/chrome.exe"),
    ]

    @staticmethod
    def chrome_options(url: str) -> list[str]:
        return [f"--app={url}", "--disable-extensions", "--disable-plugins", "--incognito"]

    @classmethod
    def find_chrome(cls) -> str | None:
        """Return the first Chrome/Chromium executable found, if any."""
        for name in cls.CHROME_COMMANDS:
            path = shutil.which(name)
            if path:
                return path
        for path in cls.CHROME_PATHS:
            if path.exists():
                return str(path)
        return None

    def open(self, url: str) -> bool:
        """Open ``url`` in a browser.

        Returns:
            True if a browser was launched
        """
        chrome = self.find_chrome()
        if chrome is None:
            try:
                opened = webbrowser.open(url)
            except webbrowser.Error as e:
                logger.error(f"failed to open browser: {e}")
                return False
            if not opened:
                logger.error(f"failed to open browser, visit {url} manually")
            return opened

        # Never waited on: without a running Chrome the child is the browser itself
        try:
            subprocess.Popen(
                [chrome, *self.chrome_options(url)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            logger.error(f"failed to open browser: {e}")
            return False
        return True


__all__ = ["BrowserLauncher"]
