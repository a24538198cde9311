# jarvis_link/desktop.py
"""
System action side effects: launching applications, opening settings panels
and typing text. Everything here is fire-and-forget; failures are logged,
never raised back into the session.
"""

import logging
import os
import platform
import shutil
import subprocess
import webbrowser
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .state import ActionType

logger = logging.getLogger(__name__)

SETTINGS_CATEGORIES = ["General", "Network", "Display", "Updates", "Privacy", "Apps"]

WINDOWS_SETTINGS_URIS = {
    "General": "ms-settings:",
    "Network": "ms-settings:network",
    "Display": "ms-settings:display",
    "Updates": "ms-settings:windowsupdate",
    "Privacy": "ms-settings:privacy",
    "Apps": "ms-settings:appsfeatures",
}

LINUX_SETTINGS_PANELS = {
    "General": None,
    "Network": "network",
    "Display": "display",
    "Updates": None,
    "Privacy": "privacy",
    "Apps": "applications",
}


class SystemActionExecutor(ABC):
    """External collaborator that applies the OS side effect of a system action"""

    @abstractmethod
    def perform(self, action_type: ActionType, content: str) -> str:
        """Apply the side effect and return a short human-readable outcome"""
        pass


class LoggingActionExecutor(SystemActionExecutor):
    """Records actions without touching the OS"""

    def perform(self, action_type: ActionType, content: str) -> str:
        logger.info(f"[dry-run] {action_type.value}: {content}")
        return f"Recorded {action_type.value}"


class DesktopActionExecutor(SystemActionExecutor):
    """Applies actions to the local desktop"""

    def __init__(self, aliases: Optional[Dict[str, str]] = None):
        self.current_os = platform.system().lower()
        self.aliases = {k.lower(): v for k, v in (aliases or {}).items()}

    def perform(self, action_type: ActionType, content: str) -> str:
        try:
            if action_type == ActionType.OPEN_APP:
                return self.launch_app(content)
            if action_type == ActionType.OPEN_SETTINGS:
                return self.open_settings(content)
            if action_type == ActionType.TYPE_MESSAGE:
                return self.type_text(content)
        except Exception as e:
            logger.error(f"{action_type.value} failed for '{content}': {e}")
            return f"Failed: {e}"
        logger.debug(f"No desktop side effect for {action_type.value}")
        return "ok"

    # ------------------------------------------------------------------ #
    def resolve_app_name(self, app_name: str) -> str:
        name = app_name.strip()
        return self.aliases.get(name.lower(), name)

    def launch_app(self, app_name: str) -> str:
        """Launch the given application or URL"""
        resolved = self.resolve_app_name(app_name)
        logger.info(f"[launch_app] Input: '{app_name}' → Resolved: '{resolved}'")

        if resolved.lower().startswith(("http://", "https://", "www.")):
            url = resolved if resolved.lower().startswith("http") else f"https://{resolved}"
            webbrowser.open(url)
            return f"Opened browser to {url}"

        if self.current_os == "windows":
            executable = shutil.which(resolved)
            if executable:
                subprocess.Popen([executable])
            else:
                # ShellExecute resolves App Paths registrations (e.g. "winword")
                os.startfile(resolved)
            return f"Launched '{resolved}'"

        if self.current_os == "darwin":
            subprocess.Popen(["open", "-a", resolved])
            return f"Launched '{resolved}'"

        candidates: List[str] = [resolved, resolved.lower(), resolved.lower().replace(" ", "-")]
        for candidate in candidates:
            executable = shutil.which(candidate)
            if executable:
                subprocess.Popen([executable], start_new_session=True)
                return f"Launched '{resolved}'"
        logger.warning(f"Application '{resolved}' not found in PATH")
        return f"Application '{resolved}' not found"

    def open_settings(self, category: str) -> str:
        category = category if category in SETTINGS_CATEGORIES else "General"

        if self.current_os == "windows":
            os.startfile(WINDOWS_SETTINGS_URIS[category])
        elif self.current_os == "darwin":
            subprocess.Popen(["open", "x-apple.systempreferences:"])
        else:
            cmd = ["gnome-control-center"]
            panel = LINUX_SETTINGS_PANELS[category]
            if panel:
                cmd.append(panel)
            if not shutil.which(cmd[0]):
                logger.warning("gnome-control-center not available")
                return "Settings application not available"
            subprocess.Popen(cmd, start_new_session=True)
        return f"Opened {category} settings"

    def type_text(self, text: str) -> str:
        """Type text into the focused window"""
        from pynput.keyboard import Controller

        Controller().type(text)
        return f"Typed {len(text)} characters"
