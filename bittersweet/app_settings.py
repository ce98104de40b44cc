"""Settings slice: theme, language, notification and privacy preferences.

Focus timer preferences live on the focus slice.
"""

from __future__ import annotations

from typing import Any

from bittersweet.base import Slice, StoreContext
from bittersweet.errors import ValidationError
from bittersweet.events import StoreEvents
from bittersweet.models import NotificationSettings, PrivacySettings

THEMES = ("light", "dark", "system")
DEFAULT_THEME = "system"
DEFAULT_LANGUAGE = "en"


class SettingsSlice(Slice):
    name = "settings"

    def __init__(self, ctx: StoreContext) -> None:
        super().__init__(ctx)
        self.theme = DEFAULT_THEME
        self.language = DEFAULT_LANGUAGE
        self.notifications = NotificationSettings()
        self.privacy = PrivacySettings()

    def as_dict(self) -> dict[str, Any]:
        return {
            "theme": self.theme,
            "language": self.language,
            "notifications": self.notifications.to_dict(),
            "privacy": self.privacy.to_dict(),
        }

    def update_settings(self, updates: dict[str, Any]) -> dict[str, Any]:
        """Deep-merge camelCase ``updates``; nested sections merge key by key."""
        unknown = set(updates) - {"theme", "language", "notifications", "privacy"}
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}", rule="settings_keys")
        theme = updates.get("theme", self.theme)
        if theme not in THEMES:
            raise ValidationError(f"Theme must be one of {', '.join(THEMES)}", rule="theme_value")
        language = updates.get("language", self.language)
        if not isinstance(language, str) or not language:
            raise ValidationError("Language must be a non-empty string", rule="language_value")
        for section in ("notifications", "privacy"):
            if section in updates and not isinstance(updates[section], dict):
                raise ValidationError(f"{section} must be an object", rule="settings_section")

        previous = self.as_dict()
        self.theme = theme
        self.language = language
        self.notifications = NotificationSettings.from_dict(
            {**self.notifications.to_dict(), **updates.get("notifications", {})}
        )
        self.privacy = PrivacySettings.from_dict({**self.privacy.to_dict(), **updates.get("privacy", {})})
        self._commit()
        self._announce(updates, previous)
        return self.as_dict()

    def reset_settings(self) -> dict[str, Any]:
        previous = self.as_dict()
        self.theme = DEFAULT_THEME
        self.language = DEFAULT_LANGUAGE
        self.notifications = NotificationSettings()
        self.privacy = PrivacySettings()
        self._commit()
        self._announce(self.as_dict(), previous, reset=True)
        return self.as_dict()

    def _announce(self, updates: dict[str, Any], previous: dict[str, Any], reset: bool = False) -> None:
        current = self.as_dict()
        payload: dict[str, Any] = {"updates": updates, "previousSettings": previous, "newSettings": current}
        if reset:
            payload["isReset"] = True
        self.events.emit(StoreEvents.SETTINGS_UPDATED, payload)
        if current["theme"] != previous["theme"]:
            self.events.emit(StoreEvents.THEME_CHANGED, {
                "previousTheme": previous["theme"],
                "newTheme": current["theme"],
            })

    def to_persisted(self) -> dict[str, Any]:
        return self.as_dict()

    def parse_persisted(self, data: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if data.get("theme") in THEMES:
            values["theme"] = data["theme"]
        if isinstance(data.get("language"), str) and data["language"]:
            values["language"] = data["language"]
        if "notifications" in data:
            values["notifications"] = NotificationSettings.from_dict(data["notifications"])
        if "privacy" in data:
            values["privacy"] = PrivacySettings.from_dict(data["privacy"])
        return values
