"""Branding / theme configuration stored in the themes table."""
import re
import time
import logging
from typing import Callable, Dict, Optional
from pydantic import BaseModel

from config import SETTINGS_CACHE_TTL
from data_gateway import DataGateway, DataAccessError, THEMES

logger = logging.getLogger(__name__)

HEX_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{3}){1,2}$")


class ThemeConfig(BaseModel):
    system_name: str
    description: Optional[str] = None
    logo_icon: str
    primary_color: str
    secondary_color: str
    accent_color: str
    text_color: Optional[str] = None
    background_color: Optional[str] = None
    font_family: Optional[str] = None
    border_radius: Optional[str] = None
    custom_css: Optional[str] = None


_DESCRIPTION = "AI agent builder platform"

THEME_PRESETS: Dict[str, ThemeConfig] = {
    "blue": ThemeConfig(
        system_name="Impa AI", description=_DESCRIPTION, logo_icon="🤖",
        primary_color="#3b82f6", secondary_color="#10b981", accent_color="#8b5cf6",
    ),
    "purple": ThemeConfig(
        system_name="Impa AI", description=_DESCRIPTION, logo_icon="🔮",
        primary_color="#8b5cf6", secondary_color="#ec4899", accent_color="#3b82f6",
    ),
    "green": ThemeConfig(
        system_name="Impa AI", description=_DESCRIPTION, logo_icon="🌱",
        primary_color="#10b981", secondary_color="#3b82f6", accent_color="#f59e0b",
    ),
    "orange": ThemeConfig(
        system_name="Impa AI", description=_DESCRIPTION, logo_icon="🔥",
        primary_color="#f97316", secondary_color="#8b5cf6", accent_color="#10b981",
    ),
    "dark": ThemeConfig(
        system_name="Impa AI", description=_DESCRIPTION, logo_icon="⚡",
        primary_color="#6366f1", secondary_color="#ec4899", accent_color="#f97316",
        background_color="#1e293b", text_color="#f8fafc",
    ),
}

DEFAULT_THEME = THEME_PRESETS["blue"]


def is_valid_hex_color(color: str) -> bool:
    return bool(color) and bool(HEX_COLOR_RE.match(color))


def adjust_color_brightness(color: str, percent: float) -> str:
    """Lighten (positive) or darken (negative) a hex color by `percent`."""
    if not is_valid_hex_color(color):
        return color

    value = color.lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    num = int(value, 16)
    amount = round(2.55 * percent)

    channels = [(num >> 16) + amount, ((num >> 8) & 0xFF) + amount, (num & 0xFF) + amount]
    return "#" + "".join(f"{max(0, min(255, c)):02x}" for c in channels)


def apply_theme_preset(preset_name: str) -> ThemeConfig:
    return THEME_PRESETS.get(preset_name, DEFAULT_THEME)


def theme_from_row(row: dict) -> ThemeConfig:
    """Map a themes row onto ThemeConfig, filling gaps from the default."""
    colors = row.get("colors") or {}
    return ThemeConfig(
        system_name=row.get("display_name") or DEFAULT_THEME.system_name,
        description=row.get("description") or DEFAULT_THEME.description,
        logo_icon=row.get("logo_icon") or DEFAULT_THEME.logo_icon,
        primary_color=colors.get("primary") or DEFAULT_THEME.primary_color,
        secondary_color=colors.get("secondary") or DEFAULT_THEME.secondary_color,
        accent_color=colors.get("accent") or DEFAULT_THEME.accent_color,
        text_color=colors.get("text"),
        background_color=colors.get("background"),
        font_family=(row.get("fonts") or {}).get("primary"),
        border_radius=(row.get("borders") or {}).get("radius"),
        custom_css=row.get("custom_css"),
    )


def theme_to_row(theme: ThemeConfig) -> dict:
    return {
        "name": re.sub(r"\s+", "_", theme.system_name.lower()),
        "display_name": theme.system_name,
        "description": theme.description or "Custom theme",
        "colors": {
            "primary": theme.primary_color,
            "secondary": theme.secondary_color,
            "accent": theme.accent_color,
            "text": theme.text_color,
            "background": theme.background_color,
        },
        "fonts": {"primary": theme.font_family},
        "borders": {"radius": theme.border_radius},
        "custom_css": theme.custom_css,
        "logo_icon": theme.logo_icon,
        "is_default": False,
        "is_active": True,
    }


class ThemeStore:
    """Active theme with a TTL cache; call invalidate() after out-of-band edits."""

    def __init__(self, gateway: DataGateway, ttl: float = SETTINGS_CACHE_TTL, clock: Callable[[], float] = time.time):
        self.gateway = gateway
        self.ttl = ttl
        self._clock = clock
        self._theme: Optional[ThemeConfig] = None
        self._loaded_at = 0.0

    def invalidate(self) -> None:
        self._theme = None
        self._loaded_at = 0.0

    async def get_theme(self) -> ThemeConfig:
        if self._theme is not None and self._clock() - self._loaded_at <= self.ttl:
            return self._theme

        try:
            row = await self.gateway.get_one(THEMES, {"is_active": True})
        except DataAccessError as e:
            logger.error(f"Failed to load theme: {e}")
            return DEFAULT_THEME

        if not row:
            logger.info("No active theme found, using default")
            theme = DEFAULT_THEME
        else:
            theme = theme_from_row(row)

        self._theme = theme
        self._loaded_at = self._clock()
        return theme

    async def save_theme(self, theme: ThemeConfig) -> bool:
        """Update the active theme row, or insert one if none exists."""
        for field in ("primary_color", "secondary_color", "accent_color", "text_color", "background_color"):
            value = getattr(theme, field)
            if value and not is_valid_hex_color(value):
                raise ValueError(f"{field} is not a valid hex color: {value}")

        data = theme_to_row(theme)
        try:
            existing = await self.gateway.get_one(THEMES, {"is_active": True}, columns="id")
            if existing:
                await self.gateway.update(THEMES, {"id": existing["id"]}, data)
            else:
                await self.gateway.insert(THEMES, data)
        except DataAccessError as e:
            logger.error(f"Failed to save theme: {e}")
            return False

        self.invalidate()
        return True
