"""Runtime settings injected into the tournament services."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from bracketeer.core.constants import (
    DEFAULT_MAP_POOL,
    PLAYOFF_QUALIFIERS_PER_GROUP,
    READY_CONFIRM_WINDOW_MS,
    VETO_READY_DELAY_MS,
    VETO_TURN_MS,
)
from bracketeer.utils import normalize_map_pool, to_int

if TYPE_CHECKING:
    from flask import Flask

EXTENSION_KEY = "bracketeer"


@dataclass(frozen=True)
class EngineSettings:
    """Timing windows and map pool used by the ready-check and veto engines."""

    ready_window_ms: int = READY_CONFIRM_WINDOW_MS
    veto_ready_delay_ms: int = VETO_READY_DELAY_MS
    veto_turn_ms: int = VETO_TURN_MS
    default_map_pool: tuple[str, ...] = DEFAULT_MAP_POOL
    playoff_qualifiers_per_group: int = PLAYOFF_QUALIFIERS_PER_GROUP

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> EngineSettings:
        """Build settings from a Flask config mapping."""
        pool = config.get("DEFAULT_MAP_POOL") or DEFAULT_MAP_POOL
        if isinstance(pool, str):
            pool = pool.split(",")
        return cls(
            ready_window_ms=to_int(
                config.get("READY_CONFIRM_WINDOW_MS"), READY_CONFIRM_WINDOW_MS
            ),
            veto_ready_delay_ms=to_int(
                config.get("VETO_READY_DELAY_MS"), VETO_READY_DELAY_MS
            ),
            veto_turn_ms=to_int(config.get("VETO_TURN_MS"), VETO_TURN_MS),
            default_map_pool=tuple(normalize_map_pool(pool, DEFAULT_MAP_POOL)),
            playoff_qualifiers_per_group=to_int(
                config.get("PLAYOFF_QUALIFIERS_PER_GROUP"),
                PLAYOFF_QUALIFIERS_PER_GROUP,
            ),
        )

    @classmethod
    def from_app(cls, app: Flask) -> EngineSettings:
        """Return the settings registered on the app, building them if needed."""
        settings = app.extensions.get(EXTENSION_KEY)
        if settings is None:
            settings = cls.from_config(app.config)
            app.extensions[EXTENSION_KEY] = settings
        return settings

    def map_pool_for(self, tournament: Mapping[str, Any] | None) -> list[str]:
        """Return the tournament's own map pool, or the default one."""
        custom = (tournament or {}).get("mapPool")
        return normalize_map_pool(custom, self.default_map_pool)
