"""Timing configuration for the render-and-input loop."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping

ENV_PREFIX = "PI_TERMLOOP_"


@dataclass
class LoopConfig:
    """Timing knobs, all in seconds.

    ``None`` disables the corresponding behavior (no throttle, no periodic
    refresh, wait forever for the rest of a key sequence).
    """

    # Wait for the rest of an ambiguous key binding.
    timeout_len: float | None = 1.0
    # Wait for the rest of a terminal escape sequence (lone ESC).
    ttimeout_len: float | None = 0.5
    # Minimum time between two redraws.
    min_redraw_interval: float | None = None
    # Longest a redraw may be postponed while input is pending.
    max_render_postpone_time: float | None = 0.01
    # Redraw periodically even without invalidation.
    refresh_interval: float | None = None
    # Poll the terminal size when no resize signal is available.
    terminal_size_polling_interval: float | None = 0.5
    # Give up on cursor position reports after the first unanswered request.
    cpr_timeout: float = 2.0
    # Wait for pending cursor position reports before leaving or suspending.
    cpr_wait_timeout: float = 1.0
    # Wait for cancelled background tasks on shutdown.
    background_task_shutdown_timeout: float = 2.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LoopConfig:
        """Build a config with ``PI_TERMLOOP_<FIELD>`` overrides applied.

        ``none`` (or an empty value) disables an optional knob.  Raises
        ``ValueError`` naming the variable when a value does not parse.
        """
        env = os.environ if environ is None else environ
        config = cls()
        for f in fields(cls):
            name = ENV_PREFIX + f.name.upper()
            raw = env.get(name)
            if raw is None:
                continue
            optional = "None" in str(f.type)
            setattr(config, f.name, _parse_seconds(name, raw, optional))
        return config

    def replace(self, **overrides: float | None) -> LoopConfig:
        """Copy with the given fields replaced; unknown names raise ``TypeError``."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for key, value in overrides.items():
            if key not in values:
                raise TypeError(f"Unknown loop setting: {key}")
            values[key] = value
        return LoopConfig(**values)


def _parse_seconds(name: str, raw: str, optional: bool) -> float | None:
    value = raw.strip()
    if value.lower() in ("", "none"):
        if not optional:
            raise ValueError(f"{name} cannot be disabled")
        return None
    try:
        seconds = float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None
    if seconds < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return seconds
