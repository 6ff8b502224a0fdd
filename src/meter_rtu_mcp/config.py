"""Timing and discovery settings for the device client.

Defaults match the meter's observed turnaround. Each field can be
overridden with a ``METER_RTU_<FIELD>`` environment variable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

ENV_PREFIX = "METER_RTU_"

DEFAULT_PORT = 1001
LOG_LEVEL = os.getenv("METER_RTU_LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class ClientConfig:
    """Timeouts and delays, all in seconds."""

    connect_timeout: float = 10.0
    exchange_timeout: float = 3.0
    poll_interval: float = 0.01  # wait per receive poll
    flush_delay: float = 0.01  # pause between stale-input drains
    inter_read_delay: float = 0.03
    post_connect_delay: float = 0.1
    polling_period: float = 1.0
    unit_ids: tuple[int, ...] = (1, 2, 3)
    default_port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ClientConfig:
        """Build a config, applying ``METER_RTU_*`` overrides.

        ``METER_RTU_UNIT_IDS`` is a comma-separated list, e.g. ``"1,2,3"``.
        Malformed values are logged and ignored.
        """
        env = os.environ if environ is None else environ
        overrides: dict = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                if f.name == "unit_ids":
                    overrides[f.name] = tuple(int(u) for u in raw.split(",") if u.strip())
                elif f.name == "default_port":
                    overrides[f.name] = int(raw)
                else:
                    overrides[f.name] = float(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, f.name.upper(), raw)
        return cls(**overrides)
