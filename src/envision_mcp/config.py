"""Link settings.

Defaults match the device firmware; any field can be overridden through
the environment::

    ENVISION_MTU              -> mtu
    ENVISION_WRITE_TIMEOUT    -> write_timeout (seconds)
    ENVISION_RESPONSE_TIMEOUT -> response_timeout (seconds)
    ENVISION_CONNECT_TIMEOUT  -> connect_timeout (seconds)
    ENVISION_BUFFER_LIMIT     -> buffer_limit (bytes)
    ENVISION_LOG_LEVEL        -> log_level
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping

from .protocol.framing import MAX_FRAME_SIZE

DEFAULT_MTU = 512
WRITE_TIMEOUT = 3.0
RESPONSE_TIMEOUT = 5.0
CONNECT_TIMEOUT = 10.0
BUFFER_LIMIT = 4 * MAX_FRAME_SIZE

ENV_PREFIX = "ENVISION_"


@dataclass(frozen=True)
class LinkSettings:
    """Timeouts and sizes used by a :class:`TransportSession`."""

    mtu: int = DEFAULT_MTU
    write_timeout: float = WRITE_TIMEOUT
    response_timeout: float = RESPONSE_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT
    buffer_limit: int = BUFFER_LIMIT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.buffer_limit < MAX_FRAME_SIZE:
            raise ValueError(
                f"buffer_limit must hold one full frame ({MAX_FRAME_SIZE} bytes), "
                f"got {self.buffer_limit}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LinkSettings:
        """Build settings from ``ENVISION_*`` variables, falling back to defaults."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            name = ENV_PREFIX + f.name.upper()
            if name not in environ:
                continue
            raw = environ[name]
            try:
                overrides[f.name] = type(f.default)(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {name}: {raw!r}") from e
        return cls(**overrides)
