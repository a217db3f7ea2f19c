"""Protocol layer: TLV framing, message IDs, payload builders, and response parsing."""

from .framing import Frame, ParseResult, ParseStatus, build_frame, compute_checksum, parse_frame
from .commands import Command, Stage, build_command
