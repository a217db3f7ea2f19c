"""Transport layer: link contract, reassembly, session and the BLE adapter."""

from .base import Transport
from .reassembly import ReassemblyBuffer
from .session import SessionState, TransportSession
