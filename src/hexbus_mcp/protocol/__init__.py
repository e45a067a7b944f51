"""Protocol layer: hexbus tags, command encoding, token lexing, and the engine."""

from .commands import Tag
from .framing import Token, TokenLexer, encode_address, encode_read, encode_write
from .engine import ProtocolEngine
