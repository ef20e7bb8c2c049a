"""
Liveview Streaming

Binary liveview packet decoding and the streaming session.
"""

from .packet import (LiveviewDecoder, LiveviewFrame, LiveviewFrameInfo, LiveviewImage,
                     Packet, PayloadType, NEED_MORE_DATA, RESYNC)
from .session import LiveviewSession

__all__ = [
    'LiveviewDecoder', 'LiveviewFrame', 'LiveviewFrameInfo', 'LiveviewImage',
    'Packet', 'PayloadType', 'NEED_MORE_DATA', 'RESYNC', 'LiveviewSession',
]
