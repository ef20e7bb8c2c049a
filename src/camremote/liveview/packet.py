"""
Liveview Packet Decoder

Parses the binary liveview stream into packets. Each record is a common
header, a payload header, the payload and padding:

    common header (8 bytes):   start byte 0xFF, payload type, sequence number (2),
                               timestamp (4)
    payload header (128 bytes): start code 24 35 68 79, payload data size (3),
                               padding size (1), type-specific fields
    payload + padding

All multi-byte fields are big-endian.
"""

import enum
import logging
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from ..protocols.errors import DecodeResync

logger = logging.getLogger(__name__)

START_BYTE = 0xFF
START_CODE = b"\x24\x35\x68\x79"
COMMON_HEADER_SIZE = 8
PAYLOAD_HEADER_SIZE = 128
HEADER_SIZE = COMMON_HEADER_SIZE + PAYLOAD_HEADER_SIZE
FRAME_DATA_MIN_SIZE = 16

_COMMON_HEADER = struct.Struct(">BBHI")
_FRAME_INFO_HEADER = struct.Struct(">BBHH")   # version major, minor, frame count, frame data size
_FRAME_DATA = struct.Struct(">HHHHBBB")


class PayloadType(enum.IntEnum):
    IMAGE = 0x01
    FRAME_INFO = 0x02


class FeedStatus(enum.Enum):
    NEED_MORE_DATA = "need_more_data"
    RESYNC = "resync"


NEED_MORE_DATA = FeedStatus.NEED_MORE_DATA
RESYNC = FeedStatus.RESYNC


@dataclass(frozen=True)
class Packet:
    payload_type: PayloadType
    sequence_number: int
    timestamp: int
    payload_size: int
    padding_size: int
    payload: bytes
    num_bytes: int
    frame_info_version: Optional[Tuple[int, int]] = None
    frame_count: int = 0
    frame_data_size: int = 0


@dataclass(frozen=True)
class LiveviewFrame:
    """One region of interest. Coordinates are percentages of the image size."""
    category: int
    status: int
    additional_status: int
    top_left: Tuple[float, float]
    bottom_right: Tuple[float, float]


@dataclass(frozen=True)
class LiveviewFrameInfo:
    sequence_number: int
    version: Tuple[int, int]
    frames: Tuple[LiveviewFrame, ...] = ()

    def to_dict(self):
        return {
            'sequence_number': self.sequence_number,
            'version': '%d.%d' % self.version,
            'frames': [
                {
                    'category': f.category,
                    'status': f.status,
                    'additional_status': f.additional_status,
                    'top_left': list(f.top_left),
                    'bottom_right': list(f.bottom_right),
                }
                for f in self.frames
            ],
        }


@dataclass(frozen=True)
class LiveviewImage:
    sequence_number: int
    timestamp: int
    jpeg_data: bytes = field(repr=False)


FeedResult = Tuple[Union[Packet, FeedStatus], int]


class LiveviewDecoder:
    """
    Incremental liveview decoder.

    ``feed`` is the stateless step over a buffer. ``push`` owns a growing
    buffer, drains every complete packet, and pairs each image with the most
    recent frame information (frame info describes the images that follow
    it, never the packet that carried it).

    Args:
        require_frame_info: Drop images until the first frame info arrives
    """

    def __init__(self, require_frame_info: bool = False):
        self.require_frame_info = require_frame_info
        self.buffer = bytearray()
        self.frame_info: Optional[LiveviewFrameInfo] = None
        self.resync_count = 0
        self.packet_count = 0

    @staticmethod
    def feed(buffer: Union[bytes, bytearray]) -> FeedResult:
        """
        Try to decode one packet from the start of ``buffer``.

        Returns:
            (Packet, bytes consumed), (NEED_MORE_DATA, 0) when the buffer is
            too short, or (RESYNC, len(buffer)) when the framing is invalid
            and the whole buffer must be discarded
        """
        size = len(buffer)
        if size == 0:
            return NEED_MORE_DATA, 0
        if buffer[0] != START_BYTE:
            return RESYNC, size
        if size >= 2 and buffer[1] not in (PayloadType.IMAGE, PayloadType.FRAME_INFO):
            return RESYNC, size
        if size < HEADER_SIZE:
            return NEED_MORE_DATA, 0

        head = bytes(buffer[:HEADER_SIZE])
        _, payload_type, sequence_number, timestamp = _COMMON_HEADER.unpack_from(head, 0)
        header = head[COMMON_HEADER_SIZE:]
        if header[0:4] != START_CODE:
            return RESYNC, size
        payload_size = int.from_bytes(header[4:7], 'big')
        padding_size = header[7]

        version = None
        frame_count = frame_data_size = 0
        if payload_type == PayloadType.FRAME_INFO:
            major, minor, frame_count, frame_data_size = _FRAME_INFO_HEADER.unpack_from(header, 8)
            version = (major, minor)
            if frame_count and frame_data_size < FRAME_DATA_MIN_SIZE:
                return RESYNC, size
            if frame_count * frame_data_size > payload_size:
                return RESYNC, size

        total = HEADER_SIZE + payload_size + padding_size
        if size < total:
            return NEED_MORE_DATA, 0

        packet = Packet(
            payload_type=PayloadType(payload_type),
            sequence_number=sequence_number,
            timestamp=timestamp,
            payload_size=payload_size,
            padding_size=padding_size,
            payload=bytes(buffer[HEADER_SIZE:HEADER_SIZE + payload_size]),
            num_bytes=total,
            frame_info_version=version,
            frame_count=frame_count,
            frame_data_size=frame_data_size,
        )
        return packet, total

    @staticmethod
    def decode_frame_info(packet: Packet) -> LiveviewFrameInfo:
        """Interpret a FRAME_INFO payload."""
        frames = []
        for i in range(packet.frame_count):
            offset = i * packet.frame_data_size
            tl_x, tl_y, br_x, br_y, category, status, additional = _FRAME_DATA.unpack_from(packet.payload, offset)
            frames.append(LiveviewFrame(
                category=category,
                status=status,
                additional_status=additional,
                top_left=(tl_x / 100.0, tl_y / 100.0),
                bottom_right=(br_x / 100.0, br_y / 100.0),
            ))
        return LiveviewFrameInfo(packet.sequence_number, packet.frame_info_version or (0, 0), tuple(frames))

    @staticmethod
    def decode_image(packet: Packet) -> LiveviewImage:
        """Interpret an IMAGE payload."""
        return LiveviewImage(packet.sequence_number, packet.timestamp, packet.payload)

    def push(self, chunk: bytes) -> List[Tuple[LiveviewImage, Optional[LiveviewFrameInfo]]]:
        """
        Append ``chunk`` and return every image completed by it, in order.

        Returns:
            List of (image, frame info or None) pairs
        """
        self.buffer += chunk
        images = []
        while True:
            result, consumed = self.feed(self.buffer)
            if result is NEED_MORE_DATA:
                break
            if result is RESYNC:
                self.resync_count += 1
                logger.warning("Liveview framing lost; discarding %d buffered bytes (resync #%d)",
                               consumed, self.resync_count)
                self.buffer.clear()
                break

            del self.buffer[:consumed]
            self.packet_count += 1
            if result.payload_type is PayloadType.FRAME_INFO:
                self.frame_info = self.decode_frame_info(result)
                logger.debug("frame info #%d: %d frames", result.sequence_number, result.frame_count)
                continue

            logger.debug("image #%d: %d bytes (+%d padding)", result.sequence_number,
                         result.payload_size, result.padding_size)
            if self.require_frame_info and self.frame_info is None:
                logger.debug("frame info is not present yet; skipping image")
                continue
            images.append((self.decode_image(result), self.frame_info))
        return images

    def reset(self):
        """Drop buffered bytes and the current frame info (new stream)."""
        self.buffer.clear()
        self.frame_info = None


def decode_packet(buffer: bytes) -> Packet:
    """
    Decode exactly one complete packet.

    Raises:
        DecodeResync: The framing is invalid
        ValueError: The buffer does not hold a complete packet
    """
    result, _ = LiveviewDecoder.feed(buffer)
    if result is RESYNC:
        raise DecodeResync("Invalid liveview packet framing")
    if result is NEED_MORE_DATA:
        raise ValueError("Incomplete liveview packet")
    return result


def encode_packet(payload_type: int, sequence_number: int, timestamp: int, payload: bytes,
                  padding_size: int = 0, frame_info_version: Tuple[int, int] = (1, 0),
                  frame_count: int = 0, frame_data_size: int = 0) -> bytes:
    """Build one wire record, e.g. for replaying recorded streams."""
    common = _COMMON_HEADER.pack(START_BYTE, payload_type, sequence_number & 0xFFFF, timestamp & 0xFFFFFFFF)
    header = bytearray(PAYLOAD_HEADER_SIZE)
    header[0:4] = START_CODE
    header[4:7] = len(payload).to_bytes(3, 'big')
    header[7] = padding_size
    if payload_type == PayloadType.FRAME_INFO:
        _FRAME_INFO_HEADER.pack_into(header, 8, frame_info_version[0], frame_info_version[1],
                                     frame_count, frame_data_size)
    return common + bytes(header) + payload + bytes(padding_size)


def encode_frame_info(frames: List[LiveviewFrame], sequence_number: int = 0, timestamp: int = 0,
                      frame_data_size: int = FRAME_DATA_MIN_SIZE) -> bytes:
    """Build a FRAME_INFO record from frames with percentage coordinates."""
    payload = bytearray()
    for f in frames:
        record = bytearray(frame_data_size)
        _FRAME_DATA.pack_into(record, 0,
                              int(round(f.top_left[0] * 100)), int(round(f.top_left[1] * 100)),
                              int(round(f.bottom_right[0] * 100)), int(round(f.bottom_right[1] * 100)),
                              f.category, f.status, f.additional_status)
        payload += record
    return encode_packet(PayloadType.FRAME_INFO, sequence_number, timestamp, bytes(payload),
                         frame_count=len(frames), frame_data_size=frame_data_size)
