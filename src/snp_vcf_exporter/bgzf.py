"""BGZF (blocked gzip) compression for VCF output.

A BGZF file is a series of gzip members, each holding at most 64 KiB of
compressed data and carrying its own total size in a 'BC' extra subfield,
followed by an empty end-of-file member. Any gzip reader can decompress it;
htslib-based tools can additionally seek by block.

Block layout (little-endian):
    1f 8b 08 04 | MTIME u32 | XFL u8 | OS u8 | XLEN u16 = 6
    'B' 'C' | SLEN u16 = 2 | BSIZE u16 (total block size - 1)
    raw DEFLATE data | CRC32 u32 | ISIZE u32
"""

import logging
import struct
import zlib
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_BLOCK_SIZE = 65536
BLOCK_DATA_SIZE = 65280
DEFAULT_LEVEL = 6

_HEADER = struct.Struct("<BBBBIBBHBBHH")
_GZIP_FIXED = struct.Struct("<BBBBIBBH")
_TRAILER = struct.Struct("<II")
_SUBFIELD = struct.Struct("<BBH")

EOF_BLOCK = bytes.fromhex("1f8b08040000000000ff0600424302001b0003000000000000000000")


class BgzfError(ValueError):
    """Raised when data is not valid BGZF."""

    pass


def _deflate(data: bytes, level: int) -> bytes:
    compressor = zlib.compressobj(level, zlib.DEFLATED, -15)
    return compressor.compress(data) + compressor.flush()


def compress_block(data: bytes, level: int = DEFAULT_LEVEL) -> bytes:
    """Wrap up to BLOCK_DATA_SIZE bytes in a single BGZF block."""
    if len(data) > BLOCK_DATA_SIZE:
        raise ValueError(f"Block payload of {len(data)} bytes exceeds {BLOCK_DATA_SIZE}")

    cdata = _deflate(data, level)
    if len(cdata) + _HEADER.size + _TRAILER.size > MAX_BLOCK_SIZE:
        # Incompressible input; stored deflate blocks always fit.
        cdata = _deflate(data, 0)

    block_size = _HEADER.size + len(cdata) + _TRAILER.size
    header = _HEADER.pack(31, 139, 8, 4, 0, 0, 255, 6, 66, 67, 2, block_size - 1)
    trailer = _TRAILER.pack(zlib.crc32(data) & 0xFFFFFFFF, len(data))
    return header + cdata + trailer


def compress_bgzf(data: bytes, level: int = DEFAULT_LEVEL) -> bytes:
    """Compress bytes into BGZF, terminated by the standard EOF block."""
    blocks = [
        compress_block(data[start : start + BLOCK_DATA_SIZE], level)
        for start in range(0, len(data), BLOCK_DATA_SIZE)
    ]
    blocks.append(EOF_BLOCK)
    return b"".join(blocks)


def _block_size_at(data: bytes, offset: int) -> tuple[int, int]:
    """Return (total block size, header length) for the block at offset."""
    try:
        id1, id2, cm, flg, _mtime, _xfl, _os, xlen = _GZIP_FIXED.unpack_from(data, offset)
    except struct.error as e:
        raise BgzfError(f"Truncated block header at offset {offset}") from e

    if (id1, id2) != (31, 139) or cm != 8:
        raise BgzfError(f"Not a gzip member at offset {offset}")
    if not flg & 4:
        raise BgzfError(f"Block at offset {offset} has no extra field")

    extra_start = offset + _GZIP_FIXED.size
    extra_end = extra_start + xlen
    if extra_end > len(data):
        raise BgzfError(f"Truncated extra field at offset {offset}")

    pos = extra_start
    while pos + _SUBFIELD.size <= extra_end:
        si1, si2, slen = _SUBFIELD.unpack_from(data, pos)
        pos += _SUBFIELD.size
        if (si1, si2) == (66, 67) and slen == 2:
            (bsize,) = struct.unpack_from("<H", data, pos)
            return bsize + 1, extra_end - offset
        pos += slen

    raise BgzfError(f"Block at offset {offset} has no BC subfield")


def iter_blocks(data: bytes) -> Iterator[tuple[int, int]]:
    """Yield (offset, size) for each BGZF block."""
    offset = 0
    while offset < len(data):
        size, _ = _block_size_at(data, offset)
        if offset + size > len(data):
            raise BgzfError(f"Block at offset {offset} runs past end of data")
        yield offset, size
        offset += size


def decompress_bgzf(data: bytes) -> bytes:
    """Decompress BGZF data, validating every block's size, CRC32 and ISIZE.

    Raises:
        BgzfError: On any malformed block.
    """
    chunks = []
    last_size = 0
    for offset, size in iter_blocks(data):
        _, header_length = _block_size_at(data, offset)
        cdata = data[offset + header_length : offset + size - _TRAILER.size]
        crc, isize = _TRAILER.unpack_from(data, offset + size - _TRAILER.size)

        try:
            payload = zlib.decompress(cdata, -15)
        except zlib.error as e:
            raise BgzfError(f"Corrupt deflate data in block at offset {offset}: {e}") from e

        if len(payload) != isize:
            raise BgzfError(f"ISIZE mismatch in block at offset {offset}")
        if zlib.crc32(payload) & 0xFFFFFFFF != crc:
            raise BgzfError(f"CRC32 mismatch in block at offset {offset}")

        chunks.append(payload)
        last_size = isize

    if not chunks or last_size != 0:
        logger.warning("BGZF data has no end-of-file marker block")

    return b"".join(chunks)


def write_bgzf(path: Path | str, content: str | bytes, level: int = DEFAULT_LEVEL) -> Path:
    """Write text or bytes to path as BGZF."""
    path = Path(path)
    if isinstance(content, str):
        content = content.encode("utf-8")
    path.write_bytes(compress_bgzf(content, level))
    return path
