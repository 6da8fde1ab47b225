"""
Offset map files: a CBOR sequence of ``[name, [offset, ...]]`` items, one per sequence.
"""
from io import BytesIO
from pathlib import Path
from typing import Union, BinaryIO, Generator, Iterable, Literal
import logging

import cbor2
import numpy as np

from hodeco import OffsetMapError
from hodeco.core.offsets import OffsetTable, OffsetTableStore
from hodeco.io import BaseReader, BaseWriter
from hodeco.lib.io import Xopen


log = logging.getLogger(__name__)


# Classes --------------------------------------------------------------------------------------------------------------
class OffsetMapReader(BaseReader):
    """
    Reader for offset map streams.

    The whole stream is read into memory before decoding, so a truncated final item is reported as an error
    rather than taken for the end of the stream.

    Examples:
        >>> with open("reference.hodeco.cbor", "rb") as f:
        ...     store = OffsetTableStore.build(OffsetMapReader(f))
    """
    __slots__ = ()

    def __iter__(self) -> Generator[tuple[str, list[int]], None, None]:
        """
        Yields:
            ``(name, offsets)`` pairs in stream order.

        Raises:
            OffsetMapError: If the stream is not a sequence of ``[text, [uint, ...]]`` items.
        """
        data = b"".join(self.read_chunks())
        stream = BytesIO(data)
        decoder = cbor2.CBORDecoder(stream)
        n = 0
        while stream.tell() < len(data):
            try: item = decoder.decode()
            except (cbor2.CBORDecodeError, EOFError) as e:
                raise OffsetMapError(f'Cannot decode offset map item {n} at byte {stream.tell()}: {e}') from e
            if not isinstance(item, (list, tuple)) or len(item) != 2 or not isinstance(item[0], str) or \
                    not isinstance(item[1], (list, tuple)):
                raise OffsetMapError(f'Offset map item {n} is not a [name, offsets] pair')
            n += 1
            yield item[0], item[1]


class OffsetMapWriter(BaseWriter):
    """
    Writer for offset map streams.

    Examples:
        >>> with OffsetMapWriter("reference.hodeco.cbor") as w:
        ...     w.write(('ctg1', OffsetTable.from_sequence(b'AAACGG')))
    """
    __slots__ = ()

    def write_one(self, item: tuple[str, Union[OffsetTable, np.ndarray, Iterable[int]]]):
        name, offsets = item
        offsets = offsets.array.tolist() if isinstance(offsets, OffsetTable) else np.asarray(offsets).tolist()
        self._handle.write(cbor2.dumps([name, offsets]))


# Functions ------------------------------------------------------------------------------------------------------------
def load_offset_store(file: Union[str, Path, BinaryIO], duplicates: Literal['last', 'error'] = 'last',
                      buffer_size: int = -1) -> OffsetTableStore:
    """
    Loads a whole offset map file into a store.

    Args:
        file: Path, '-' or binary handle of the map; gzip/bz2/xz compression is detected.
        duplicates: Policy for sequence names that occur more than once (see :meth:`OffsetTableStore.build`).
        buffer_size: Read buffer size in bytes.

    Returns:
        The store of every table in the file.
    """
    opener = Xopen(file, mode='rb', buffer_size=buffer_size)
    with opener as handle: store = OffsetTableStore.build(OffsetMapReader(handle), duplicates=duplicates)
    log.info('Loaded %d offset tables from %s', len(store), opener.name)
    return store


def write_offset_store(file: Union[str, Path, BinaryIO], tables: Union[OffsetTableStore, Iterable[tuple]]):
    """Writes ``(name, table)`` pairs, or every table of a store, to an offset map file."""
    items = tables.items() if isinstance(tables, OffsetTableStore) else tables
    with OffsetMapWriter(file) as writer:
        for item in items: writer.write_one(item)
