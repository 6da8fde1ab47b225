"""
Cumulative offset tables mapping homopolymer-compressed positions to decompressed positions.

For a sequence ``AAACGG`` the compressed sequence is ``ACG`` and the table is ``[0, 3, 4, 6]``: compressed position
``i`` starts at decompressed position ``table[i]`` and the last entry is the decompressed length.
"""
from collections.abc import Mapping
from typing import Iterable, Iterator, Union, Literal, Any
import logging

import numpy as np

from hodeco import OffsetMapError, MissingOffsetTableError, OffsetIndexError


log = logging.getLogger(__name__)


# Classes --------------------------------------------------------------------------------------------------------------
class OffsetTable:
    """
    Read-only cumulative decompressed-length array of one sequence.

    The table has ``compressed_length + 1`` entries, starts at 0 and never decreases.

    Examples:
        >>> table = OffsetTable([0, 1, 3, 4])
        >>> table.compressed_length, table.decompressed_length
        (3, 4)
        >>> table.span(0, 3)
        4
    """
    __slots__ = ('_data',)
    DTYPE = np.int64

    def __init__(self, offsets: Union[np.ndarray, Iterable[int]]):
        """
        Validates and freezes an offset array.

        Args:
            offsets: The cumulative offsets, one more than the compressed length.

        Raises:
            OffsetMapError: If the offsets are not a non-decreasing integer sequence starting at 0.
        """
        try: data = np.array(offsets if isinstance(offsets, np.ndarray) else list(offsets))
        except (TypeError, ValueError, OverflowError) as e: raise OffsetMapError(f'Invalid offset table: {e}') from e
        if data.ndim != 1 or len(data) == 0: raise OffsetMapError('Offset table must be a non-empty 1D sequence')
        if data.dtype.kind not in 'iu': raise OffsetMapError(f'Offset table must contain integers, got {data.dtype}')
        if data[0] != 0: raise OffsetMapError(f'Offset table must start at 0, got {data[0]}')
        if len(data) > 1 and np.any(data[1:] < data[:-1]):
            raise OffsetMapError(f'Offset table must be non-decreasing (first drop at index '
                                 f'{int(np.flatnonzero(data[1:] < data[:-1])[0]) + 1})')
        if data.dtype.kind == 'u' and data[-1] > np.iinfo(self.DTYPE).max:
            raise OffsetMapError('Offset table values overflow 64-bit integers')
        self._data = data.astype(self.DTYPE, copy=True)
        self._data.flags.writeable = False

    @classmethod
    def identity(cls, length: int) -> 'OffsetTable':
        """Returns the table of a sequence without homopolymers (``table[i] == i``)."""
        return cls(np.arange(length + 1, dtype=cls.DTYPE))

    @classmethod
    def from_sequence(cls, seq: bytes) -> 'OffsetTable':
        """
        Builds the table implied by homopolymer-compressing a sequence.

        Examples:
            >>> OffsetTable.from_sequence(b'AAACGG').array.tolist()
            [0, 3, 4, 6]
        """
        return homopolymer_compress(seq)[1]

    @property
    def array(self) -> np.ndarray: return self._data
    @property
    def compressed_length(self) -> int: return len(self._data) - 1
    @property
    def decompressed_length(self) -> int: return int(self._data[-1])
    def __len__(self): return len(self._data)
    def __iter__(self): return iter(self._data.tolist())
    def __repr__(self): return f"OffsetTable({self.compressed_length}->{self.decompressed_length})"
    def __array__(self, dtype=None, copy=None): return self._data if dtype is None else self._data.astype(dtype)

    def __eq__(self, other):
        if isinstance(other, OffsetTable): return np.array_equal(self._data, other._data)
        return NotImplemented

    def __getitem__(self, item: int) -> int:
        """Returns the decompressed position of a compressed position, rejecting out-of-range positions."""
        self.check_range(item)
        return int(self._data[item])

    def check_range(self, position: int, n: int = 0):
        """Raises :class:`OffsetIndexError` unless compressed positions ``position..position + n`` are in the table."""
        if position < 0 or n < 0 or position + n > len(self._data) - 1:
            raise OffsetIndexError(
                f'Compressed range {position}..{position + n} outside offset table of length {len(self._data)}'
            )

    def span(self, start: int, n: int) -> int:
        """Returns the decompressed length of ``n`` compressed positions starting at ``start``."""
        self.check_range(start, n)
        return int(self._data[start + n] - self._data[start])

    def run_lengths(self, start: int, n: int) -> np.ndarray:
        """Returns the homopolymer run length of each of ``n`` compressed positions starting at ``start``."""
        self.check_range(start, n)
        return np.diff(self._data[start:start + n + 1])

    def decompress(self, bases: bytes, start: int) -> bytes:
        """
        Expands compressed bases by repeating each one by the run length of its position.

        Args:
            bases: Compressed bases, one per position from ``start``.
            start: Compressed position of the first base.

        Returns:
            The decompressed bases.
        """
        runs = self.run_lengths(start, len(bases))
        return np.repeat(np.frombuffer(bases, dtype=np.uint8), runs).tobytes()


class OffsetTableStore(Mapping):
    """
    Read-only mapping from sequence name to :class:`OffsetTable`.

    Names may be given as ``str`` or UTF-8 ``bytes``; both resolve to the same table.

    Examples:
        >>> store = OffsetTableStore.build([('ctg1', [0, 1, 3, 4])])
        >>> store[b'ctg1'].decompressed_length
        4
    """
    __slots__ = ('_tables',)

    def __init__(self, tables: Mapping[str, OffsetTable] = None):
        self._tables: dict[str, OffsetTable] = dict(tables) if tables else {}

    @classmethod
    def build(cls, pairs: Iterable[tuple[Any, Any]],
              duplicates: Literal['last', 'error'] = 'last') -> 'OffsetTableStore':
        """
        Builds a store from ``(name, offsets)`` pairs.

        Args:
            pairs: Iterable of sequence names and their cumulative offsets.
            duplicates: ``'last'`` keeps the last table of a repeated name, ``'error'`` rejects repeated names.

        Returns:
            The populated store.

        Raises:
            OffsetMapError: If a pair is malformed, a table is invalid, or a name repeats with ``duplicates='error'``.
        """
        if duplicates not in ('last', 'error'): raise ValueError(f'Unknown duplicate policy: {duplicates}')
        tables = {}
        for n, pair in enumerate(pairs):
            try: name, offsets = pair
            except (TypeError, ValueError) as e:
                raise OffsetMapError(f'Offset map entry {n} is not a (name, offsets) pair') from e
            name = cls._key(name)
            if name in tables:
                if duplicates == 'error': raise OffsetMapError(f'Duplicate offset table for sequence `{name}`')
                log.warning('Duplicate offset table for sequence `%s`, keeping the last one', name)
            try: tables[name] = offsets if isinstance(offsets, OffsetTable) else OffsetTable(offsets)
            except OffsetMapError as e: raise OffsetMapError(f'Sequence `{name}`: {e}') from e
        return cls(tables)

    @staticmethod
    def _key(name: Union[str, bytes]) -> str:
        if isinstance(name, bytes):
            try: return name.decode('utf-8')
            except UnicodeDecodeError as e: raise OffsetMapError(f'Sequence name {name[:50]!r} is not valid UTF-8') from e
        if isinstance(name, str): return name
        raise OffsetMapError(f'Sequence names must be text, got {type(name).__name__}')

    def __getitem__(self, name: Union[str, bytes]) -> OffsetTable:
        key = name.decode('utf-8', 'replace') if isinstance(name, bytes) else name
        if (table := self._tables.get(key)) is None:
            raise MissingOffsetTableError(f'missing offset table for sequence `{key}`')
        return table

    def __contains__(self, name) -> bool:
        if isinstance(name, bytes): name = name.decode('utf-8', 'replace')
        return name in self._tables

    def get(self, name, default=None):
        return self[name] if name in self else default

    def __len__(self): return len(self._tables)
    def __iter__(self) -> Iterator[str]: return iter(self._tables)
    def __repr__(self): return f"<OffsetTableStore: {len(self)} tables>"


# Functions ------------------------------------------------------------------------------------------------------------
def homopolymer_compress(seq: bytes) -> tuple[bytes, OffsetTable]:
    """
    Collapses every homopolymer run of a sequence to a single base.

    Args:
        seq: The sequence to compress.

    Returns:
        The compressed sequence and its offset table.

    Examples:
        >>> homopolymer_compress(b'AAACGG')[0]
        b'ACG'
    """
    arr = np.frombuffer(seq, dtype=np.uint8)
    if len(arr) == 0: return b'', OffsetTable([0])
    run_starts = np.concatenate(([0], np.flatnonzero(arr[1:] != arr[:-1]) + 1))
    return arr[run_starts].tobytes(), OffsetTable(np.append(run_starts, len(arr)))
