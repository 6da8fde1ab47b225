"""
Containers for PAF alignment records and their alignment operations (CIGAR runs and ``cs`` difference strings).
"""
from typing import Iterable, Iterator, Union, Optional
from enum import IntEnum
import re

import numpy as np

from hodeco import PafParseError
from hodeco.lib.resources import jit


# Classes --------------------------------------------------------------------------------------------------------------
class CigarOp(IntEnum):
    M = 0
    I = 1
    D = 2
    N = 3
    S = 4
    H = 5
    P = 6
    EQ = 7
    X = 8
    B = 9


class Cigar:
    """
    Run-length alignment operations, stored as parallel ``ops``/``counts`` arrays.

    Examples:
        >>> cigar = Cigar.parse(b'3M1I2D')
        >>> cigar.query_length, cigar.target_length
        (4, 5)
        >>> bytes(cigar)
        b'3M1I2D'
    """
    __slots__ = ('ops', 'counts')
    _OP_BYTES_LOOKUP = [b'M', b'I', b'D', b'N', b'S', b'H', b'P', b'=', b'X', b'B']

    _BYTE_TO_OP = np.full(256, 255, dtype=np.uint8)
    for op, sym in enumerate(_OP_BYTES_LOOKUP):
        _BYTE_TO_OP[ord(sym)] = op
    del op, sym

    # Consumption logic
    _QUERY_CONSUMERS = np.array([True, True, False, False, True, False, False, True, True, False], dtype=bool)
    _TARGET_CONSUMERS = np.array([True, False, True, True, False, False, False, True, True, False], dtype=bool)

    def __init__(self, ops: Union[np.ndarray, Iterable[int]], counts: Union[np.ndarray, Iterable[int]]):
        self.ops = np.asarray(ops, dtype=np.uint8)
        self.counts = np.asarray(counts, dtype=np.int64)
        if self.ops.shape != self.counts.shape: raise ValueError('CIGAR ops and counts must have the same length')

    @classmethod
    def parse(cls, cigar: bytes) -> 'Cigar':
        """
        Parses a CIGAR string.

        Raises:
            PafParseError: If the string contains an unknown operation, a run without a count or a dangling count.
        """
        ops, counts, error = _parse_cigar_kernel(np.frombuffer(cigar, dtype=np.uint8), cls._BYTE_TO_OP)
        if error >= 0: raise PafParseError(f'Malformed CIGAR at offset {error}: {cigar[:50]!r}')
        return cls(ops, counts)

    @classmethod
    def from_runs(cls, runs: Iterable[tuple[Union[CigarOp, int], int]]) -> 'Cigar':
        """Builds a CIGAR from ``(op, count)`` pairs."""
        runs = list(runs)
        return cls([op for op, _ in runs], [n for _, n in runs])

    @property
    def query_length(self) -> int:
        """Number of query positions consumed."""
        return int(self.counts[self._QUERY_CONSUMERS[self.ops]].sum())

    @property
    def target_length(self) -> int:
        """Number of target positions consumed."""
        return int(self.counts[self._TARGET_CONSUMERS[self.ops]].sum())

    @property
    def length(self) -> int: return int(self.counts.sum())

    def __len__(self): return len(self.ops)
    def __iter__(self) -> Iterator[tuple[CigarOp, int]]:
        for op, n in zip(self.ops.tolist(), self.counts.tolist()): yield CigarOp(op), n
    def __bytes__(self):
        lookup = self._OP_BYTES_LOOKUP
        return b"".join([b"%d" % n + lookup[op] for op, n in zip(self.ops.tolist(), self.counts.tolist())])
    def __repr__(self): return f"Cigar({bytes(self).decode('ascii')})"

    def __eq__(self, other):
        if isinstance(other, Cigar):
            return np.array_equal(self.ops, other.ops) and np.array_equal(self.counts, other.counts)
        return NotImplemented

    def copy(self) -> 'Cigar': return Cigar(self.ops.copy(), self.counts.copy())


class DifferenceOp(IntEnum):
    """Entry kinds of a minimap2 ``cs`` difference string."""
    MATCH = 0  # :n
    IDENTICAL = 1  # =ACGT (long form)
    INSERTION = 2  # +acg
    DELETION = 3  # -acg
    MISMATCH = 4  # *at (reference base, query base)


class Difference:
    """
    Base-level difference string (the ``cs`` tag) as an ordered list of ``(DifferenceOp, value)`` entries.

    Values are an ``int`` for ``MATCH``, ``bytes`` for ``IDENTICAL``, ``INSERTION`` and ``DELETION``, and a
    ``(reference_base, query_base)`` pair of single bytes for ``MISMATCH``.

    Examples:
        >>> diff = Difference.parse(b':3*at+gg-c')
        >>> diff.entries[1]
        (<DifferenceOp.MISMATCH: 4>, (b'a', b't'))
        >>> bytes(diff)
        b':3*at+gg-c'
    """
    __slots__ = ('entries',)
    _PATTERN = re.compile(rb':([0-9]+)|=([A-Za-z]+)|\+([A-Za-z]+)|-([A-Za-z]+)|\*([A-Za-z])([A-Za-z])')
    _PREFIX = {DifferenceOp.MATCH: b':', DifferenceOp.IDENTICAL: b'=', DifferenceOp.INSERTION: b'+',
               DifferenceOp.DELETION: b'-', DifferenceOp.MISMATCH: b'*'}

    def __init__(self, entries: Iterable[tuple[DifferenceOp, object]] = None):
        self.entries: list[tuple[DifferenceOp, object]] = list(entries) if entries else []

    @classmethod
    def parse(cls, cs: bytes) -> 'Difference':
        """
        Parses a ``cs`` string in short or long form.

        Raises:
            PafParseError: If any part of the string is not a recognised entry.
        """
        entries, pos, match = [], 0, cls._PATTERN.match
        while pos < len(cs):
            if (m := match(cs, pos)) is None:
                raise PafParseError(f'Malformed cs string at offset {pos}: {cs[pos:pos + 20]!r}')
            length, identical, insertion, deletion, ref, qry = m.groups()
            if length is not None: entries.append((DifferenceOp.MATCH, int(length)))
            elif identical is not None: entries.append((DifferenceOp.IDENTICAL, identical))
            elif insertion is not None: entries.append((DifferenceOp.INSERTION, insertion))
            elif deletion is not None: entries.append((DifferenceOp.DELETION, deletion))
            else: entries.append((DifferenceOp.MISMATCH, (ref, qry)))
            pos = m.end()
        return cls(entries)

    def __len__(self): return len(self.entries)
    def __iter__(self): return iter(self.entries)
    def __getitem__(self, item): return self.entries[item]

    def __bytes__(self):
        parts = []
        for op, value in self.entries:
            if op == DifferenceOp.MATCH: parts.append(b':%d' % value)
            elif op == DifferenceOp.MISMATCH: parts.append(b'*' + value[0] + value[1])
            else: parts.append(self._PREFIX[op] + value)
        return b"".join(parts)

    def __repr__(self): return f"Difference({bytes(self).decode('ascii')})"

    def __eq__(self, other):
        if isinstance(other, Difference): return self.entries == other.entries
        return NotImplemented

    def copy(self) -> 'Difference': return Difference(self.entries)


class PafRecord:
    """
    One line of a PAF file.

    Attributes:
        query (bytes): Query sequence name.
        query_length (int): Query sequence length.
        query_start (int): Query start (0-based).
        query_end (int): Query end (exclusive).
        strand (bytes): ``b'+'`` or ``b'-'``.
        target (bytes): Target sequence name.
        target_length (int): Target sequence length.
        target_start (int): Target start on the forward strand.
        target_end (int): Target end on the forward strand.
        n_matches (int): Number of matching bases.
        length (int): Number of bases and gaps in the alignment block.
        quality (int): Mapping quality.
        cigar (Cigar): Run-length operations from the ``cg`` tag.
        difference (Difference): Difference string from the ``cs`` tag.
        mismatches (int): Total mismatches and gaps from the ``NM`` tag.
        divergence (float): Approximate per-base divergence from the ``dv`` tag.
        gap_compressed_divergence (float): Gap-compressed per-base divergence from the ``de`` tag.
        tags (list): Every auxiliary field as raw ``(tag, type, value)`` bytes, in input order.
    """
    __slots__ = (
        'query', 'query_length', 'query_start', 'query_end', 'strand', 'target', 'target_length', 'target_start',
        'target_end', 'n_matches', 'length', 'quality', 'cigar', 'difference', 'mismatches', 'divergence',
        'gap_compressed_divergence', 'tags'
    )

    def __init__(self, query: bytes, query_length: int, query_start: int, query_end: int, strand: bytes,
                 target: bytes, target_length: int, target_start: int, target_end: int, n_matches: int = 0,
                 length: int = 0, quality: int = 255, cigar: Cigar = None, difference: Difference = None,
                 mismatches: Optional[int] = None, divergence: Optional[float] = None,
                 gap_compressed_divergence: Optional[float] = None, tags: list[tuple[bytes, bytes, bytes]] = None):
        self.query = query
        self.query_length = query_length
        self.query_start = query_start
        self.query_end = query_end
        self.strand = strand
        self.target = target
        self.target_length = target_length
        self.target_start = target_start
        self.target_end = target_end
        self.n_matches = n_matches
        self.length = length
        self.quality = quality
        self.cigar = cigar
        self.difference = difference
        self.mismatches = mismatches
        self.divergence = divergence
        self.gap_compressed_divergence = gap_compressed_divergence
        self.tags = tags if tags is not None else []

    def __repr__(self):
        return (f"PafRecord({self.query.decode('utf-8', 'replace')}:{self.query_start}-{self.query_end}"
                f"{self.strand.decode('ascii', 'ignore')}{self.target.decode('utf-8', 'replace')}:"
                f"{self.target_start}-{self.target_end})")

    def __eq__(self, other):
        if isinstance(other, self.__class__):
            return all(getattr(self, i) == getattr(other, i) for i in self.__slots__)
        return False

    def copy(self) -> 'PafRecord':
        return PafRecord(
            self.query, self.query_length, self.query_start, self.query_end, self.strand, self.target,
            self.target_length, self.target_start, self.target_end, n_matches=self.n_matches, length=self.length,
            quality=self.quality, cigar=self.cigar.copy() if self.cigar is not None else None,
            difference=self.difference.copy() if self.difference is not None else None,
            mismatches=self.mismatches, divergence=self.divergence,
            gap_compressed_divergence=self.gap_compressed_divergence, tags=list(self.tags)
        )

    @property
    def query_span(self) -> int: return self.query_end - self.query_start
    @property
    def target_span(self) -> int: return self.target_end - self.target_start


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _parse_cigar_kernel(cigar, map_table):
    """Parses CIGAR bytes into op codes and counts, returning the offset of the first error or -1."""
    n = len(cigar)
    ops = np.empty(n, dtype=np.uint8)
    counts = np.empty(n, dtype=np.int64)
    idx = 0
    curr_count = 0
    n_digits = 0
    for i in range(n):
        b = int(cigar[i])
        if 48 <= b <= 57:
            curr_count = (curr_count * 10) + (b - 48)
            n_digits += 1
        else:
            op = map_table[b]
            if op == 255 or n_digits == 0: return ops[:idx], counts[:idx], i
            ops[idx] = op
            counts[idx] = curr_count
            idx += 1
            curr_count = 0
            n_digits = 0
    if n_digits: return ops[:idx], counts[:idx], n
    return ops[:idx], counts[:idx], -1
