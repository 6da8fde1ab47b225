"""
Decompression of a single PAF record from homopolymer-compressed into decompressed coordinates.

Coordinates and lengths are remapped by direct lookup in the offset tables. CIGAR runs and ``cs`` entries are walked
from the alignment start with one compressed cursor per sequence, and each is replaced by the number of decompressed
bases it covers. Statistics derived from the operations are recomputed from the expanded values.
"""
import numpy as np

from hodeco import (ConsistencyError, LengthMismatchError, CoordinateSpanError, UnsupportedOperationError,
                    OffsetIndexError)
from hodeco.core.offsets import OffsetTable, OffsetTableStore
from hodeco.containers.alignment import PafRecord, Cigar, CigarOp, Difference, DifferenceOp
from hodeco.lib.resources import jit


# Classes --------------------------------------------------------------------------------------------------------------
class RecordDecompressor:
    """
    Decompresses records with tables resolved by sequence name.

    Holds read-only stores only, so one instance can be shared by any number of worker threads.

    Examples:
        >>> store = OffsetTableStore.build([('q', [0, 1, 3, 4]), ('t', [0, 1, 2, 3])])
        >>> decompress = RecordDecompressor(store)
        >>> decompress(record).query_end
        4
    """
    __slots__ = ('query_tables', 'target_tables')

    def __init__(self, query_tables: OffsetTableStore, target_tables: OffsetTableStore = None):
        """
        Args:
            query_tables: Offset tables of the query sequences.
            target_tables: Offset tables of the target sequences; defaults to ``query_tables``.
        """
        self.query_tables = query_tables
        self.target_tables = query_tables if target_tables is None else target_tables

    def __call__(self, record: PafRecord) -> PafRecord:
        """
        Raises:
            MissingOffsetTableError: If either sequence has no offset table.
            ConsistencyError: If the record does not fit its tables.
        """
        return decompress_record(record, self.query_tables[record.query], self.target_tables[record.target])


# Functions ------------------------------------------------------------------------------------------------------------
def decompress_record(record: PafRecord, query_table: OffsetTable, target_table: OffsetTable) -> PafRecord:
    """
    Rewrites a record in place so that it refers to the decompressed sequences.

    Args:
        record: A record whose coordinates refer to the compressed sequences.
        query_table: Offset table of the query sequence.
        target_table: Offset table of the target sequence.

    Returns:
        The same record, decompressed.

    Raises:
        LengthMismatchError: If a sequence length differs from the compressed length of its table.
        CoordinateSpanError: If a remapped interval is empty.
        UnsupportedOperationError: If the CIGAR contains runs other than M, I and D.
        OffsetIndexError: If a coordinate or operation runs past the end of a table.
    """
    for name, length, table in ((record.query, record.query_length, query_table),
                                (record.target, record.target_length, target_table)):
        if length != table.compressed_length:
            raise LengthMismatchError(
                f'Sequence `{_name(name)}` has length {length} in the alignment but {table.compressed_length} '
                f'in its offset table'
            )

    query_start, target_start = record.query_start, record.target_start
    original_query_length = record.query_length
    try:
        record.query_length = query_table.decompressed_length
        record.target_length = target_table.decompressed_length
        record.query_start, record.query_end = query_table[record.query_start], query_table[record.query_end]
        record.target_start, record.target_end = target_table[record.target_start], target_table[record.target_end]
        if record.query_span <= 0 or record.target_span <= 0:
            raise CoordinateSpanError(
                f'Decompressed alignment {_name(record.query)}:{record.query_start}-{record.query_end} -> '
                f'{_name(record.target)}:{record.target_start}-{record.target_end} has a non-positive span'
            )

        if record.cigar is not None:
            record.cigar, record.n_matches = _decompress_cigar(
                record.cigar, query_table, target_table, query_start, target_start)
            record.length = record.cigar.length

        if record.difference is not None:
            record.difference, record.mismatches = _decompress_difference(
                record.difference, query_table, target_table, query_start, target_start)
    except OffsetIndexError as e:
        raise OffsetIndexError(f'Alignment {_name(record.query)} -> {_name(record.target)}: {e}') from e

    scale = record.query_length / original_query_length
    if record.divergence is not None: record.divergence *= scale
    if record.gap_compressed_divergence is not None: record.gap_compressed_divergence *= scale
    return record


def _decompress_cigar(cigar: Cigar, query_table: OffsetTable, target_table: OffsetTable,
                      query_start: int, target_start: int) -> tuple[Cigar, int]:
    """Returns the expanded CIGAR and its number of matching bases."""
    if len(unsupported := cigar.ops[~np.isin(cigar.ops, _CIGAR_RUNS)]):
        raise UnsupportedOperationError(f'unsupported run kind {CigarOp(int(unsupported[0])).name} in CIGAR')
    # Cursors only move forward, so bounding the totals bounds every lookup in the kernel
    query_table.check_range(query_start, cigar.query_length)
    target_table.check_range(target_start, cigar.target_length)
    counts, n_matches = _expand_cigar_kernel(
        cigar.ops, cigar.counts, query_table.array, target_table.array, query_start, target_start)
    return Cigar(cigar.ops.copy(), counts), int(n_matches)


def _decompress_difference(difference: Difference, query_table: OffsetTable, target_table: OffsetTable,
                           query_cursor: int, target_cursor: int) -> tuple[Difference, int]:
    """
    Returns the expanded difference string and the number of mismatches and gaps it adds.

    A mismatch over a compressed homopolymer run of length ``k`` becomes ``k`` identical mismatches; the copies
    are emitted right after the original entry and only the ``k - 1`` copies are counted.
    """
    entries, n_mismatches = [], 0
    for op, value in difference.entries:
        if op == DifferenceOp.MATCH:
            entries.append((op, query_table.span(query_cursor, value)))
            query_cursor += value
            target_cursor += value
        elif op == DifferenceOp.IDENTICAL:
            entries.append((op, query_table.decompress(value, query_cursor)))
            query_cursor += len(value)
            target_cursor += len(value)
        elif op == DifferenceOp.DELETION:
            bases = target_table.decompress(value, target_cursor)
            entries.append((op, bases))
            target_cursor += len(value)
            n_mismatches += len(bases)
        elif op == DifferenceOp.INSERTION:
            bases = query_table.decompress(value, query_cursor)
            entries.append((op, bases))
            query_cursor += len(value)
            n_mismatches += len(bases)
        elif op == DifferenceOp.MISMATCH:
            target_table.check_range(target_cursor, 1)
            if (hodeco_count := query_table.span(query_cursor, 1) - 1) < 0:
                raise ConsistencyError(f'Mismatch at compressed query position {query_cursor} covers no bases')
            entries.extend([(op, value)] * (hodeco_count + 1))
            query_cursor += 1
            target_cursor += 1
            n_mismatches += hodeco_count
        else:
            raise UnsupportedOperationError(f'unsupported difference kind {op!r}')
    return Difference(entries), n_mismatches


def _name(name) -> str: return name.decode('utf-8', 'replace') if isinstance(name, bytes) else str(name)


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _expand_cigar_kernel(ops, counts, query_table, target_table, query_start, target_start):
    """Replaces each M/I/D count by the decompressed length it covers; returns new counts and the M total."""
    out = np.empty(len(counts), dtype=np.int64)
    q = query_start
    t = target_start
    n_matches = 0
    for i in range(len(ops)):
        n = counts[i]
        if ops[i] == 0:  # M
            new = query_table[q + n] - query_table[q]
            q += n
            t += n
            n_matches += new
        elif ops[i] == 1:  # I
            new = query_table[q + n] - query_table[q]
            q += n
        else:  # D
            new = target_table[t + n] - target_table[t]
            t += n
        out[i] = new
    return out, n_matches


# Constants ------------------------------------------------------------------------------------------------------------
_CIGAR_RUNS = np.array([CigarOp.M, CigarOp.I, CigarOp.D], dtype=np.uint8)
