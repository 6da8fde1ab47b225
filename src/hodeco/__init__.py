"""
Homopolymer decompression of PAF alignments.

Alignments computed against homopolymer-compressed sequences are rewritten so that coordinates, CIGAR runs,
difference strings and derived statistics refer to the original (decompressed) sequences.

Examples:
    >>> from hodeco import OffsetTableStore, RecordDecompressor, Pipeline
    >>> store = OffsetTableStore.build([('ctg1', [0, 1, 3, 4])])
    >>> with open('in.paf', 'rb') as i, open('out.paf', 'wb') as o:
    ...     Pipeline(RecordDecompressor(store)).run(i, o)
"""


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class HodecoError(Exception):
    """Base class for every fatal error raised while decompressing alignments."""

class ConfigError(HodecoError, ValueError):
    """Raised when the run configuration is invalid."""

class OffsetMapError(HodecoError):
    """Raised when an offset map stream is malformed or cannot be loaded."""

class PafParseError(HodecoError, ValueError):
    """Raised when a PAF line cannot be decoded into a record."""

class ConsistencyError(HodecoError):
    """Raised when a record disagrees with the offset tables it is decompressed with."""

class MissingOffsetTableError(ConsistencyError):
    """Raised when no offset table exists for a sequence name."""

class LengthMismatchError(ConsistencyError):
    """Raised when a record's sequence length differs from the compressed length of its offset table."""

class CoordinateSpanError(ConsistencyError):
    """Raised when a remapped interval does not have a positive span."""

class UnsupportedOperationError(ConsistencyError):
    """Raised when an alignment operation kind cannot be decompressed."""

class OffsetIndexError(ConsistencyError, IndexError):
    """Raised when a coordinate or run falls outside the compressed domain of an offset table."""

class PipelineError(HodecoError):
    """Raised when a pipeline stage fails without a more specific error."""


# Constants ------------------------------------------------------------------------------------------------------------
__version__ = '0.1.0'

from hodeco.core.offsets import OffsetTable, OffsetTableStore
from hodeco.containers.alignment import Cigar, CigarOp, Difference, DifferenceOp, PafRecord
from hodeco.decompress import RecordDecompressor, decompress_record
from hodeco.pipeline import Pipeline, PipelineStats, ClosableQueue, QueueClosed
