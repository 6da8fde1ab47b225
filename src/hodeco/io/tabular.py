"""
Tab-delimited formats: the PAF (Pairwise mApping Format) reader and writer.
"""
from abc import abstractmethod
from typing import Generator

from hodeco import PafParseError
from hodeco.containers.alignment import PafRecord, Cigar, Difference
from hodeco.io import BaseReader, BaseWriter, Qualifier


# Classes --------------------------------------------------------------------------------------------------------------
class TabularReader(BaseReader):
    """Base class for readers of line-oriented, tab-delimited formats."""
    _delim = b'\t'
    _min_cols: int = 1
    __slots__ = ()

    def _read_parts(self) -> Generator[tuple[int, list[bytes]], None, None]:
        """Internal generator that yields ``(line_number, columns)`` for every non-empty, non-comment line."""
        delim = self._delim
        line_no = 0
        buf = bytearray()
        for chunk in self.read_chunks():
            buf.extend(chunk)
            pos = 0
            while (nl_pos := buf.find(b'\n', pos)) != -1:
                line_no += 1
                line = bytes(buf[pos:nl_pos]).rstrip(b'\r')
                pos = nl_pos + 1
                if line and not line.startswith(b'#'): yield line_no, line.split(delim)
            del buf[:pos]
        if line := bytes(buf).rstrip(b'\r'):
            if not line.startswith(b'#'): yield line_no + 1, line.split(delim)

    def __iter__(self) -> Generator:
        """
        Iterates over lines, parsing each row.

        Raises:
            PafParseError: If a row cannot be parsed; the message names the line number.
        """
        parse, min_cols = self.parse_row, self._min_cols
        for line_no, parts in self._read_parts():
            if len(parts) < min_cols:
                raise PafParseError(f'Line {line_no}: expected at least {min_cols} columns, found {len(parts)}')
            try: item = parse(parts)
            except (ValueError, IndexError) as e: raise PafParseError(f'Line {line_no}: {e}') from e
            yield item

    @abstractmethod
    def parse_row(self, parts: list[bytes]):
        """
        Parses a single row split by delimiter.

        Args:
            parts: List of column bytes.
        """
        pass


class PafReader(TabularReader):
    """
    Reader for PAF (Pairwise mApping Format) files.

    Examples:
        >>> with open("alignments.paf", "rb") as f:
        ...     for record in PafReader(f):
        ...         print(record.query, record.n_matches)
    """
    _min_cols = 12
    __slots__ = ()

    def parse_row(self, parts: list[bytes]) -> PafRecord:
        """
        Parses a PAF row.

        Args:
            parts: List of column bytes.

        Returns:
            A PafRecord; the ``cg``, ``cs``, ``NM``, ``dv`` and ``de`` tags are decoded into their fields.
        """
        if (strand := parts[4]) not in (b'+', b'-'): raise PafParseError(f'Invalid strand {strand[:10]!r}')
        fields = {}
        tags = Qualifier.parse_tags(parts[12:])
        for tag, typ, value in tags:
            if (known := _TAG_FIELDS.get(tag)) is None: continue
            field, expected, parser = known
            if typ != expected:
                raise PafParseError(f'Tag {tag.decode()} must have type {expected.decode()}, got {typ.decode()}')
            fields[field] = parser(value) if parser else Qualifier.convert(tag, typ, value)

        return PafRecord(
            parts[0], int(parts[1]), int(parts[2]), int(parts[3]), strand,
            parts[5], int(parts[6]), int(parts[7]), int(parts[8]),
            n_matches=int(parts[9]), length=int(parts[10]), quality=int(parts[11]), tags=tags, **fields
        )


class PafWriter(BaseWriter):
    """
    Writer for PAF (Pairwise mApping Format) files.

    Examples:
        >>> with PafWriter("alignments.paf") as w:
        ...     w.write(record)
    """
    __slots__ = ()

    def write_one(self, record: PafRecord):
        if not isinstance(record, PafRecord): raise TypeError(f"PafWriter expects PafRecord objects, got {type(record)}")
        self._handle.write(self.format(record) + b"\n")

    @staticmethod
    def format(record: PafRecord) -> bytes:
        """
        Renders a record as one PAF line without the line terminator.

        Auxiliary tags keep their input order; decoded tags are re-rendered from the record's fields, and decoded
        fields that were not in the input are appended.
        """
        parts = [
            record.query,
            b"%d" % record.query_length,
            b"%d" % record.query_start,
            b"%d" % record.query_end,
            record.strand,
            record.target,
            b"%d" % record.target_length,
            b"%d" % record.target_start,
            b"%d" % record.target_end,
            b"%d" % record.n_matches,
            b"%d" % record.length,
            b"%d" % record.quality
        ]
        seen = set()
        for tag, typ, value in record.tags:
            if (known := _TAG_FIELDS.get(tag)) is None:
                parts.append(tag + b":" + typ + b":" + value)
            elif (rendered := _format_field(record, tag, known[0])) is not None:
                parts.append(rendered)
                seen.add(tag)
        for tag, (field, _, _) in _TAG_FIELDS.items():
            if tag not in seen and (rendered := _format_field(record, tag, field)) is not None:
                parts.append(rendered)
        return b"\t".join(parts)


# Functions ------------------------------------------------------------------------------------------------------------
def _format_field(record: PafRecord, tag: bytes, field: str):
    if (value := getattr(record, field)) is None: return None
    if isinstance(value, (Cigar, Difference)): return tag + b":Z:" + bytes(value)
    return Qualifier.format(tag, value)


# Constants ------------------------------------------------------------------------------------------------------------
# tag -> (record field, SAM type, parser); a parser of None converts by type
_TAG_FIELDS = {
    b'NM': ('mismatches', b'i', None),
    b'dv': ('divergence', b'f', None),
    b'de': ('gap_compressed_divergence', b'f', None),
    b'cg': ('cigar', b'Z', Cigar.parse),
    b'cs': ('difference', b'Z', Difference.parse),
}
