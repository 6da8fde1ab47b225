"""
Readers and writers for the file formats consumed and produced by the decompressor.
"""
from abc import ABC, abstractmethod
from typing import Union, Generator, BinaryIO
from pathlib import Path

from hodeco import PafParseError
from hodeco.lib.io import Xopen


# Classes --------------------------------------------------------------------------------------------------------------
class Qualifier:
    """
    Parses and formats SAM/PAF style ``TAG:TYPE:VALUE`` fields.
    """
    _TYPE_MAP = {b'f': float, b'i': int}

    @staticmethod
    def parse_tags(items: list[bytes]) -> list[tuple[bytes, bytes, bytes]]:
        """
        Splits SAM/PAF style tags without converting their values.

        Args:
            items: List of tag bytes (e.g., ``[b"NM:i:0", b"dv:f:0.01"]``).

        Returns:
            A list of ``(tag, type, value)`` tuples.

        Raises:
            PafParseError: If an item is not of the form ``TAG:TYPE:VALUE``.
        """
        tags = []
        for item in items:
            parts = item.split(b':', 2)
            if len(parts) != 3 or len(parts[0]) != 2 or len(parts[1]) != 1:
                raise PafParseError(f'Malformed tag {item[:50]!r}')
            tags.append((parts[0], parts[1], parts[2]))
        return tags

    @classmethod
    def convert(cls, tag: bytes, typ: bytes, value: bytes):
        """Converts a raw tag value according to its SAM type code."""
        try: return cls._TYPE_MAP.get(typ, bytes)(value)
        except ValueError as e: raise PafParseError(f'Invalid value for tag {tag.decode()}:{typ.decode()}: {value[:50]!r}') from e

    @staticmethod
    def format(tag: bytes, value: Union[int, float, bytes]) -> bytes:
        """
        Formats a tag, choosing the type code from the value.

        Floats use four decimals like minimap2, except non-zero values below that resolution, which keep
        their significant digits instead of collapsing to ``0.0000``.
        """
        if isinstance(value, float):
            if 0 < abs(value) < _FLOAT_RESOLUTION: return tag + b":f:%g" % value
            return tag + b":f:%.4f" % value
        if isinstance(value, int): return tag + b":i:%d" % value
        return tag + b":Z:" + bytes(value)


class BaseReader(ABC):
    """Abstract base class for readers over binary streams."""
    _CHUNK_SIZE = 65536
    __slots__ = ('_handle', '_iterator')
    def __init__(self, handle: BinaryIO, **kwargs):
        """
        Initializes the reader.

        Args:
            handle: The open file handle to read from.
            **kwargs: Additional arguments.
        """
        self._handle = handle
        self._iterator = None

    @abstractmethod
    def __iter__(self) -> Generator: ...
    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()
    def __next__(self):
        if self._iterator is None:
            self._iterator = self.__iter__()
        return next(self._iterator)

    def close(self):
        """Closes the reader."""
        pass

    def read_chunks(self, chunk_size: int = None) -> Generator[bytes, None, None]:
        """Yields chunks of data from the file handle until EOF."""
        read = self._handle.read
        size = chunk_size or self._CHUNK_SIZE
        while chunk := read(size): yield chunk


class BaseWriter(ABC):
    """
    Abstract base class for writers. Opens its destination with :class:`Xopen` when used as a context manager.

    Examples:
        >>> with PafWriter("output.paf") as w:
        ...     w.write(record1, record2)
    """
    __slots__ = ('_opener', '_handle')
    def __init__(self, file: Union[str, Path, BinaryIO], mode: str = 'wb', buffer_size: int = -1):
        self._opener = Xopen(file, mode=mode, buffer_size=buffer_size)
        self._handle = None

    def __enter__(self):
        self._handle = self._opener.__enter__()
        self.write_header()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._opener.__exit__(exc_type, exc_val, exc_tb)
        self._handle = None

    def write(self, *items):
        """Writes several items; lists and tuples are unpacked."""
        for item in items:
            if isinstance(item, (list, tuple)):
                for sub_item in item: self.write_one(sub_item)
            else:
                self.write_one(item)

    @abstractmethod
    def write_one(self, item):
        """
        Writes a single item.

        Args:
            item: The item to write.
        """
        pass

    def write_header(self):
        """Writes the file header if applicable."""
        pass


# Constants ------------------------------------------------------------------------------------------------------------
_FLOAT_RESOLUTION = 5e-5  # smallest value %.4f does not round to zero
