"""
Opening of input and output streams: paths, standard streams and compressed files.
"""
from io import IOBase
from typing import Union, BinaryIO, Optional
from pathlib import Path
from sys import stdout, stdin
from importlib import import_module

from hodeco import HodecoError


# Classes --------------------------------------------------------------------------------------------------------------
class PeekableHandle:
    """
    Wraps a non-seekable binary stream so the first bytes can be inspected without consuming them.
    Used to sniff compression magic on pipes and stdin.
    """
    __slots__ = ('_stream', '_peek_buffer', '_buffer_pos', '_buffer_len')

    def __init__(self, stream: BinaryIO, max_peek: int = 4096):
        """
        Initializes the PeekableHandle.

        Args:
            stream: The underlying binary stream.
            max_peek: Maximum number of bytes to buffer for peeking.
        """
        self._stream = stream
        self._peek_buffer = stream.read(max_peek)
        self._buffer_pos = 0
        self._buffer_len = len(self._peek_buffer)

    def peek(self, size: int = -1) -> bytes:
        """Returns buffered bytes without advancing the stream position."""
        if size == -1 or size > self._buffer_len: return self._peek_buffer
        return self._peek_buffer[:size]

    def read(self, size: int = -1) -> bytes:
        """
        Reads from the stream, consuming the peek buffer first.

        Args:
            size: Number of bytes to read. If -1, reads until EOF.

        Returns:
            The bytes read.
        """
        if self._buffer_pos >= self._buffer_len: return self._stream.read(size)
        if size == -1:
            chunk = self._peek_buffer[self._buffer_pos:]
            self._buffer_pos = self._buffer_len
            return chunk + self._stream.read()
        available = self._buffer_len - self._buffer_pos
        if size <= available:
            chunk = self._peek_buffer[self._buffer_pos: self._buffer_pos + size]
            self._buffer_pos += size
            return chunk
        chunk = self._peek_buffer[self._buffer_pos:]
        self._buffer_pos = self._buffer_len
        return chunk + self._stream.read(size - available)

    def readable(self) -> bool: return True

    def close(self):
        """Closes the underlying stream if possible."""
        if hasattr(self._stream, 'close'): self._stream.close()


class Xopen:
    """
    Opens a path, a standard stream ('-') or an existing handle, handling compression transparently.

    Input compression is detected from magic bytes; output compression is inferred from the file extension.

    Examples:
        >>> with Xopen("alignments.paf.gz", "rb") as f:
        ...     content = f.read()
    """
    _MAGIC = {
        b'\x1f\x8b': 'gzip',
        b'\x42\x5a\x68': 'bz2',
        b'\xfd7zXZ\x00': 'lzma',
        b'\x28\xb5\x2f\xfd': 'zstandard'
    }
    _EXT_TO_PKG = {'gz': 'gzip', 'bz2': 'bz2', 'xz': 'lzma', 'zst': 'zstandard'}
    _MIN_N_BYTES = max(len(i) for i in _MAGIC.keys())
    _OPEN_FUNCS = {}

    def __init__(self, file: Union[str, Path, BinaryIO], mode: str = 'rb', buffer_size: int = -1):
        """
        Initializes the Xopen context manager.

        Args:
            file: File path (str or Path), '-' for a standard stream, or an existing file object.
            mode: Binary opening mode ('rb', 'wb' or 'ab').
            buffer_size: Buffer size in bytes for files opened here (-1 for the interpreter default).
        """
        if 'b' not in mode: raise ValueError(f'Xopen only supports binary modes, got {mode!r}')
        self.file = file
        self.mode = mode
        self.buffer_size = buffer_size
        self._handle: Optional[BinaryIO] = None
        self._raw: Optional[BinaryIO] = None
        self._close_on_exit = False

    @property
    def name(self) -> str:
        return getattr(self.file, 'name', str(self.file))

    def __enter__(self) -> BinaryIO:
        self._handle = self._open()
        return self._handle

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Closes the handle if it was opened by this instance, otherwise just flushes writers."""
        if self._handle is None: return
        if self._close_on_exit: self._handle.close()
        elif self._writing and hasattr(self._handle, 'flush'): self._handle.flush()
        # Decompressors do not close the file they wrap
        if self._raw is not None and self._raw is not self._handle: self._raw.close()

    @property
    def _writing(self) -> bool: return 'w' in self.mode or 'a' in self.mode

    def _get_opener(self, pkg_name: str):
        """Retrieves the ``open`` function of a compression package, importing it on first use."""
        if pkg_name not in self._OPEN_FUNCS:
            try: self._OPEN_FUNCS[pkg_name] = import_module(pkg_name).open
            except ImportError as e: raise HodecoError(f"Compression module '{pkg_name}' not installed") from e
        return self._OPEN_FUNCS[pkg_name]

    def _open(self) -> BinaryIO:
        if isinstance(self.file, (IOBase, PeekableHandle)): raw_stream, should_close = self.file, False
        elif str(self.file) in {'-', 'stdin'} and not self._writing: raw_stream, should_close = stdin.buffer, False
        elif str(self.file) in {'-', 'stdout'} and self._writing: return stdout.buffer
        else:
            path = Path(self.file).expanduser()
            if self._writing:
                self._close_on_exit = True
                if pkg := self._EXT_TO_PKG.get(path.suffix.lower().lstrip('.')):
                    return self._get_opener(pkg)(path, mode=self.mode)
                return open(path, mode=self.mode, buffering=self.buffer_size)
            raw_stream, should_close = open(path, mode='rb', buffering=self.buffer_size), True
            self._raw = raw_stream

        if self._writing: return raw_stream

        # Seekable streams are sniffed in place, anything else goes through a PeekableHandle
        try: seekable = raw_stream.seekable()
        except (AttributeError, ValueError, OSError): seekable = False
        if seekable:
            start = raw_stream.read(self._MIN_N_BYTES)
            raw_stream.seek(0)
            stream = raw_stream
        else:
            stream = PeekableHandle(raw_stream)
            start = stream.peek(self._MIN_N_BYTES)

        for magic, pkg in self._MAGIC.items():
            if start.startswith(magic):
                self._close_on_exit = True
                return self._get_opener(pkg)(stream, mode='rb')
        self._close_on_exit = should_close
        return stream
