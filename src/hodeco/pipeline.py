"""
Streaming decompression of PAF files with one reader thread, N worker threads and one writer thread.

The stages are connected by two bounded queues::

    reader -> queue A -> worker x N -> queue B -> writer

Every queue is closed by its producers once they are done; consumers stop when their queue is closed and empty.
The first error raised by any stage aborts both queues, which wakes every blocked thread, and is re-raised by
:meth:`Pipeline.run` once all threads have been joined. With more than one worker the output order is not
guaranteed to follow the input order.
"""
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional
import logging
import queue
import threading

from hodeco import PipelineError
from hodeco.containers.alignment import PafRecord
from hodeco.io.tabular import PafReader, PafWriter


log = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class QueueClosed(Exception):
    """Raised by :class:`ClosableQueue` when putting to a closed queue or getting from a closed, empty one."""


# Classes --------------------------------------------------------------------------------------------------------------
class ClosableQueue(queue.Queue):
    """
    A bounded blocking queue that producers can close.

    ``put`` blocks while the queue is full and ``get`` blocks while it is empty, until the queue is closed.
    After :meth:`close`, remaining items can still be taken and ``get`` raises :class:`QueueClosed` once the
    queue is empty. :meth:`abort` additionally discards pending items.
    """
    def __init__(self, maxsize: int = 0):
        super().__init__(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool: return self._closed

    def put(self, item):
        with self.not_full:
            while not self._closed and 0 < self.maxsize <= self._qsize():
                self.not_full.wait()
            if self._closed: raise QueueClosed('put to a closed queue')
            self._put(item)
            self.unfinished_tasks += 1
            self.not_empty.notify()

    def get(self):
        with self.not_empty:
            while not self._closed and not self._qsize():
                self.not_empty.wait()
            if not self._qsize(): raise QueueClosed('get from a closed, empty queue')
            item = self._get()
            self.not_full.notify()
            return item

    def close(self):
        """Refuses further items and wakes every waiting thread."""
        with self.mutex:
            self._closed = True
            self.not_empty.notify_all()
            self.not_full.notify_all()

    def abort(self):
        """Closes the queue and discards the items still in it."""
        with self.mutex:
            self.queue.clear()
            self._closed = True
            self.not_empty.notify_all()
            self.not_full.notify_all()

    def __iter__(self):
        """Yields items until the queue is closed and drained."""
        while True:
            try: yield self.get()
            except QueueClosed: return


@dataclass
class PipelineStats:
    """Record counts of a finished pipeline run."""
    records_read: int = 0
    records_decompressed: int = 0
    lines_written: int = 0


class Pipeline:
    """
    Runs a record transformation over a PAF stream with bounded, backpressured stages.

    Examples:
        >>> pipeline = Pipeline(RecordDecompressor(store), queue_size=1024, compute_threads=4)
        >>> with open('in.paf', 'rb') as i, open('out.paf', 'wb') as o:
        ...     stats = pipeline.run(i, o)
    """
    def __init__(self, transform: Callable[[PafRecord], PafRecord], queue_size: int = 32768,
                 compute_threads: int = 1):
        """
        Args:
            transform: Applied to every record by the workers; must be safe to call from several threads.
            queue_size: Capacity of each of the two queues.
            compute_threads: Number of worker threads.
        """
        if queue_size < 1: raise ValueError(f'queue_size must be positive, got {queue_size}')
        if compute_threads < 1: raise ValueError(f'compute_threads must be positive, got {compute_threads}')
        self.transform = transform
        self.queue_size = queue_size
        self.compute_threads = compute_threads
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self._queues: tuple[ClosableQueue, ...] = ()
        self._active_workers = 0

    def run(self, input_handle: BinaryIO, output_handle: BinaryIO) -> PipelineStats:
        """
        Reads records from ``input_handle``, transforms them and writes the lines to ``output_handle``.

        Returns:
            Counts of the records that went through each stage.

        Raises:
            The first exception raised by any stage.
        """
        records, lines = ClosableQueue(self.queue_size), ClosableQueue(self.queue_size)
        self._queues = (records, lines)
        self._error = None
        self._active_workers = self.compute_threads
        stats = PipelineStats()
        decompressed = [0] * self.compute_threads

        log.info('Creating %d compute threads and queues of size %d', self.compute_threads, self.queue_size)
        threads = [self._spawn('input_thread', self._read, input_handle, records, stats)]
        threads.extend(self._spawn(f'compute_thread_{i}', self._work, i, records, lines, decompressed)
                       for i in range(self.compute_threads))
        threads.append(self._spawn('output_thread', self._write, lines, output_handle, stats))
        for thread in threads: thread.join()

        stats.records_decompressed = sum(decompressed)
        if self._error is not None: raise self._error
        if stats.lines_written != stats.records_read:
            raise PipelineError(f'Read {stats.records_read} records but wrote {stats.lines_written} lines')
        log.info('Decompressed %d records', stats.records_decompressed)
        return stats

    def _spawn(self, name: str, target: Callable, *args) -> threading.Thread:
        def runner():
            log.debug('Thread started')
            try: target(*args)
            except QueueClosed:
                # Only an aborted queue closes under a live producer
                if self._error is None: self._fail(PipelineError(f'{name} lost its queue'))
            except BaseException as e: self._fail(e)
            log.debug('Thread finished')
        thread = threading.Thread(target=runner, name=name, daemon=True)
        thread.start()
        return thread

    def _fail(self, error: BaseException):
        with self._lock:
            if self._error is not None: return
            self._error = error
        log.debug('%s failed: %s', threading.current_thread().name, error)
        for q in self._queues: q.abort()

    def _read(self, handle: BinaryIO, records: ClosableQueue, stats: PipelineStats):
        try:
            for record in PafReader(handle):
                records.put(record)
                stats.records_read += 1
        finally:
            records.close()

    def _work(self, index: int, records: ClosableQueue, lines: ClosableQueue, decompressed: list[int]):
        transform, render = self.transform, PafWriter.format
        try:
            for record in records:
                lines.put(render(transform(record)))
                decompressed[index] += 1
        finally:
            with self._lock:
                self._active_workers -= 1
                last = self._active_workers == 0
            if last: lines.close()

    def _write(self, lines: ClosableQueue, handle: BinaryIO, stats: PipelineStats):
        write = handle.write
        for line in lines:
            write(line)
            write(b"\n")
            stats.lines_written += 1
        if hasattr(handle, 'flush'): handle.flush()
