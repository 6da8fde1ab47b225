"""
Command-line interface: decompress a PAF file with an offset map.
"""
from argparse import ArgumentParser, ArgumentDefaultsHelpFormatter, Namespace
from dataclasses import dataclass, fields
from typing import Optional, Sequence
from time import perf_counter
import logging
import sys

from hodeco import __version__, HodecoError, ConfigError
from hodeco.decompress import RecordDecompressor
from hodeco.io.offsets import load_offset_store
from hodeco.lib.io import Xopen
from hodeco.lib.resources import RESOURCES
from hodeco.pipeline import Pipeline


log = logging.getLogger('hodeco')

_LOG_FORMAT = '%(asctime)s [%(levelname)s] %(threadName)s: %(message)s'
_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class Config:
    """
    Settings of one decompression run; the I/O sizes and thread count only affect throughput.
    """
    input: str
    output: str
    hodeco_map: str
    target_hodeco_map: Optional[str] = None
    queue_size: int = 32768
    io_buffer_size: int = 67108864
    compute_threads: int = 1
    duplicates: str = 'last'
    log_level: str = 'INFO'

    @classmethod
    def from_args(cls, args: Namespace) -> 'Config':
        """
        Sets attributes of the class from a Namespace object (e.g. from argparse)

        Parameters
        ----------
        args : :class:`argparse.Namespace`
            :class:`argparse.Namespace` object containing attributes to set

        Returns
        -------
        cls
            Class instance with attributes set from args
        """
        return cls(**{f.name: getattr(args, f.name) for f in fields(cls) if hasattr(args, f.name)})

    def validate(self) -> 'Config':
        for name in ('queue_size', 'io_buffer_size', 'compute_threads'):
            if (value := getattr(self, name)) < 1: raise ConfigError(f'{name} must be positive, got {value}')
        if self.duplicates not in ('last', 'error'): raise ConfigError(f'Unknown duplicate policy: {self.duplicates}')
        if self.log_level.upper() not in _LOG_LEVELS: raise ConfigError(f'Unknown log level: {self.log_level}')
        return self


# Functions ------------------------------------------------------------------------------------------------------------
def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog='hodeco', formatter_class=ArgumentDefaultsHelpFormatter,
        description='Homopolymer-decompress a PAF file computed against homopolymer-compressed sequences.'
    )
    parser.add_argument('--version', action='version', version=__version__)
    io_group = parser.add_argument_group('Input/Output')
    io_group.add_argument('--input', required=True, help="Input PAF file ('-' for stdin).")
    io_group.add_argument('--output', required=True, help="Output PAF file ('-' for stdout).")
    io_group.add_argument('--hodeco-map', required=True,
                          help='Offset map of the sequences; also used for targets unless --target-hodeco-map is set.')
    io_group.add_argument('--target-hodeco-map', default=None, help='Separate offset map for the target sequences.')
    perf_group = parser.add_argument_group('Performance')
    perf_group.add_argument('--queue-size', type=int, default=32768, help='The size of the queues between threads.')
    perf_group.add_argument('--io-buffer-size', type=int, default=67108864, help='The size of the I/O buffers in bytes.')
    perf_group.add_argument('--compute-threads', type=int, default=1,
                            help='The number of decompression threads, not counting the input and output threads.')
    other_group = parser.add_argument_group('Other')
    other_group.add_argument('--duplicates', choices=('last', 'error'), default='last',
                             help='What to do with sequence names that occur twice in an offset map.')
    other_group.add_argument('--log-level', default='INFO', type=str.upper, choices=_LOG_LEVELS,
                             help='The level of log messages to be produced.')
    return parser


def initialise_logging(level: str):
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT, stream=sys.stderr)
    log.info('Logging initialised successfully')


def run(config: Config):
    """
    Loads the offset maps and decompresses the input into the output.

    Raises:
        HodecoError: On any inconsistency between the alignments and the offset maps.
        OSError: If a file cannot be opened, read or written.
    """
    start = perf_counter()
    if config.compute_threads > RESOURCES.available_cpus:
        log.warning('%d compute threads requested but only %d CPUs are available',
                    config.compute_threads, RESOURCES.available_cpus)

    log.info('Loading hodeco map...')
    query_tables = load_offset_store(config.hodeco_map, config.duplicates, config.io_buffer_size)
    target_tables = None
    if config.target_hodeco_map is not None:
        log.info('Loading target hodeco map...')
        target_tables = load_offset_store(config.target_hodeco_map, config.duplicates, config.io_buffer_size)

    log.info('Opening files...')
    pipeline = Pipeline(RecordDecompressor(query_tables, target_tables), config.queue_size, config.compute_threads)
    with Xopen(config.input, 'rb', config.io_buffer_size) as input_handle, \
            Xopen(config.output, 'wb', config.io_buffer_size) as output_handle:
        stats = pipeline.run(input_handle, output_handle)
    log.info('Wrote %d records in %.2fs', stats.lines_written, perf_counter() - start)
    return stats


def main(argv: Sequence[str] = None) -> int:
    """Entry point of the ``hodeco`` command; returns the process exit code."""
    args = build_parser().parse_args(argv)
    try:
        config = Config.from_args(args).validate()
        initialise_logging(config.log_level)
        run(config)
    except (HodecoError, OSError) as e:
        log.error('%s: %s', type(e).__name__, e)
        return 1
    return 0
