#!/usr/bin/env python3


import argparse
import os
import re
import sys
import time
import unicodedata
from dataclasses import dataclass, field
from typing import BinaryIO, ClassVar, Dict, Iterator, List, Optional, Tuple, Union

import emoji

__all__ = [
    "SimpleLogger",
    "ConfigurationError",
    "SequenceReport",
    "LineScan",
    "LineResult",
    "ScanStats",
    "SearchCommand",
    "DeleteCommand",
    "ReplaceCommand",
    "CountCommand",
    "Config",
    "Utf8Filter",
    "sequence_length",
    "consume_sequence",
    "scan_line",
    "mark_line",
    "delete_line",
    "replace_line",
    "count_line",
    "describe_sequence",
    "build_config",
    "parse_config",
    "main",
]

# --- Configuration ---
VERSION = "1.2.0"

LINE_CAPACITY = 4096
MIN_BUFFER_SIZE = 2

COUNT_MODES: Tuple[str, ...] = ("chars", "bytes", "both")
COMMANDS: Tuple[str, ...] = ("search", "delete", "replace", "count")

# --- Leading byte classes ---
# (lowest leading byte, declared length), highest class first.
LEADING_BYTE_CLASSES: Tuple[Tuple[int, int], ...] = (
    (0xFC, 6),
    (0xF8, 5),
    (0xF0, 4),
    (0xE0, 3),
    (0xC0, 2),
)

HIGH_BIT = 0x80
LINE_FEED = 0x0A
TAB = 0x09

MARK_CARET = ord("^")
MARK_SPACE = ord(" ")


# --- Logging Setup ---
class SimpleLogger:
    """Simplified logger with color support and minimal configuration.

    Writes to stderr by default: stdout belongs to the filtered stream.
    """

    # ANSI color codes
    COLORS: Dict[str, str] = {
        'red': "\x1b[31;1m",
        'yellow': "\x1b[33;1m",
        'cyan': "\x1b[36;1m",
        'reset': "\x1b[0m"
    }

    # Log levels
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40

    def __init__(
        self,
        level: int = INFO,
        use_colors: bool | None = None,
        log_file: Optional[str] = None,
        stream=None,
    ) -> None:
        self.level = level
        self.stream = stream if stream is not None else sys.stderr
        self.use_colors = (
            self.stream.isatty() and os.environ.get("NO_COLOR") is None
            if use_colors is None
            else bool(use_colors)
        )
        self.file_handler = (
            open(log_file, "w", encoding="utf-8") if log_file else None
        )

    def _log(self, level: int, msg: str, *args, color: Optional[str] = None) -> None:
        """Internal logging method."""
        if level < self.level:
            return

        if args:
            msg = msg % args

        if self.use_colors and color and color in self.COLORS:
            msg = f"{self.COLORS[color]}{msg}{self.COLORS['reset']}"

        print(msg, file=self.stream)

        # File copy never carries colors
        if self.file_handler:
            clean_msg = re.sub(r'\x1b\[[0-9;]*m', '', msg)
            print(clean_msg, file=self.file_handler)
            self.file_handler.flush()

    def debug(self, msg: str, *args):
        self._log(self.DEBUG, msg, *args, color="cyan")

    def info(self, msg: str, *args):
        self._log(self.INFO, msg, *args)

    def warning(self, msg: str, *args):
        self._log(self.WARNING, msg, *args, color="yellow")

    def error(self, msg: str, *args):
        self._log(self.ERROR, msg, *args, color="red")

    def close(self):
        """Close file handler if it exists."""
        if self.file_handler:
            self.file_handler.close()
            self.file_handler = None


class ConfigurationError(Exception):
    """Raised for unusable command line or form options."""


# --- Data Models ---
@dataclass
class SequenceReport:
    """A completed multi-byte sequence found in a line."""
    byte_idx: int
    raw: bytes

    @property
    def length(self) -> int:
        return len(self.raw)


@dataclass
class LineScan:
    """Sequences found in one line and the offset where scanning stopped."""
    sequences: List[SequenceReport]
    end: int
    truncated: bool = False


@dataclass
class LineResult:
    """Output of one line transform.

    ``end`` is the offset where scanning stopped: the line length, or the
    offset of a truncated leading byte.
    """
    output: bytes
    sequences: List[SequenceReport]
    end: int
    truncated: bool = False

    @property
    def characters(self) -> int:
        return len(self.sequences)

    @property
    def byte_count(self) -> int:
        return sum(seq.length for seq in self.sequences)


@dataclass
class ScanStats:
    """Running counters for one invocation."""
    lines_read: int = 0
    chunks_read: int = 0
    lines_with_sequences: int = 0
    characters: int = 0
    bytes: int = 0
    truncated: int = 0
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def elapsed_time(self) -> float:
        return self.end_time - self.start_time if self.end_time else 0.0

    def update_from_result(self, result: LineResult) -> None:
        self.chunks_read += 1
        self.characters += result.characters
        self.bytes += result.byte_count
        if result.truncated:
            self.truncated += 1


# --- Commands ---
@dataclass(frozen=True)
class SearchCommand:
    name: ClassVar[str] = "search"


@dataclass(frozen=True)
class DeleteCommand:
    name: ClassVar[str] = "delete"


@dataclass(frozen=True)
class ReplaceCommand:
    replacement: bytes
    name: ClassVar[str] = "replace"


@dataclass(frozen=True)
class CountCommand:
    mode: str = "chars"
    name: ClassVar[str] = "count"


Command = Union[SearchCommand, DeleteCommand, ReplaceCommand, CountCommand]


@dataclass(frozen=True)
class Config:
    command: Command = field(default_factory=SearchCommand)
    verbose: bool = False
    describe: bool = False
    buffer_size: int = LINE_CAPACITY


# ---------------------------------------------------------------------------
#  Sequence recognizer
# ---------------------------------------------------------------------------
def sequence_length(lead: int) -> int:
    """Declared length of a sequence from its leading byte (1 to 6)."""
    for lowest, length in LEADING_BYTE_CLASSES:
        if lead >= lowest:
            return length
    return 1


def consume_sequence(line: bytes, pos: int) -> Optional[int]:
    """Return how many bytes the sequence starting at ``pos`` occupies.

    ``line[pos]`` must have its high bit set. Continuation bytes are taken
    while they have the high bit set, up to the declared length. An ASCII
    byte ends the sequence early. Running off the end of ``line`` before the
    declared length is reached returns ``None`` (truncated).
    """
    declared = sequence_length(line[pos])
    end = len(line)
    consumed = 1
    while consumed < declared:
        idx = pos + consumed
        if idx >= end:
            return None
        if line[idx] < HIGH_BIT:
            break
        consumed += 1
    return consumed


def scan_line(line: bytes) -> LineScan:
    """Walk one line and collect every completed multi-byte sequence."""
    sequences: List[SequenceReport] = []
    pos = 0
    end = len(line)
    while pos < end:
        if line[pos] < HIGH_BIT:
            pos += 1
            continue
        consumed = consume_sequence(line, pos)
        if consumed is None:
            return LineScan(sequences, pos, truncated=True)
        sequences.append(SequenceReport(pos, bytes(line[pos:pos + consumed])))
        pos += consumed
    return LineScan(sequences, end)


# ---------------------------------------------------------------------------
#  Line transforms
# ---------------------------------------------------------------------------
def mark_line(line: bytes) -> LineResult:
    """Build the marker line: ``^`` under each sequence, blanks elsewhere.

    Continuation bytes get no placeholder, so the marker line is shorter
    than the original for multi-byte content. The terminator is not marked.
    """
    scan = scan_line(line)
    marker = bytearray()
    starts = {seq.byte_idx: seq.length for seq in scan.sequences}
    pos = 0
    while pos < scan.end:
        byte = line[pos]
        if byte == LINE_FEED:
            break
        if pos in starts:
            marker.append(MARK_CARET)
            pos += starts[pos]
            continue
        marker.append(TAB if byte == TAB else MARK_SPACE)
        pos += 1
    return LineResult(bytes(marker), scan.sequences, scan.end, scan.truncated)


def _substitute(line: bytes, scan: LineScan, replacement: bytes) -> bytes:
    out = bytearray()
    pos = 0
    for seq in scan.sequences:
        out += line[pos:seq.byte_idx]
        out += replacement
        pos = seq.byte_idx + seq.length
    out += line[pos:scan.end]
    return bytes(out)


def delete_line(line: bytes) -> LineResult:
    """Drop every multi-byte sequence, keep everything else."""
    scan = scan_line(line)
    return LineResult(_substitute(line, scan, b""), scan.sequences, scan.end, scan.truncated)


def replace_line(line: bytes, replacement: bytes) -> LineResult:
    """Swap each whole multi-byte sequence for one ``replacement`` byte."""
    scan = scan_line(line)
    return LineResult(_substitute(line, scan, replacement), scan.sequences, scan.end, scan.truncated)


def count_line(line: bytes) -> LineResult:
    scan = scan_line(line)
    return LineResult(b"", scan.sequences, scan.end, scan.truncated)


def describe_sequence(raw: bytes) -> str:
    """Human readable name for a sequence: emoji short name or Unicode name."""
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return "(invalid UTF-8)"
    codepoints = " ".join(f"U+{ord(ch):04X}" for ch in text)
    if emoji.is_emoji(text):
        return f"{codepoints} {emoji.demojize(text)}"
    if len(text) != 1:
        return codepoints
    return f"{codepoints} {unicodedata.name(text, 'UNNAMED')}"


# ---------------------------------------------------------------------------
#  Driver
# ---------------------------------------------------------------------------
class Utf8Filter:
    """Read a byte stream line by line and apply the configured transform."""

    VERSION = VERSION

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        logger: Optional[SimpleLogger] = None,
    ) -> None:
        self.config = config or Config()
        self.log = logger or SimpleLogger()
        self._handlers = {
            SearchCommand.name: self._search,
            DeleteCommand.name: self._delete,
            ReplaceCommand.name: self._replace,
            CountCommand.name: self._count,
        }

    # ------------------------------------------------------------------
    def read_lines(self, stream: BinaryIO) -> Iterator[bytes]:
        """Yield chunks of at most ``buffer_size`` bytes, split at line feeds."""
        size = self.config.buffer_size
        while True:
            chunk = stream.readline(size)
            if not chunk:
                return
            yield chunk

    # ------------------------------------------------------------------
    def run(self, src: BinaryIO, dst: BinaryIO) -> ScanStats:
        """Filter ``src`` into ``dst`` and write the end-of-stream summary."""
        handler = self._handlers[self.config.command.name]
        size = self.config.buffer_size
        stats = ScanStats(start_time=time.time())
        line_num = 1
        in_line = False  # a chunk of line_num was already seen
        line_hit = False
        self.log.debug("Running '%s' with buffer size %d", self.config.command.name, size)

        for chunk in self.read_lines(src):
            complete = chunk.endswith(b"\n")
            if not complete and len(chunk) == size and not in_line:
                self.log.warning(
                    "Line %d exceeds the buffer size (%d bytes); processing it in chunks.",
                    line_num,
                    size,
                )

            result = handler(chunk, line_num, dst)
            stats.update_from_result(result)
            if result.truncated:
                self.log.debug(
                    "Line %d: truncated sequence at byte %d, rest of chunk skipped",
                    line_num,
                    result.end + 1,
                )
            if result.sequences and not line_hit:
                stats.lines_with_sequences += 1
                line_hit = True

            if complete:
                stats.lines_read += 1
                line_num += 1
                in_line = line_hit = False
            else:
                in_line = True

        if in_line:
            stats.lines_read += 1

        self._write_summary(stats, dst)
        dst.flush()
        stats.end_time = time.time()
        return stats

    # ------------------------------------------------------------------
    def _search(self, line: bytes, line_num: int, dst: BinaryIO) -> LineResult:
        result = mark_line(line)
        if not result.sequences:
            return result
        original = line[:-1] if line.endswith(b"\n") else line
        dst.write(f"Line {line_num}, {result.characters} occurence(s):\n".encode("ascii"))
        dst.write(original + b"\n")
        dst.write(result.output + b"\n")
        if self.config.describe:
            for seq in result.sequences:
                dst.write(
                    "  column {}: {} {}\n".format(
                        seq.byte_idx + 1,
                        seq.raw.hex(" ").upper(),
                        describe_sequence(seq.raw),
                    ).encode("utf-8")
                )
        return result

    def _delete(self, line: bytes, line_num: int, dst: BinaryIO) -> LineResult:
        result = delete_line(line)
        dst.write(result.output)
        return result

    def _replace(self, line: bytes, line_num: int, dst: BinaryIO) -> LineResult:
        result = replace_line(line, self.config.command.replacement)
        dst.write(result.output)
        return result

    def _count(self, line: bytes, line_num: int, dst: BinaryIO) -> LineResult:
        return count_line(line)

    # ------------------------------------------------------------------
    def summary_lines(self, stats: ScanStats) -> List[str]:
        """End-of-stream lines for the configured command."""
        command = self.config.command
        verbose = self.config.verbose
        lines: List[str] = []
        if isinstance(command, SearchCommand):
            if verbose:
                lines.append(f"UTF-8 characters found: {stats.characters}")
        elif isinstance(command, CountCommand):
            if command.mode in ("chars", "both"):
                lines.append(f"UTF-8 Characters: {stats.characters}" if verbose else str(stats.characters))
            if command.mode in ("bytes", "both"):
                lines.append(f"UTF-8 Bytes: {stats.bytes}" if verbose else str(stats.bytes))
        return lines

    def _write_summary(self, stats: ScanStats, dst: BinaryIO) -> None:
        for line in self.summary_lines(stats):
            dst.write(line.encode("ascii") + b"\n")

    # ------------------------------------------------------------------
    def display_run_report(self, stats: ScanStats) -> None:
        """Log run counters at debug level."""
        self.log.debug("Lines read: %d (%d chunk(s))", stats.lines_read, stats.chunks_read)
        self.log.debug("Lines with sequences: %d", stats.lines_with_sequences)
        self.log.debug("Sequences: %d, bytes: %d", stats.characters, stats.bytes)
        if stats.truncated:
            self.log.debug("Truncated sequences skipped: %d", stats.truncated)
        self.log.debug("Elapsed time: %.2f s", stats.elapsed_time)

    def write_report_file(self, path: str, stats: ScanStats) -> None:
        with open(path, 'w', encoding='utf-8') as f:
            f.write("UTFHATE REPORT\n")
            f.write("==============\n\n")
            f.write(f"Date: {time.strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write(f"Command: {self.config.command.name}\n")
            f.write(f"Lines read: {stats.lines_read}\n")
            f.write(f"Lines with UTF-8 sequences: {stats.lines_with_sequences}\n")
            f.write(f"UTF-8 characters: {stats.characters}\n")
            f.write(f"UTF-8 bytes: {stats.bytes}\n")
            if stats.truncated:
                f.write(f"Truncated sequences: {stats.truncated}\n")
            f.write(f"Elapsed time: {stats.elapsed_time:.2f} seconds\n\n")
            f.write(f"Status: {'UTF-8 FOUND' if stats.characters else 'CLEAN'}\n")


###############################################################################
#  Configuration
###############################################################################

def parse_replacement(value: Union[str, bytes]) -> bytes:
    """Validate a replacement: exactly one ASCII byte."""
    raw = value.encode("utf-8", "surrogateescape") if isinstance(value, str) else bytes(value)
    if len(raw) != 1:
        raise ConfigurationError(
            f"replacement must be exactly one byte, got {len(raw)} byte(s)"
        )
    if raw[0] >= HIGH_BIT:
        raise ConfigurationError("replacement must be an ASCII byte")
    return raw


def build_config(
    command: str = "search",
    *,
    replacement: Optional[Union[str, bytes]] = None,
    count_mode: Optional[str] = None,
    verbose: bool = False,
    describe: bool = False,
    buffer_size: int = LINE_CAPACITY,
) -> Config:
    """Resolve plain option values into a validated ``Config``."""
    if buffer_size < MIN_BUFFER_SIZE:
        raise ConfigurationError(f"buffer size must be at least {MIN_BUFFER_SIZE} bytes")

    if command == SearchCommand.name:
        resolved: Command = SearchCommand()
    elif command == DeleteCommand.name:
        resolved = DeleteCommand()
    elif command == ReplaceCommand.name:
        if replacement is None:
            raise ConfigurationError("replace requires a replacement character")
        resolved = ReplaceCommand(parse_replacement(replacement))
    elif command == CountCommand.name:
        mode = count_mode or "chars"
        if mode not in COUNT_MODES:
            raise ConfigurationError(
                f"invalid count mode '{mode}' (choose from {', '.join(COUNT_MODES)})"
            )
        resolved = CountCommand(mode)
    else:
        raise ConfigurationError(
            f"unknown command '{command}' (choose from {', '.join(COMMANDS)})"
        )

    return Config(command=resolved, verbose=verbose, describe=describe, buffer_size=buffer_size)


###############################################################################
#  main() - thin CLI for Utf8Filter
###############################################################################

# Global options may appear before or after the subcommand, so both levels
# register them with SUPPRESS and these defaults fill the gaps.
OPTION_DEFAULTS = {
    "verbose": False,
    "describe": False,
    "fail": False,
    "input": None,
    "output": None,
    "buffer_size": LINE_CAPACITY,
    "report_file": None,
    "log_level": "INFO",
    "log_file": None,
    "no_color": False,
}


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports bad options as ``ConfigurationError``."""

    def error(self, message):
        raise ConfigurationError(message)


def _option(args: argparse.Namespace, name: str):
    return getattr(args, name, OPTION_DEFAULTS[name])


def _common_options() -> argparse.ArgumentParser:
    common = _ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
    common.add_argument("-v", "--verbose", action="store_true",
                        help="Label count output and print the search total.")
    common.add_argument("-i", "--input", metavar="FILE",
                        help="Read from FILE instead of standard input.")
    common.add_argument("-o", "--output", metavar="FILE",
                        help="Write to FILE instead of standard output.")
    common.add_argument("--buffer-size", type=int, metavar="N",
                        help=f"Line buffer capacity in bytes (default {LINE_CAPACITY}). "
                             "Longer lines are processed in chunks.")
    common.add_argument("--describe", action="store_true",
                        help="search: list each sequence with its code points and name.")
    common.add_argument("--fail", action="store_true",
                        help="Exit with status code 1 if any UTF-8 sequence was found.")
    common.add_argument("--report-file", metavar="FILE",
                        help="Write a run report to a file.")
    common.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Set the logging level (default INFO).")
    common.add_argument("--log-file", metavar="FILE",
                        help="Also write logs to a file.")
    common.add_argument("--no-color", action="store_true",
                        help="Disable colored log output.")
    return common


def build_arg_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = _ArgumentParser(
        prog="utfhate",
        description="Find, mark, delete, replace or count UTF-8 multi-byte sequences in a byte stream.",
        formatter_class=argparse.RawTextHelpFormatter,
        parents=[common],
        epilog="""
Examples:
  %(prog)s < notes.txt                 mark every line holding UTF-8 sequences
  %(prog)s -v search -i notes.txt      same, plus the total
  %(prog)s delete < in.txt > out.txt   strip all multi-byte sequences
  %(prog)s replace '?' < in.txt        one '?' per sequence
  %(prog)s count both -v < in.txt      labeled character and byte counts

Logs go to standard error. Use --no-color to disable colors; NO_COLOR is respected.
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.add_parser("search", parents=[common],
                        help="Mark each sequence with '^' under the line (default).")
    commands.add_parser("delete", parents=[common],
                        help="Remove every multi-byte sequence.")
    replace = commands.add_parser("replace", parents=[common],
                                  help="Replace each sequence with one ASCII byte.")
    replace.add_argument("char", help="Replacement, exactly one ASCII byte.")
    count = commands.add_parser("count", parents=[common],
                                help="Count sequences: chars, bytes or both (default chars).")
    count.add_argument("mode", nargs="?", choices=COUNT_MODES, default="chars")
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    return build_config(
        args.command or SearchCommand.name,
        replacement=getattr(args, "char", None),
        count_mode=getattr(args, "mode", None),
        verbose=_option(args, "verbose"),
        describe=_option(args, "describe"),
        buffer_size=_option(args, "buffer_size"),
    )


def parse_config(argv: Optional[List[str]] = None) -> Config:
    """Parse command line arguments into a ``Config``."""
    return config_from_args(build_arg_parser().parse_args(argv))


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_arg_parser()
    try:
        args = parser.parse_args(argv)
        config = config_from_args(args)
    except ConfigurationError as e:
        parser.print_usage(sys.stdout)
        SimpleLogger().error("%s: error: %s", parser.prog, e)
        raise SystemExit(2)

    #  Logger setup
    log_levels = {
        "DEBUG": SimpleLogger.DEBUG,
        "INFO": SimpleLogger.INFO,
        "WARNING": SimpleLogger.WARNING,
        "ERROR": SimpleLogger.ERROR,
    }
    log = SimpleLogger(
        level=log_levels[_option(args, "log_level")],
        use_colors=sys.stderr.isatty() and not _option(args, "no_color") and os.environ.get("NO_COLOR") is None,
        log_file=_option(args, "log_file"),
    )

    log.debug("utfhate v%s starting", VERSION)
    log.debug("Command: %s", config.command)
    if config.describe and not isinstance(config.command, SearchCommand):
        log.warning("--describe only applies to search; ignoring it.")

    input_path = _option(args, "input")
    output_path = _option(args, "output")
    try:
        src = open(input_path, "rb") if input_path else sys.stdin.buffer
    except OSError as e:
        log.error("Cannot read input '%s': %s", input_path, e.strerror)
        raise SystemExit(1)
    try:
        dst = open(output_path, "wb") if output_path else sys.stdout.buffer
    except OSError as e:
        log.error("Cannot write output '%s': %s", output_path, e.strerror)
        if input_path:
            src.close()
        raise SystemExit(1)

    utf_filter = Utf8Filter(config, logger=log)
    try:
        stats = utf_filter.run(src, dst)
    finally:
        if input_path:
            src.close()
        if output_path:
            dst.close()

    utf_filter.display_run_report(stats)

    report_file = _option(args, "report_file")
    if report_file:
        try:
            utf_filter.write_report_file(report_file, stats)
            log.info("Report written to %s", report_file)
        except OSError as e:
            log.error("Error writing report to %s: %s", report_file, e)

    exit_code = 0
    if _option(args, "fail") and stats.characters > 0:
        log.warning("Exiting with status 1 due to --fail flag and %d UTF-8 sequence(s).", stats.characters)
        exit_code = 1

    log.debug("Script execution completed")
    log.close()
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
