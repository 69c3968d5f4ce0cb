"""
Command Wrapper - Core execution and capture logic

The child's output goes to the terminal untouched and, in parallel, through
ANSI stripping and secret redaction into the session's log file.
"""

import codecs
import logging
import os
import queue
import signal
import subprocess
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, TextIO

from .config import BridgeConfig
from .redactor import PEM_BEGIN_RE, PEM_END_RE, PLACEHOLDER, Redactor, strip_ansi
from .retention import RetentionPolicy, sweep
from .session import Session, SessionRegistry
from .storage import LogStore, SessionLog, StoragePaths


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
PIPELINE_DRAIN_TIMEOUT = 10.0

FORWARDED_SIGNALS = [signal.SIGINT, signal.SIGTERM]
if hasattr(signal, "SIGHUP"):
    FORWARDED_SIGNALS.append(signal.SIGHUP)

_EOF = object()


class CommandLaunchError(RuntimeError):
    """The wrapped executable could not be started."""

    def __init__(self, command: str, error: OSError, session_id: Optional[str] = None):
        super().__init__(f"Could not start {command!r}: {error.strerror or error}")
        self.command = command
        self.error = error
        self.session_id = session_id

    @property
    def exit_code(self) -> int:
        # Shell conventions: 126 found but not executable, 127 not found
        return 126 if isinstance(self.error, PermissionError) else 127


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: str
    args: List[str]
    exit_code: int
    duration_ms: int
    working_dir: str
    session_id: str
    log_path: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def normalize_exit_code(returncode: int) -> int:
    """Map a signal death (negative returncode) to the shell's 128+N form."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class LogPipeline:
    """
    Consumer side of the capture channel.

    Reader threads put raw ``(stream, bytes)`` chunks on an unbounded queue
    and never wait on this class. A single worker thread decodes, splits into
    lines, sanitizes and writes them to the SessionLog in the order the
    chunks arrived. If the log breaks, chunks are still drained and dropped.
    """

    MAX_PENDING_LINE = 64 * 1024
    MAX_PEM_LINES = 200

    def __init__(self, log: SessionLog, redactor: Redactor):
        self.log = log
        self.redactor = redactor
        self.queue: "queue.Queue" = queue.Queue()
        self._decoders: Dict[str, codecs.IncrementalDecoder] = {}
        self._partial: Dict[str, str] = {}
        self._pem: Dict[str, List[str]] = {}
        self._thread = threading.Thread(target=self._run, name="log-pipeline", daemon=True)

    def start(self):
        self._thread.start()

    def feed(self, stream: str, chunk: bytes):
        self.queue.put((stream, chunk))

    def close(self, timeout: Optional[float] = PIPELINE_DRAIN_TIMEOUT) -> bool:
        """Signal end of input and wait for the backlog. False if it timed out."""
        self.queue.put(_EOF)
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self):
        while True:
            item = self.queue.get()
            if item is _EOF:
                break
            if self.log.degraded:
                continue
            stream, chunk = item
            try:
                self._consume(stream, chunk)
            except Exception as e:
                logger.debug("Log pipeline failed", exc_info=True)
                self.log.fail(e)
        if not self.log.degraded:
            try:
                self._flush()
            except Exception as e:
                logger.debug("Log pipeline failed while flushing", exc_info=True)
                self.log.fail(e)

    def _consume(self, stream: str, chunk: bytes):
        decoder = self._decoders.get(stream)
        if decoder is None:
            decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
            self._decoders[stream] = decoder

        pending = self._partial.get(stream, '') + decoder.decode(chunk)
        lines = pending.split('\n')
        pending = lines.pop()
        for line in lines:
            self._emit(stream, line + '\n')

        # A runaway line with no newline (progress bars) is written as-is
        if len(pending) > self.MAX_PENDING_LINE:
            self._emit(stream, pending)
            pending = ''
        self._partial[stream] = pending

    def _emit(self, stream: str, line: str):
        held = self._pem.get(stream)
        if held is not None:
            held.append(line)
            if PEM_END_RE.search(strip_ansi(line)):
                del self._pem[stream]
                self.log.write(self.redactor.sanitize(''.join(held)))
            elif len(held) >= self.MAX_PEM_LINES:
                del self._pem[stream]
                self.log.write(PLACEHOLDER + '\n')
            return

        clean = strip_ansi(line)
        if PEM_BEGIN_RE.search(clean) and not PEM_END_RE.search(clean):
            self._pem[stream] = [line]
            return
        self.log.write(self.redactor.redact(clean))

    def _flush(self):
        for stream, decoder in self._decoders.items():
            tail = self._partial.get(stream, '') + decoder.decode(b'', final=True)
            self._partial[stream] = ''
            if tail:
                self._emit(stream, tail)
        for stream in list(self._pem):
            # Key block never terminated: keep none of it
            del self._pem[stream]
            self.log.write(PLACEHOLDER + '\n')


class CommandRunner:
    """
    Runs one command as a recorded session.

    Usage:
        runner = CommandRunner(BridgeConfig.load())
        result = runner.run("npm", ["test"])
        sys.exit(result.exit_code)

    Bookkeeping (sweep, ledger, active set, log file) is best-effort and
    never stops the command from running. Only a failure to start the
    executable is raised, as CommandLaunchError, after the session has been
    finalized.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        registry: Optional[SessionRegistry] = None,
        store: Optional[LogStore] = None,
        policy: Optional[RetentionPolicy] = None,
        redactor: Optional[Redactor] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        notices: Optional[TextIO] = None,
        quiet: bool = False,
    ):
        self.config = config or BridgeConfig.load()
        paths = StoragePaths(self.config.log_dir)
        self.redactor = redactor or Redactor()
        self.registry = registry or SessionRegistry(paths, self.redactor)
        self.store = store or LogStore(paths)
        self.policy = policy or RetentionPolicy.from_config(self.config)
        self._stdout = stdout
        self._stderr = stderr
        self._notices = notices
        self.quiet = quiet

    @property
    def notices(self) -> TextIO:
        return self._notices if self._notices is not None else sys.stderr

    def _notice(self, message: str):
        if self.quiet:
            return
        try:
            print(message, file=self.notices, flush=True)
        except (OSError, ValueError):
            pass

    def _prepare(self):
        """Create the storage root and run the retention sweep."""
        try:
            self.store.ensure()
        except OSError as e:
            logger.warning("Could not create log directory %s: %s", self.store.paths.root, e)
            return
        result = sweep(self.policy, self.registry, self.store)
        if result.orphaned or result.deleted:
            logger.debug("Sweep: %d orphaned, %d deleted", len(result.orphaned), len(result.deleted))

    def _finalize(self, session: Session):
        self.registry.mark_completed(session.id, archive=self.policy.archive_on_completion)

    def run(
        self,
        command: str,
        args: Optional[List[str]] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        """
        Execute a command and record it.

        Args:
            command: Executable to run (no shell is involved)
            args: Arguments passed to the executable
            cwd: Working directory (defaults to the current directory)

        Returns:
            CommandResult carrying the child's exit code

        Raises:
            CommandLaunchError: if the executable cannot be started
        """
        args = list(args or [])
        working_dir = str(Path(cwd).resolve()) if cwd else os.getcwd()
        start_time = time.time()

        self._prepare()

        session = Session(
            id=self.registry.new_session_id(),
            command=command,
            args=args,
            cwd=working_dir,
        )
        log_path = self.store.paths.session_log(session.id)

        # Active before the file exists, so a concurrent sweep never sees
        # this log as finished.
        self.registry.mark_active(session.id, working_dir)
        log = SessionLog(log_path, warn_stream=self.notices)
        log.write_header(session.id, working_dir, self.redactor.sanitize(session.full_command))
        self.registry.register(session.id, command, args, working_dir)

        self._notice(f"[Session: {session.id}]")

        try:
            child = subprocess.Popen(
                [command] + args,
                cwd=working_dir,
                stdin=None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                shell=False,
            )
        except OSError as e:
            log.write_error_footer(e.strerror or str(e))
            log.close()
            session.finish(None)
            self._finalize(session)
            raise CommandLaunchError(command, e, session.id) from e

        pipeline = LogPipeline(log, self.redactor)
        pipeline.start()

        readers = [
            threading.Thread(
                target=self._pump,
                args=(child.stdout, self._terminal('stdout'), 'stdout', pipeline),
                name="pump-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._pump,
                args=(child.stderr, self._terminal('stderr'), 'stderr', pipeline),
                name="pump-stderr",
                daemon=True,
            ),
        ]

        with self._forward_signals(child):
            for reader in readers:
                reader.start()
            returncode = child.wait()
            for reader in readers:
                reader.join()

        exit_code = normalize_exit_code(returncode)

        if pipeline.close():
            log.write_footer(exit_code)
        else:
            logger.warning("Log pipeline for session %s did not drain; footer skipped", session.id)
        log.close()

        session.finish(exit_code)
        self._finalize(session)

        if exit_code == 0:
            self._notice("\n✅ Command completed successfully")
        else:
            self._notice(f"\n⚠️  Command exited with code {exit_code}")

        return CommandResult(
            command=command,
            args=args,
            exit_code=exit_code,
            duration_ms=int((time.time() - start_time) * 1000),
            working_dir=working_dir,
            session_id=session.id,
            log_path=str(log_path),
        )

    def _terminal(self, stream: str) -> BinaryIO:
        if stream == 'stdout':
            return self._stdout if self._stdout is not None else sys.stdout.buffer
        return self._stderr if self._stderr is not None else sys.stderr.buffer

    @staticmethod
    def _pump(pipe: BinaryIO, terminal: BinaryIO, stream: str, pipeline: LogPipeline):
        """Copy one child pipe to the terminal verbatim and into the log pipeline."""
        fd = pipe.fileno()
        terminal_ok = True
        try:
            while True:
                try:
                    chunk = os.read(fd, CHUNK_SIZE)
                except OSError:
                    break
                if not chunk:
                    break
                if terminal_ok:
                    try:
                        terminal.write(chunk)
                        terminal.flush()
                    except (OSError, ValueError) as e:
                        logger.debug("Terminal %s closed: %s", stream, e)
                        terminal_ok = False
                pipeline.feed(stream, chunk)
        finally:
            pipe.close()

    @contextmanager
    def _forward_signals(self, child: subprocess.Popen):
        """Pass interrupt/termination signals on to the child while it runs."""
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def forward(signum, frame):
            try:
                child.send_signal(signum)
            except OSError:
                pass

        previous = {}
        for sig in FORWARDED_SIGNALS:
            try:
                previous[sig] = signal.signal(sig, forward)
            except (OSError, ValueError):
                continue
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
