"""hosts-writer - queued, debounced edits of a hosts file

Callers queue additions and removals on a ``Hosts`` engine. After a quiet
period the engine stats the hosts file, re-reads it only if it changed since
the last cycle, merges the queue into the text and writes the result back.

Merge rules:

    - Empty lines and ``#`` comments pass through untouched.
    - Whitespace between tokens of surviving records is preserved.
    - Per line, global host removals apply first, then additions for the
      line's IP, then removals for the line's IP.
    - A record left without hostnames is dropped.
    - IPs queued for addition but missing from the file are inserted after
      the last record line, ahead of any trailing comment block.

Example:

    hosts = Hosts(hosts_file="/etc/hosts", debounce_time=0.2)
    hosts.add("10.0.0.5", ["app.test", "api.test"])
    hosts.remove("10.0.0.9", "*")
    hosts.post_write().result(timeout=5)
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union

from hosts_writer.config import HostsConfig, build_config
from hosts_writer.errors import InvalidArgument, IOFailure
from hosts_writer.storage import HostsStorage, LocalHostsStorage

logger = logging.getLogger(__name__)

LINE_SPLIT_RE = re.compile(r"\r?\n")
WHITESPACE_RE = re.compile(r"\s+")

WILDCARD_TOKEN = "*"

# =============================================================================
# Mutation Queue
# =============================================================================


class Wildcard(Enum):
    """Removal marker meaning every hostname of an IP."""

    ALL = WILDCARD_TOKEN


WILDCARD = Wildcard.ALL

HostArg = Union[str, Sequence[str]]


def _as_host_list(method: str, host: Any) -> List[str]:
    if isinstance(host, str):
        return [host]
    if isinstance(host, (list, tuple)) and all(isinstance(h, str) for h in host):
        return list(host)
    raise InvalidArgument(
        f"hosts.{method}(ip, host) expects `host` to be a string or list of strings, "
        f"not {type(host).__name__}: {host!r}"
    )


class MutationQueue:
    """Pending edits, keyed by IP, waiting for the next merge pass."""

    def __init__(self) -> None:
        self.additions: Dict[str, List[str]] = {}
        self.removals: Dict[str, Union[List[str], Wildcard]] = {}
        self.host_removals: Dict[str, None] = {}

    def add(self, ip: str, host: HostArg) -> None:
        hosts = _as_host_list("add", host)
        self.additions.setdefault(ip, []).extend(hosts)

    def remove(self, ip: str, host: Union[HostArg, Wildcard]) -> bool:
        """Queue a removal; returns False when a wildcard already covers ``ip``."""
        current = self.removals.get(ip)
        if current is WILDCARD:
            return False

        if host is WILDCARD or host == WILDCARD_TOKEN:
            self.removals[ip] = WILDCARD
            return True

        hosts = _as_host_list("remove", host)
        if current is None:
            self.removals[ip] = hosts
        else:
            current.extend(hosts)
        return True

    def remove_host(self, hostname: str) -> None:
        if not isinstance(hostname, str):
            raise InvalidArgument(
                f"hosts.remove_host(host) expects a string, not {type(hostname).__name__}"
            )
        self.host_removals[hostname] = None

    def clear(self) -> None:
        self.additions = {}
        self.removals = {}
        self.host_removals = {}

    def __bool__(self) -> bool:
        return bool(self.additions or self.removals or self.host_removals)


# =============================================================================
# Merge Engine
# =============================================================================


@dataclass
class ParsedLine:
    """One line of a hosts file.

    Passthrough lines (blank or comment) carry ``raw``; record lines carry the
    IP, its hostnames and the whitespace runs found between the tokens.
    """

    raw: Optional[str] = None
    ip: str = ""
    hostnames: List[str] = field(default_factory=list)
    whitespace: List[str] = field(default_factory=list)

    @property
    def is_record(self) -> bool:
        return self.raw is None

    def render(self) -> Optional[str]:
        """Serialize the line, or None when a record has no hostnames left."""
        if not self.is_record:
            return self.raw
        if not self.hostnames:
            return None

        ws = self.whitespace
        parts = [self.ip, ws[0] if ws else " "]
        last = len(self.hostnames) - 1
        for i, hostname in enumerate(self.hostnames):
            parts.append(hostname)
            if i < last:
                parts.append(ws[i + 1] if i + 1 < len(ws) else " ")
        return "".join(parts)


def parse_line(line: str) -> ParsedLine:
    if line == "" or line.startswith("#"):
        return ParsedLine(raw=line)

    tokens = WHITESPACE_RE.split(line)
    return ParsedLine(
        ip=tokens[0],
        hostnames=tokens[1:],
        whitespace=WHITESPACE_RE.findall(line),
    )


def _insertion_index(lines: List[Optional[str]]) -> int:
    """Index of the last record line, before trailing blanks and comments.

    A document starting with an empty line has that line discarded and gets
    new records at the very start, so the returned index is -1.
    """
    if lines[0] == "":
        lines.pop(0)
        return -1

    index = len(lines) - 1
    while index > 0 and (not lines[index] or lines[index].startswith("#")):
        index -= 1
    return index


def reconcile(raw_text: str, queue: MutationQueue, eol: str = "\n") -> str:
    """Apply ``queue`` to ``raw_text`` and return the new document.

    The queue is consumed: it is empty when this returns, whether or not every
    entry matched a line.
    """
    host_removals = queue.host_removals
    lines: List[Optional[str]] = []

    for line in LINE_SPLIT_RE.split(raw_text):
        parsed = parse_line(line)
        if not parsed.is_record:
            lines.append(parsed.raw)
            continue

        hostnames = [h for h in parsed.hostnames if h not in host_removals]

        added = queue.additions.pop(parsed.ip, None)
        if added is not None:
            existing = hostnames
            hostnames = existing + [h for h in added if h not in existing]

        removal = queue.removals.get(parsed.ip)
        if removal is WILDCARD:
            hostnames = []
        elif removal:
            while removal:
                host = removal.pop()
                hostnames = [h for h in hostnames if h != host]

        parsed.hostnames = hostnames
        lines.append(parsed.render())

    pending = [(ip, hosts) for ip, hosts in queue.additions.items() if hosts]
    if pending:
        index = _insertion_index(lines)
        for ip, hosts in pending:
            index += 1
            lines.insert(index, f"{ip} {' '.join(hosts)}")

    queue.clear()

    return eol.join(line for line in lines if line is not None)


# =============================================================================
# Freshness Cache
# =============================================================================


@dataclass
class FileSnapshot:
    """Last text seen for the hosts file and the change time it was read at."""

    raw_text: str = ""
    change_time: Optional[int] = None

    def should_reread(self, change_time: int) -> bool:
        return self.change_time is None or self.change_time != change_time

    def refresh(self, raw_text: str, change_time: int) -> None:
        self.raw_text = raw_text
        self.change_time = change_time


# =============================================================================
# Notification Channel
# =============================================================================


@dataclass(frozen=True)
class WriteStarted:
    pass


@dataclass(frozen=True)
class WriteSucceeded:
    pass


@dataclass(frozen=True)
class WriteFailed:
    error: BaseException


WriteEvent = Union[WriteStarted, WriteSucceeded, WriteFailed]
Listener = Callable[[WriteEvent], None]


class Notifier:
    """Delivers write lifecycle events to registered listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._once: List[Tuple[Type[Any], Listener]] = []

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` for every event; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def once(self, event_type: Type[Any], callback: Listener) -> None:
        with self._lock:
            self._once.append((event_type, callback))

    def emit(self, event: WriteEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
            fired = [cb for event_type, cb in self._once if isinstance(event, event_type)]
            self._once = [(t, cb) for t, cb in self._once if not isinstance(event, t)]

        for callback in listeners + fired:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Listener for {type(event).__name__} raised")


# =============================================================================
# Write Scheduler
# =============================================================================


class SchedulerState(Enum):
    IDLE = "idle"
    DEBOUNCE_PENDING = "debounce_pending"
    WRITING = "writing"
    WRITING_REARM = "writing_rearm"


class WriteScheduler:
    """Trailing-edge debounce in front of a single-flight write cycle.

    ``run_cycle`` is invoked from the timer thread. It must call ``begin()``
    before touching the file and ``finish()`` once the cycle is over.
    """

    def __init__(
        self,
        run_cycle: Callable[[], Any],
        debounce_time: float,
        *,
        enabled: bool = True,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self._run_cycle = run_cycle
        self.debounce_time = debounce_time
        self.enabled = enabled
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Any = None
        self.state = SchedulerState.IDLE

    @property
    def writing(self) -> bool:
        return self.state in (SchedulerState.WRITING, SchedulerState.WRITING_REARM)

    def request(self) -> None:
        """Note that the queue changed; arms the debounce timer or a rearm."""
        if not self.enabled:
            return

        with self._lock:
            if self.writing:
                self.state = SchedulerState.WRITING_REARM
                return
            self._arm()

    def begin(self) -> bool:
        """Enter WRITING. Returns False, recording a rearm, if a cycle is in flight."""
        with self._lock:
            if self.writing:
                self.state = SchedulerState.WRITING_REARM
                return False
            self._cancel_timer()
            self.state = SchedulerState.WRITING
            return True

    def finish(self) -> None:
        with self._lock:
            rearm = self.state is SchedulerState.WRITING_REARM
            self.state = SchedulerState.IDLE
            if rearm and self.enabled:
                logger.debug("Changes queued during write; rescheduling")
                self._arm()

    def cancel(self) -> None:
        with self._lock:
            self._cancel_timer()
            if self.state is SchedulerState.DEBOUNCE_PENDING:
                self.state = SchedulerState.IDLE

    def _arm(self) -> None:
        self._cancel_timer()
        timer = self._timer_factory(self.debounce_time, self._fire)
        timer.daemon = True
        self._timer = timer
        self.state = SchedulerState.DEBOUNCE_PENDING
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        try:
            self._run_cycle()
        except IOFailure as e:
            logger.error(f"Scheduled hosts write failed: {e}", exc_info=True)


# =============================================================================
# Engine
# =============================================================================


class Hosts:
    """Queue of hosts-file edits, reconciled against the file on a debounce.

    Keyword options are validated by ``HostsConfig``; an unknown option raises
    InvalidArgument. ``storage`` replaces the local file primitives and
    ``timer_factory`` the ``threading.Timer`` used for the debounce.
    """

    def __init__(
        self,
        *,
        storage: Optional[HostsStorage] = None,
        timer_factory: Callable[..., Any] = threading.Timer,
        **options: Any,
    ):
        self.config: HostsConfig = build_config(options)
        self.storage = storage or LocalHostsStorage(
            self.config.hosts_file, atomic=self.config.atomic_writes
        )
        self.queue = MutationQueue()
        self.snapshot = FileSnapshot()
        self.notifier = Notifier()
        self._lock = threading.RLock()
        self.scheduler = WriteScheduler(
            self._update,
            self.config.debounce_time,
            enabled=not self.config.no_writes,
            timer_factory=timer_factory,
        )

    @property
    def write_in_progress(self) -> bool:
        return self.scheduler.writing

    # -------------------------------------------------------------------------
    # Queue operations
    # -------------------------------------------------------------------------

    def add(self, ip: str, host: HostArg) -> None:
        with self._lock:
            self.queue.add(ip, host)
        logger.debug(f"Queued add {ip} -> {host}")
        self.scheduler.request()

    def remove(self, ip: str, host: Union[HostArg, Wildcard]) -> None:
        with self._lock:
            queued = self.queue.remove(ip, host)
        if not queued:
            logger.debug(f"Ignoring removal for {ip}: all hostnames already queued for removal")
            return
        logger.debug(f"Queued remove {ip} -> {host}")
        self.scheduler.request()

    def remove_host(self, hostname: str) -> None:
        with self._lock:
            self.queue.remove_host(hostname)
        logger.debug(f"Queued removal of {hostname} from every IP")
        self.scheduler.request()

    def clear_queue(self) -> None:
        with self._lock:
            self.queue.clear()

    def modify(self, raw_text: str) -> str:
        """Merge the queue into ``raw_text`` and return the new document."""
        with self._lock:
            return reconcile(raw_text, self.queue, self.config.eol)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        return self.notifier.subscribe(callback)

    def post_write(self, callback: Optional[Callable[[], Any]] = None) -> Optional[Future]:
        """Wait for the next successful write.

        With a callback, it is called once on the next WriteSucceeded.
        Without, returns a Future resolved by the next WriteSucceeded or failed
        by the next WriteFailed; ``asyncio.wrap_future`` makes it awaitable.
        """
        if callback is not None:
            self.notifier.once(WriteSucceeded, lambda event: callback())
            return None

        future: Future = Future()

        def _on_event(event: WriteEvent) -> None:
            if isinstance(event, WriteStarted) or future.done():
                return
            unsubscribe()
            if isinstance(event, WriteFailed):
                future.set_exception(event.error)
            else:
                future.set_result(None)

        unsubscribe = self.notifier.subscribe(_on_event)
        return future

    # -------------------------------------------------------------------------
    # Reconciliation cycle
    # -------------------------------------------------------------------------

    def flush(self) -> bool:
        """Run a reconciliation cycle now, on the calling thread.

        Returns False without writing when another cycle is in flight; that
        cycle is then followed by another one. Raises IOFailure on I/O errors.
        """
        return self._update()

    def close(self) -> None:
        """Cancel a pending debounce timer; queued edits stay queued."""
        self.scheduler.cancel()

    def _update(self) -> bool:
        if not self.scheduler.begin():
            logger.debug("Write already in progress; deferring cycle")
            return False

        self.notifier.emit(WriteStarted())
        failure: Optional[IOFailure] = None
        try:
            self._reconcile_and_write()
        except OSError as e:
            failure = IOFailure(f"Failed to update {self.storage.name}: {e}")
            failure.__cause__ = e
        finally:
            self.scheduler.finish()

        if failure is not None:
            self.notifier.emit(WriteFailed(error=failure))
            raise failure

        logger.info(f"Updated {self.storage.name}")
        self.notifier.emit(WriteSucceeded())
        return True

    def _reconcile_and_write(self) -> None:
        change_time = self.storage.stat()
        if self.snapshot.should_reread(change_time):
            logger.debug(f"{self.storage.name} changed since last read; reading")
            raw_text = self.storage.read()
            with self._lock:
                self.snapshot.refresh(raw_text, change_time)

        with self._lock:
            contents = reconcile(self.snapshot.raw_text, self.queue, self.config.eol)

        self.storage.write(contents)

        with self._lock:
            self.snapshot.raw_text = contents
