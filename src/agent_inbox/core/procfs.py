"""Process inspection through /proc."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from agent_inbox.core.detectors import ProcessSample
from agent_inbox.errors import ProcessQueryError


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    name: str = ""


class ProcessInspector(Protocol):
    def is_alive(self, pid: int) -> bool: ...

    def enumerate_tree(self, pid: int) -> list[ProcessInfo]: ...

    def sample(self, pid: int) -> ProcessSample: ...


@dataclass(frozen=True)
class _StatLine:
    pid: int
    name: str
    state: str
    ppid: int
    tty_nr: int
    utime: int
    stime: int


def _parse_stat(text: str) -> _StatLine:
    # comm may contain spaces and parentheses; it ends at the last ')'.
    head, _, tail = text.rpartition(")")
    pid_str, _, name = head.partition(" (")
    fields = tail.split()
    return _StatLine(
        pid=int(pid_str),
        name=name,
        state=fields[0],
        ppid=int(fields[1]),
        tty_nr=int(fields[4]),
        utime=int(fields[11]),
        stime=int(fields[12]),
    )


class ProcfsInspector:
    """Reads process state, parentage and CPU time from /proc/<pid>/stat."""

    def __init__(self, proc_root: Path = Path("/proc")):
        self.proc_root = proc_root
        self.clock_ticks = os.sysconf("SC_CLK_TCK")

    def _read_stat(self, pid: int) -> _StatLine:
        try:
            text = (self.proc_root / str(pid) / "stat").read_text()
            return _parse_stat(text)
        except (OSError, ValueError, IndexError) as e:
            raise ProcessQueryError(pid, str(e)) from e

    def is_alive(self, pid: int) -> bool:
        try:
            return self._read_stat(pid).state not in ("Z", "X")
        except ProcessQueryError:
            return False

    def _all_stats(self) -> dict[int, _StatLine]:
        stats = {}
        for entry in self.proc_root.iterdir():
            if not entry.name.isdigit():
                continue
            try:
                stat = self._read_stat(int(entry.name))
            except ProcessQueryError:
                continue  # exited between listdir and read
            stats[stat.pid] = stat
        return stats

    def enumerate_tree(self, pid: int) -> list[ProcessInfo]:
        """Return the root and every descendant, expanding ppid links until no new pids appear."""
        root = self._read_stat(pid)
        stats = self._all_stats()

        children: dict[int, list[int]] = {}
        for stat in stats.values():
            children.setdefault(stat.ppid, []).append(stat.pid)

        tree = [ProcessInfo(pid=root.pid, ppid=root.ppid, name=root.name)]
        seen = {root.pid}
        frontier = [root.pid]
        while frontier:
            next_frontier = []
            for parent in frontier:
                for child in children.get(parent, []):
                    if child in seen:
                        continue
                    seen.add(child)
                    stat = stats[child]
                    tree.append(ProcessInfo(pid=child, ppid=parent, name=stat.name))
                    next_frontier.append(child)
            frontier = next_frontier
        return tree

    def sample(self, pid: int) -> ProcessSample:
        stat = self._read_stat(pid)
        return ProcessSample(
            pid=stat.pid,
            ppid=stat.ppid,
            state=stat.state,
            cpu_seconds=(stat.utime + stat.stime) / self.clock_ticks,
            interactive=stat.tty_nr != 0,
        )
