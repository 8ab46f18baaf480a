"""
Relay a subprocess's stdout/stderr to the console with a per-folder label
"""
import codecs
import subprocess
import sys
import threading
from typing import Iterable, Optional, TextIO

# a new line starts after either; progress displays rewrite lines with "\r"
_LINE_BREAKS = ("\r", "\n")


class StreamRelay:
    """
    Drains stdout and stderr of a process concurrently, one byte at a time,
    writing `prefix` before the first character of every line.

    Both pipes are always drained in parallel: a tool that fills one pipe while
    we wait on the other would otherwise block forever.
    """

    def __init__(self, proc: subprocess.Popen, prefix: str,
                 sink: Optional[TextIO] = None):
        self.proc = proc
        self.prefix = prefix
        self.sink = sink if sink is not None else sys.stdout
        self._write_lock = threading.Lock()
        self._threads: list[threading.Thread] = []

    def start(self):
        for name, stream in (("stdout", self.proc.stdout), ("stderr", self.proc.stderr)):
            if stream is None:
                continue
            t = threading.Thread(target=self._pump, args=(stream,),
                                 name=f"relay-{name}", daemon=True)
            t.start()
            self._threads.append(t)

    def join(self):
        for t in self._threads:
            t.join()
        self._threads = []

    def _pump(self, stream):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        at_line_start = True
        try:
            while True:
                b = stream.read(1)
                for c in decoder.decode(b, final=not b):
                    self._emit(c, at_line_start)
                    at_line_start = c in _LINE_BREAKS
                if not b:
                    break
        finally:
            stream.close()

    def _emit(self, c: str, at_line_start: bool):
        with self._write_lock:
            if at_line_start:
                self.sink.write(self.prefix)
            self.sink.write(c)
            if c in _LINE_BREAKS:
                self.sink.flush()


def relay_process(proc: subprocess.Popen, prefix: str,
                  stdin_lines: Optional[Iterable[str]] = None,
                  sink: Optional[TextIO] = None) -> int:
    """
    Relay proc's output, feed it stdin_lines (one per line) if given, and
    return its exit status once both output streams have reached EOF.
    """
    relay = StreamRelay(proc, prefix, sink)
    relay.start()
    try:
        if proc.stdin is not None:
            _feed_stdin(proc.stdin, stdin_lines or ())
    finally:
        relay.join()
    return proc.wait()


def _feed_stdin(stdin, lines: Iterable[str]):
    try:
        for line in lines:
            stdin.write(line.encode("utf-8", errors="surrogateescape") + b"\n")
    except BrokenPipeError:
        pass  # the tool exited early; its exit status says why
    finally:
        try:
            stdin.close()
        except BrokenPipeError:
            pass
