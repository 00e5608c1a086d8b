# liveness.py
import asyncio
import contextlib
import logging
import math
import platform
import shutil
from abc import ABC, abstractmethod
from typing import List, Optional, Set

logger = logging.getLogger(__name__)


class LivenessSession(ABC):
    """Probing session owned by a single scan run.

    ``probe`` must always resolve, returning False for hosts that do not answer
    within ``timeout_ms``. After ``close`` the session must not be used again.
    """

    def __init__(self):
        self.closed = False

    @abstractmethod
    async def probe(self, address: str, timeout_ms: int) -> bool:
        """Returns True if ``address`` answered within ``timeout_ms``."""

    def close(self) -> None:
        self.closed = True

    def _ensure_open(self) -> None:
        if self.closed:
            raise RuntimeError(f"{type(self).__name__} is closed")


class PingSession(LivenessSession):
    """Liveness probing with the operating system's ``ping`` command.

    Each probe sends a single echo request. Processes still running when the
    session closes are killed.
    """

    # Grace period on top of the ping timeout before the process is killed
    KILL_GRACE_MS = 1000

    def __init__(self, executable: str = "ping", system: Optional[str] = None):
        super().__init__()
        self.executable = executable
        self.system = system or platform.system()
        self._processes: Set[asyncio.subprocess.Process] = set()
        self._missing_reported = False

    def build_command(self, address: str, timeout_ms: int) -> List[str]:
        if self.system == "Windows":
            return [self.executable, "-n", "1", "-w", str(timeout_ms), address]
        if self.system == "Darwin":
            # macOS takes -W in milliseconds
            return [self.executable, "-c", "1", "-W", str(timeout_ms), address]
        return [self.executable, "-c", "1", "-W", str(max(1, math.ceil(timeout_ms / 1000))), address]

    async def probe(self, address: str, timeout_ms: int) -> bool:
        self._ensure_open()
        command = self.build_command(address, timeout_ms)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            if not self._missing_reported:
                logger.error(f"Could not run {self.executable}: {err}")
                self._missing_reported = True
            return False

        self._processes.add(process)
        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), (timeout_ms + self.KILL_GRACE_MS) / 1000
            )
        except asyncio.TimeoutError:
            self._kill(process)
            with contextlib.suppress(Exception):
                await process.wait()
            logger.debug(f"ping {address} timed out")
            return False
        finally:
            self._processes.discard(process)

        alive = self.is_reply(process.returncode, stdout.decode("utf-8", errors="ignore"))
        logger.debug(f"ip {address} is {'alive' if alive else 'dead'}")
        return alive

    @staticmethod
    def is_reply(returncode: Optional[int], output: str) -> bool:
        """A reply needs a zero exit status and an echo line carrying a TTL.

        Windows exits with 0 for "Destination host unreachable", hence the TTL check.
        """
        if returncode != 0:
            return False
        return "ttl=" in output.lower()

    def close(self) -> None:
        if self.closed:
            return
        for process in list(self._processes):
            self._kill(process)
        self._processes.clear()
        super().close()

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()


def ping_available(executable: str = "ping") -> bool:
    return shutil.which(executable) is not None
