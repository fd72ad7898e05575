from typing import Optional, Dict, List
from dataclasses import dataclass
import asyncio
import os
import shutil
from pathlib import Path

from reprobuild.common.config.constants import LOG_EXCERPT_CHARS
from reprobuild.common.config.logging_config import get_logger
from reprobuild.common.utils.time_utils import Timer


logger = get_logger(__name__)

COMMAND_NOT_FOUND_EXIT_CODE = 127


@dataclass
class CommandResult:
    argv: List[str]
    exit_code: int
    output_tail: str
    log_path: Path
    duration_seconds: float

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    def __init__(self, excerpt_chars: int = LOG_EXCERPT_CHARS):
        self._excerpt_chars = excerpt_chars

    def resolve(self, command: str, env: Dict[str, str]) -> Optional[str]:
        if os.path.isabs(command):
            return command if os.access(command, os.X_OK) else None
        return shutil.which(command, path=env.get("PATH", ""))

    async def run(
        self,
        argv: List[str],
        cwd: Path,
        env: Dict[str, str],
        log_path: Path,
    ) -> CommandResult:
        logger.debug(f"Running command: {' '.join(argv)} (cwd={cwd})")
        log_path.parent.mkdir(parents=True, exist_ok=True)
        timer = Timer().start()

        executable = self.resolve(argv[0], env)
        if executable is None:
            message = f"command not found: {argv[0]}\n"
            with open(log_path, "wb") as log_file:
                log_file.write(message.encode("utf-8"))
            return CommandResult(
                argv=list(argv),
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
                output_tail=message,
                log_path=log_path,
                duration_seconds=timer.stop(),
            )

        process = await asyncio.create_subprocess_exec(
            executable,
            *argv[1:],
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        tail = bytearray()

        with open(log_path, "wb") as log_file:
            while True:
                chunk = await process.stdout.read(65536)
                if not chunk:
                    break
                log_file.write(chunk)
                log_file.flush()
                tail.extend(chunk)
                if len(tail) > self._excerpt_chars:
                    del tail[: len(tail) - self._excerpt_chars]

        exit_code = await process.wait()

        return CommandResult(
            argv=list(argv),
            exit_code=exit_code,
            output_tail=tail.decode("utf-8", errors="replace"),
            log_path=log_path,
            duration_seconds=timer.stop(),
        )
