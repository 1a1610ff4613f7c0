# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Synchronous execution of external commands, the single boundary through
which every container operation reaches the host.
"""
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit status and output of one command invocation."""

    command: str
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join([self.command] + self.args)


class CommandExecutor:
    """
    Runs one external command at a time and reports its exit status.
    """
    def __init__(self, verbose: bool = False, dry_run: bool = False):
        """
        Initializes the executor.

        Args:
            verbose (bool): Stream command output to the console instead of capturing it.
            dry_run (bool): Log commands without running them; every command succeeds.
        """
        self.verbose = verbose
        self.dry_run = dry_run

    def run(self,
            command: str,
            args: Sequence[str],
            capture_output: bool = False) -> CommandResult:
        """
        Runs a command and waits for it to exit.

        Args:
            command (str): Executable to run.
            args (Sequence[str]): Arguments, passed without shell interpretation.
            capture_output (bool): Always capture stdout/stderr, even in verbose mode.

        Returns:
            CommandResult: The exit status and any captured output.
        """
        args = [str(a) for a in args]
        command_line = " ".join([command] + args)

        if self.dry_run:
            logger.info("DRY RUN: would execute: %s", command_line)
            return CommandResult(command, args, 0)

        logger.debug("Executing: %s", command_line)

        capture = capture_output or not self.verbose
        try:
            completed = subprocess.run(
                [command] + args,
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.PIPE if capture else None,
                text=True,
                # Avoid shell=True for security reasons (CWE-78)
                shell=False,
                check=False,
            )
        except FileNotFoundError:
            logger.debug("Executable not found: %s", command)
            return CommandResult(command, args, 127, stderr=f"{command}: command not found")
        except OSError as e:
            logger.debug("Failed to execute %s: %s", command_line, e)
            return CommandResult(command, args, 126, stderr=str(e))

        result = CommandResult(
            command,
            args,
            completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if not result.ok:
            logger.debug("Command exited with status %d: %s", result.returncode, command_line)
        return result
