"""
Shell command execution for dump and compress steps.

Dump and compress tools are expected to be silent on success. run()
returns everything the command wrote to stdout and stderr; an empty
string means success.
"""

import logging
import subprocess
from typing import Optional


logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Runs shell command lines synchronously.

    Commands run in the backup root so that the relative backups/ paths
    in the command lines resolve there.
    """

    def __init__(self, cwd: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize command runner.

        Args:
            cwd: Working directory for commands (the backup root)
            timeout: Seconds before a command is killed (None waits forever)
        """
        self.cwd = cwd
        self.timeout = timeout

    def run(self, command: str) -> str:
        """
        Run a command line through the shell.

        Args:
            command: Command line to execute

        Returns:
            Combined stdout/stderr text, or a diagnostic if the command
            exited non-zero without output, timed out or could not start.
            Empty string on success.
        """
        logger.debug(f"Running: {command}")

        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return f"command timed out after {self.timeout} seconds"
        except OSError as e:
            return f"command could not be started: {e}"

        output = (completed.stdout or '').strip()
        if output:
            return output

        if completed.returncode != 0:
            return f"command exited with status {completed.returncode}"

        return ''
