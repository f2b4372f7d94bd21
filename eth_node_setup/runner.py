"""
Handles every side effect performed against the host: running commands,
writing files and creating directories. A dry-run runner records what
would happen without touching the system.
"""
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """Raised when a provisioning step cannot complete"""


class CommandError(ProvisioningError):
    """A command exited with a non-zero status"""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command '{command}' failed with exit code {returncode}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)


@dataclass
class ActionRecord:
    """A single action performed (or planned) by the runner"""
    kind: str  # 'run', 'write', 'remove', 'append', 'mkdir'
    target: str
    detail: Optional[str] = None


@dataclass
class CommandRunner:
    """Executes commands and file operations, or records them in dry-run mode"""
    dry_run: bool = False
    history: List[ActionRecord] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)

    def run(self, command: List[str], check: bool = True, input: Optional[str] = None,
            env: Optional[Dict[str, str]] = None, timeout: Optional[int] = None,
            redact: Sequence[str] = ()) -> subprocess.CompletedProcess:
        """
        Run a command given as an argument list.

        Args:
            command: Program and arguments, never passed through a shell
            check: Raise CommandError on a non-zero exit status
            input: Text sent to the command's stdin
            env: Extra environment variables merged over os.environ
            timeout: Seconds before the command is killed
            redact: Secret values masked in logs and history

        Returns:
            The completed process (an empty successful one in dry-run mode)
        """
        display = shlex.join(["********" if arg in redact else arg for arg in command])
        self.history.append(ActionRecord('run', display))

        if self.dry_run:
            logger.info(f"[dry-run] {display}")
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        logger.info(f"Running: {display}")
        child_env = None
        if env:
            child_env = os.environ.copy()
            child_env.update(env)

        try:
            result = subprocess.run(command, input=input, env=child_env, capture_output=True,
                                    text=True, timeout=timeout)
        except FileNotFoundError as e:
            raise CommandError(display, 127, str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(display, -1, f"timed out after {timeout}s") from e

        if result.stdout.strip():
            logger.debug(result.stdout.strip())
        if check and result.returncode != 0:
            raise CommandError(display, result.returncode, result.stderr)
        return result

    def write_file(self, path, content: str, mode: int = 0o644, owner: Optional[str] = None):
        """Write a file, replacing any previous content"""
        path = Path(path)
        self.history.append(ActionRecord('write', str(path), f"mode={oct(mode)}"))
        self.files[str(path)] = content

        if self.dry_run:
            logger.info(f"[dry-run] write {path} ({len(content)} bytes, mode {oct(mode)})")
            return

        logger.info(f"Writing {path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, 'w') as f:
            f.write(content)
        os.chmod(path, mode)
        if owner:
            self.run(['chown', f"{owner}:{owner}", str(path)])

    def remove_file(self, path):
        """Delete a file if it exists"""
        path = Path(path)
        self.history.append(ActionRecord('remove', str(path)))
        self.files.pop(str(path), None)

        if self.dry_run:
            logger.info(f"[dry-run] remove {path}")
            return

        logger.info(f"Removing {path}")
        path.unlink(missing_ok=True)

    def ensure_line(self, path, line: str):
        """Append a line to a file unless an identical line is already present"""
        path = Path(path)
        self.history.append(ActionRecord('append', str(path), line))

        if self.dry_run:
            logger.info(f"[dry-run] ensure line in {path}: {line}")
            return

        text = path.read_text() if path.exists() else ""
        if line.strip() in (entry.strip() for entry in text.splitlines()):
            logger.debug(f"{path} already contains: {line}")
            return

        logger.info(f"Appending to {path}: {line}")
        with open(path, 'a') as f:
            if text and not text.endswith('\n'):
                f.write('\n')
            f.write(line + '\n')

    def make_dirs(self, path, owner: Optional[str] = None, mode: int = 0o755):
        """Create a directory tree and optionally hand it to a user"""
        path = Path(path)
        self.history.append(ActionRecord('mkdir', str(path), owner))

        if self.dry_run:
            logger.info(f"[dry-run] mkdir -p {path}" + (f" (owner {owner})" if owner else ""))
            return

        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, mode)
        if owner:
            self.run(['chown', '-R', f"{owner}:{owner}", str(path)])

    def commands(self) -> List[str]:
        """Return the commands run so far, as display strings"""
        return [record.target for record in self.history if record.kind == 'run']
