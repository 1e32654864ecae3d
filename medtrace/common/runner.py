import os
import shutil
import asyncio
import logging


logger = logging.getLogger(__name__)


MISSING_CODE = 127
TIMEOUT_CODE = -1


class Result:
    """Outcome of one external command

    Arguments:
        args {list} -- The command line that was executed
        code {int} -- Process return code
        stdout {string} -- Captured standard output
        stderr {string} -- Captured standard error
    """

    def __init__(self, args, code, stdout="", stderr=""):
        self.args = list(args)
        self.code = code
        self.stdout = stdout
        self.stderr = stderr

    @property
    def ok(self):
        return self.code == 0

    @property
    def output(self):
        return "".join(out for out in (self.stdout, self.stderr) if out)

    def __repr__(self):
        return f"Result(args={self.args!r}, code={self.code})"


class ProcessRunner:
    def __init__(self, env=None):
        self._base_env = dict(env) if env is not None else None

    def _environment(self, env):
        if not env and self._base_env is None:
            return None

        base = self._base_env if self._base_env is not None else os.environ
        environment = dict(base)
        if env:
            environment.update({k: str(v) for k, v in env.items()})
        return environment

    def which(self, name):
        return shutil.which(name) is not None

    async def _kill(self, proc):
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

    async def run(self, args, env=None, cwd=None, timeout=None):
        """Performs the async execution of args in a subprocess

        Arguments:
            args {list} -- The command and its arguments, no shell involved

        Keyword Arguments:
            env {dict} -- Variables overriding the parent environment
            for this call only (default: {None})
            cwd {string} -- Working directory of the process (default: {None})
            timeout {float} -- Seconds before the process is killed (default: {None})

        Returns:
            Result -- Return code, stdout and stderr of the call
        """
        args = [str(arg) for arg in args]
        logger.debug(f"Calling subprocess command: {args}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(env),
                cwd=cwd,
            )
        except OSError as excpt:
            logger.debug(f"Could not call cmd {args} - exception {excpt}")
            return Result(args, MISSING_CODE, "", repr(excpt))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)

        except asyncio.TimeoutError:
            logger.debug(f"Command {args} timed out after {timeout}s")
            await self._kill(proc)
            return Result(args, TIMEOUT_CODE, "", f"timed out after {timeout}s")

        except asyncio.CancelledError:
            logger.debug(f"Command {args} cancelled - killing pid {proc.pid}")
            await self._kill(proc)
            raise

        result = Result(
            args,
            proc.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
        logger.debug(f"Return code {result.code} - command {args[0]}")
        return result
