import asyncio
import logging
from functools import partial

import docker

from medtrace.common.errors import PrerequisiteMissing


logger = logging.getLogger(__name__)


class ContainerEngine:
    """Container engine collaborator: compose runs through the engine
    command line, state queries (running, logs, exec) through the
    docker SDK. Nothing is cached, running state is always re-queried.

    Arguments:
        runner {ProcessRunner} -- Executes the engine command line

    Keyword Arguments:
        cli {string} -- Engine command, docker or podman (default: {"docker"})
    """

    def __init__(self, runner, cli="docker"):
        self.runner = runner
        self.cli = cli
        self._docker_client = None

    def compose_cmd(self):
        standalone = f"{self.cli}-compose"
        if self.runner.which(standalone):
            return [standalone]
        return [self.cli, "compose"]

    def has_compose(self):
        cmd = self.compose_cmd()
        if len(cmd) == 1:
            return True
        return self.runner.which(self.cli)

    def connect_docker(self):
        if self._docker_client is None:
            try:
                self._docker_client = docker.from_env()
            except docker.errors.DockerException as e:
                logger.debug(f"Could not connect to docker socket - {e}")
                raise PrerequisiteMissing(
                    f"container engine not reachable: {e}", step="containers"
                )
        return self._docker_client

    async def _sdk(self, func, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _get(self, name):
        client = self.connect_docker()
        try:
            return client.containers.get(name)
        except docker.errors.NotFound:
            return None

    async def compose_up(self, compose_file, project):
        args = self.compose_cmd() + ["-p", project, "-f", compose_file, "up", "-d"]
        return await self.runner.run(args)

    async def compose_down(self, compose_file, project):
        args = self.compose_cmd() + [
            "-p",
            project,
            "-f",
            compose_file,
            "down",
            "--volumes",
            "--remove-orphans",
        ]
        return await self.runner.run(args)

    async def is_running(self, name):
        container = await self._sdk(self._get, name)
        running = container is not None and container.status == "running"
        logger.debug(f"Container {name} running: {running}")
        return running

    async def logs(self, name):
        container = await self._sdk(self._get, name)
        if container is None:
            return ""
        raw = await self._sdk(container.logs, stdout=True, stderr=True)
        return raw.decode("utf-8", errors="replace")

    async def exec_ok(self, name, args):
        container = await self._sdk(self._get, name)
        if container is None or container.status != "running":
            return False
        code, output = await self._sdk(container.exec_run, args)
        logger.debug(f"Exec {args} in {name} - return code {code}")
        return code == 0

    def _remove_by_prefix(self, prefix):
        client = self.connect_docker()
        removed = []
        for container in client.containers.list(all=True, filters={"name": prefix}):
            if container.name.startswith(prefix):
                container.remove(force=True)
                removed.append(container.name)
        return removed

    async def remove_containers(self, prefix):
        return await self._sdk(self._remove_by_prefix, prefix)

    async def copy_into(self, source, container, dest):
        return await self.runner.run([self.cli, "cp", source, f"{container}:{dest}"])
