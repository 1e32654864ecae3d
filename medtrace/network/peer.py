import logging


logger = logging.getLogger(__name__)


class AdminCLI:
    """Ledger admin CLI collaborator: every `peer` call runs inside the
    tools container, the acting org context is passed per call as
    environment overrides of the exec, never exported.

    Arguments:
        runner {ProcessRunner} -- Executes the container engine command line
        config {NetworkConfig} -- Network the CLI container belongs to
    """

    def __init__(self, runner, config):
        self.runner = runner
        self.config = config

    @property
    def container(self):
        return self.config.cli_container

    def orderer_args(self):
        orderer = self.config.orderer
        return [
            "-o",
            orderer.address,
            "--ordererTLSHostnameOverride",
            orderer.host,
            "--tls",
            "--cafile",
            orderer.tls_ca(),
        ]

    def exec_args(self, cmd, env=None):
        args = [self.config.container_cli, "exec"]
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.append(self.container)
        args.extend(cmd)
        return args

    async def run(self, cmd, org=None):
        """Runs cmd in the CLI container, as org admin when org is given

        Arguments:
            cmd {list} -- Command inside the container, e.g. ["peer", "channel", "list"]

        Keyword Arguments:
            org {Organization} -- Acting organization (default: {None})

        Returns:
            Result -- The exec outcome
        """
        env = org.admin_env() if org else None
        result = await self.runner.run(self.exec_args(cmd, env))

        if self.config.verbose or not result.ok:
            who = org.name if org else "cli"
            logger.info(f"Output from CLI ({who}) {cmd[:3]}: {result.output.strip()}")

        return result

    async def peer(self, args, org=None):
        return await self.run(["peer"] + list(args), org=org)

    async def remove_path(self, path):
        return await self.run(["rm", "-rf", path])
