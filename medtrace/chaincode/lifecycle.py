import os
import logging

from medtrace.common.errors import PrerequisiteMissing, ChaincodeLifecycleStepFailed
from medtrace.common.runner import ProcessRunner
from medtrace.common.scheduler import fan_out
from medtrace.chaincode.parsing import parse_package_id
from medtrace.design.fabric import CLI_PEER_DIR
from medtrace.network.containers import ContainerEngine
from medtrace.network.peer import AdminCLI


logger = logging.getLogger(__name__)


class DeployReport:
    def __init__(self, definition, channel):
        self.definition = definition
        self.channel = channel
        self.package_id = None
        self.installed = []
        self.approved = []
        self.committed = False
        self.initialized = False

    def info(self):
        return {
            "name": self.definition.name,
            "version": self.definition.version,
            "sequence": self.definition.sequence,
            "channel": self.channel,
            "package_id": self.package_id,
            "installed": list(self.installed),
            "approved": list(self.approved),
            "committed": self.committed,
            "initialized": self.initialized,
        }


class ChaincodeLifecycle:
    """package -> install (every peer) -> approve (every org) -> commit
    -> optional init. The package id is discovered after the first
    install and threaded through the later steps of the same run.
    The first failing step aborts the remaining ones.

    Arguments:
        config {NetworkConfig} -- Network hosting the channel

    Keyword Arguments:
        runner {ProcessRunner} -- Runs the container engine command line
        engine {ContainerEngine} -- Container engine collaborator
    """

    def __init__(self, config, runner=None, engine=None):
        self.config = config
        self.runner = runner or ProcessRunner()
        self.engine = engine or ContainerEngine(self.runner, cli=config.container_cli)
        self.cli = AdminCLI(self.runner, config)

    def _check(self, result, step, message):
        if not result.ok:
            raise ChaincodeLifecycleStepFailed(message, step=step, output=result.output)
        return result

    async def check_prereqs(self, definition):
        vendor = os.path.join(definition.source_path, "vendor")
        if not os.path.isdir(vendor):
            raise PrerequisiteMissing(
                f"chaincode source directory '{definition.source_path}' is not "
                "vendored (missing 'vendor' sub-directory), run "
                "'go mod tidy && go mod vendor' first",
                step="prerequisites",
            )
        if not await self.engine.is_running(self.config.cli_container):
            raise PrerequisiteMissing(
                f"CLI container '{self.config.cli_container}' is not running, "
                "bring the network up first",
                step="prerequisites",
            )
        logger.info("Chaincode prerequisites checked")

    async def copy_source(self, definition):
        logger.info(
            f"Copying chaincode from {definition.source_path} to "
            f"{self.config.cli_container}:{definition.cli_path}"
        )
        await self.cli.remove_path(definition.cli_path)
        result = await self.engine.copy_into(
            definition.source_path, self.config.cli_container, definition.cli_path
        )
        self._check(result, "copy", "failed to copy chaincode source to CLI container")

    async def package(self, definition):
        logger.info(f"Packaging chaincode {definition.name} version {definition.version}")
        result = await self.cli.peer(
            [
                "lifecycle",
                "chaincode",
                "package",
                definition.package_file,
                "--path",
                definition.cli_path,
                "--lang",
                definition.lang,
                "--label",
                definition.label,
            ]
        )
        self._check(result, "package", "failed to package chaincode")
        logger.info(f"Chaincode packaged as {definition.package_file}")

    async def install_on(self, definition, org):
        logger.info(f"Installing chaincode on {org.peer_host}")
        package = f"{CLI_PEER_DIR}/{definition.package_file}"
        result = await self.cli.peer(["lifecycle", "chaincode", "install", package], org=org)
        self._check(result, "install", f"failed to install chaincode on {org.peer_host}")
        return org.name

    async def query_package_id(self, definition, org):
        logger.info(f"Querying installed chaincode on {org.name} to retrieve the package id")
        result = await self.cli.peer(
            ["lifecycle", "chaincode", "queryinstalled", "--output", "json"], org=org
        )
        self._check(result, "install", f"failed to query installed chaincodes on {org.name}")
        package_id = parse_package_id(result.stdout, definition.label)
        logger.info(f"Retrieved package id: {package_id}")
        return package_id

    async def install(self, definition, orgs, report):
        first, rest = orgs[0], orgs[1:]
        report.installed.append(await self.install_on(definition, first))
        report.package_id = await self.query_package_id(definition, first)

        async def install_rest(org):
            return await self.install_on(definition, org)

        report.installed.extend(await fan_out(rest, install_rest, self.config.max_parallel))
        logger.info("Chaincode installed on all peers")
        return report.package_id

    def definition_args(self, definition, channel):
        return [
            "--channelID",
            channel,
            "--name",
            definition.name,
            "--version",
            definition.version,
            "--sequence",
            definition.sequence,
        ]

    def init_args(self, definition):
        return ["--init-required"] if definition.init_required else []

    async def approve_for(self, definition, channel, package_id, org):
        logger.info(f"Approving chaincode for {org.msp_id}")
        args = (
            ["lifecycle", "chaincode", "approveformyorg"]
            + self.cli.orderer_args()
            + self.definition_args(definition, channel)
            + ["--package-id", package_id]
            + self.init_args(definition)
        )
        result = await self.cli.peer(args, org=org)
        self._check(result, "approve", f"failed to approve chaincode for {org.msp_id}")
        await self.check_commit_readiness(definition, channel, org)
        return org.name

    async def check_commit_readiness(self, definition, channel, org):
        args = (
            ["lifecycle", "chaincode", "checkcommitreadiness"]
            + self.definition_args(definition, channel)
            + ["--tls", "--cafile", self.config.orderer.tls_ca(), "--output", "json"]
            + self.init_args(definition)
        )
        result = await self.cli.peer(args, org=org)
        if result.ok:
            logger.info(f"Commit readiness for {org.msp_id}: {result.stdout.strip()}")
        else:
            logger.warning(f"Commit readiness check failed for {org.msp_id} (informational)")
        return result.ok

    async def approve(self, definition, channel, package_id, orgs, report):
        async def approve_org(org):
            return await self.approve_for(definition, channel, package_id, org)

        report.approved.extend(await fan_out(orgs, approve_org, self.config.max_parallel))
        logger.info("Chaincode definition approved by all organizations")

    def peer_connection_args(self, orgs):
        args = []
        for org in orgs:
            args.extend(
                ["--peerAddresses", org.peer_address, "--tlsRootCertFiles", org.tls_root_cert()]
            )
        return args

    async def commit(self, definition, channel, orgs):
        logger.info(f"Committing chaincode definition to channel {channel}")
        args = (
            ["lifecycle", "chaincode", "commit"]
            + self.cli.orderer_args()
            + self.definition_args(definition, channel)
            + self.peer_connection_args(orgs)
            + self.init_args(definition)
        )
        result = await self.cli.peer(args, org=orgs[0])
        self._check(result, "commit", "failed to commit chaincode definition")
        logger.info("Chaincode definition committed")

        query = await self.cli.peer(
            [
                "lifecycle",
                "chaincode",
                "querycommitted",
                "--channelID",
                channel,
                "--name",
                definition.name,
                "--cafile",
                self.config.orderer.tls_ca(),
            ],
            org=orgs[0],
        )
        if query.ok:
            logger.info(f"Committed definition: {query.stdout.strip()}")

    async def init(self, definition, channel, orgs):
        logger.info(f"Initializing chaincode {definition.name} on channel {channel}")
        args = (
            ["chaincode", "invoke"]
            + self.cli.orderer_args()
            + ["--channelID", channel, "--name", definition.name]
            + self.peer_connection_args(orgs)
            + ["--isInit", "-c", definition.init_args]
        )
        result = await self.cli.peer(args, org=orgs[0])
        self._check(result, "init", "failed to initialize chaincode")
        logger.info("Chaincode initialization transaction submitted")

    async def deploy(self, definition, channel=None, orgs=None, prepare=True):
        """Deploys definition on channel for orgs

        Arguments:
            definition {ChaincodeDefinition} -- What to deploy

        Keyword Arguments:
            channel {string} -- Target channel (default: {config channel})
            orgs {list} -- Participating organizations, deduplicated and taken
            in org order so the lowest one installs first (default: {all})
            prepare {bool} -- Check prerequisites and copy the source
            into the CLI container first (default: {True})

        Returns:
            DeployReport -- Package id and the orgs each step went through
        """
        channel = channel or self.config.channel
        unique = {org.index: org for org in orgs or self.config.orgs}
        orgs = sorted(unique.values(), key=lambda org: org.index)
        if not orgs:
            raise ValueError("at least one organization is required to deploy")

        report = DeployReport(definition, channel)
        logger.info(f"Deploying {definition} on channel {channel}")

        if prepare:
            await self.check_prereqs(definition)
            await self.copy_source(definition)

        await self.package(definition)
        package_id = await self.install(definition, orgs, report)
        await self.approve(definition, channel, package_id, orgs, report)
        await self.commit(definition, channel, orgs)
        report.committed = True

        if definition.init_required:
            await self.init(definition, channel, orgs)
            report.initialized = True
        else:
            logger.info("Skipping chaincode initialization, no init arguments provided")

        logger.info(
            f"Chaincode {definition.name} (version {definition.version}, sequence "
            f"{definition.sequence}) deployed to channel {channel}"
        )
        return report
