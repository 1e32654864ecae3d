import asyncio
import logging

import docker

from medtrace.common.errors import (
    ProvisionError,
    PrerequisiteMissing,
    ArtifactGenerationFailed,
    ContainerStartFailed,
)
from medtrace.common.runner import ProcessRunner
from medtrace.design.artifacts import ArtifactStore
from medtrace.design.templates import TemplateRenderer
from medtrace.network.channel import ChannelFormation
from medtrace.network.containers import ContainerEngine
from medtrace.network.peer import AdminCLI
from medtrace.network.readiness import ReadinessProbe, ContainerNode


logger = logging.getLogger(__name__)


CHAINCODE_CONTAINER_PREFIX = "dev-peer"


class NetworkLifecycle:
    """Bring-up and teardown of the test network. Every bring-up step is
    skipped when its outputs already exist (identities directory, channel
    artifacts, running orderer container), any step failure is fatal.

    Arguments:
        config {NetworkConfig} -- The network to provision

    Keyword Arguments:
        runner {ProcessRunner} -- Runs generators and the engine CLI
        engine {ContainerEngine} -- Container engine collaborator
        probe {ReadinessProbe} -- Orderer readiness wait
    """

    def __init__(self, config, runner=None, engine=None, probe=None):
        self.config = config
        self.runner = runner or ProcessRunner()
        self.engine = engine or ContainerEngine(self.runner, cli=config.container_cli)
        self.cli = AdminCLI(self.runner, config)
        self.probe = probe or ReadinessProbe.from_config(config)
        self.artifacts = ArtifactStore(config.workdir, config.channel)
        self.renderer = TemplateRenderer(config)
        self.formation = None

    def check_prereqs(self):
        logger.info("Checking prerequisites")
        for tool in (self.config.cryptogen, self.config.configtxgen, self.config.container_cli):
            if not self.runner.which(tool):
                raise PrerequisiteMissing(f"{tool} tool not found", step="prerequisites")
        if not self.engine.has_compose():
            compose = " ".join(self.engine.compose_cmd())
            raise PrerequisiteMissing(f"{compose} not found", step="prerequisites")
        logger.info("Prerequisites checked")

    async def _cryptogen(self, filename, document, who):
        text = self.renderer.dump(document)
        self.artifacts.write_text(filename, text)

        result = await self.runner.run(
            [
                self.config.cryptogen,
                "generate",
                f"--config=./{filename}",
                "--output=organizations",
            ],
            cwd=self.config.workdir,
        )
        if not result.ok:
            raise ArtifactGenerationFailed(
                f"failed to generate crypto material for {who}",
                step="identities",
                output=result.output,
            )

    async def generate_identities(self):
        if self.artifacts.has_identities():
            logger.info("Found existing organizations directory, using existing crypto material")
            return False

        logger.info("Generating crypto material")
        for org in self.config.orgs:
            document = self.renderer.crypto_config(org)
            await self._cryptogen(f"crypto-config-org{org.index}.yaml", document, org.name)

        document = self.renderer.crypto_config_orderer()
        await self._cryptogen("crypto-config-orderer.yaml", document, "Orderer")
        logger.info("Crypto material generated")
        return True

    async def _configtxgen(self, args, what):
        cmd = [self.config.configtxgen, "-configPath", self.config.workdir] + args
        result = await self.runner.run(
            cmd,
            env={"FABRIC_CFG_PATH": self.config.workdir},
            cwd=self.config.workdir,
        )
        if not result.ok:
            raise ArtifactGenerationFailed(
                f"failed to generate {what}", step="channel-artifacts", output=result.output
            )

    async def generate_channel_artifacts(self):
        if self.artifacts.has_channel_artifacts():
            logger.info("Found existing channel artifacts, using existing artifacts")
            return False

        logger.info("Generating channel artifacts")
        config = self.config
        self.artifacts.write_text("configtx.yaml", self.renderer.dump(self.renderer.configtx()))
        self.artifacts.ensure_dirs()

        await self._configtxgen(
            [
                "-profile",
                config.genesis_profile,
                "-channelID",
                config.system_channel,
                "-outputBlock",
                "./system-genesis-block/genesis.block",
            ],
            "orderer genesis block",
        )
        await self._configtxgen(
            [
                "-profile",
                config.channel_profile,
                "-outputCreateChannelTx",
                f"./channel-artifacts/{config.channel}.tx",
                "-channelID",
                config.channel,
            ],
            f"channel creation transaction for {config.channel}",
        )
        for org in config.orgs:
            await self._configtxgen(
                [
                    "-profile",
                    config.channel_profile,
                    "-outputAnchorPeersUpdate",
                    f"./channel-artifacts/{org.msp_id}anchors.tx",
                    "-channelID",
                    config.channel,
                    "-asOrg",
                    org.msp_id,
                ],
                f"anchor peer update for {org.msp_id}",
            )
        logger.info("Channel artifacts generated")
        return True

    async def start_containers(self):
        orderer = self.config.orderer
        if await self.engine.is_running(orderer.host):
            logger.info("Network containers are already running")
            return False

        logger.info("Starting network containers")
        compose_file = self.artifacts.write_text(
            "docker-compose.yaml", self.renderer.dump(self.renderer.compose())
        )
        result = await self.engine.compose_up(compose_file, self.config.project)
        if not result.ok:
            raise ContainerStartFailed(
                "unable to start network", step="containers", output=result.output
            )

        logger.info("Waiting a few seconds for network services to initialize")
        await asyncio.sleep(self.config.settle_seconds)
        return True

    async def wait_ready(self):
        orderer = self.config.orderer
        node = ContainerNode(self.engine, orderer.host, self.config.cli_container)
        return await self.probe.wait_until_ready(node, orderer.host)

    async def form_channel(self, already_running=False):
        """Forms the channel; on a network that was already running the
        progress recorded by a previous run is resumed, so orgs that joined
        or updated their anchor peer are not repeated"""
        self.formation = ChannelFormation(self.cli, self.config, store=self.artifacts)
        return await self.formation.form(resume=already_running)

    async def generate(self):
        self.check_prereqs()
        identities = await self.generate_identities()
        channel = await self.generate_channel_artifacts()
        return identities or channel

    async def bring_up(self):
        """Brings the network up to a formed channel

        Returns:
            ChannelState -- Terminal channel state, ANCHORS_UPDATED on success
        """
        await self.generate()
        started = await self.start_containers()
        await self.wait_ready()
        state = await self.form_channel(already_running=not started)
        logger.info(f"Network is up and channel {self.config.channel} is ready")
        return state

    async def tear_down(self):
        """Best-effort cleanup, failures are logged and returned, never raised

        Returns:
            list -- Warning messages of the steps that failed
        """
        warnings = []

        def warn(msg):
            logger.warning(msg)
            warnings.append(msg)

        logger.info("Stopping and removing network")
        if self.artifacts.has_compose_file():
            try:
                result = await self.engine.compose_down(
                    self.artifacts.compose_file, self.config.project
                )
            except (ProvisionError, OSError) as e:
                warn(f"compose down failed: {e}")
            else:
                if not result.ok:
                    warn(f"compose down failed: {result.output.strip()}")

        try:
            removed = await self.engine.remove_containers(CHAINCODE_CONTAINER_PREFIX)
            if removed:
                logger.info(f"Removed chaincode containers {removed}")
        except (ProvisionError, docker.errors.DockerException) as e:
            warn(f"could not remove chaincode containers: {e}")

        logger.info("Removing generated artifacts")
        try:
            self.artifacts.clear()
        except OSError as e:
            warn(f"could not remove artifacts: {e}")

        logger.info("Network stopped")
        return warnings

    async def restart(self):
        await self.tear_down()
        return await self.bring_up()
