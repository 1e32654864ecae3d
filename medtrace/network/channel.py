import logging
from enum import Enum

from medtrace.common.errors import ChannelOperationFailed
from medtrace.common.scheduler import retry, fan_out


logger = logging.getLogger(__name__)


class ChannelState(Enum):
    NOT_CREATED = "not-created"
    CREATED = "created"
    JOINED = "joined"
    ANCHORS_UPDATED = "anchors-updated"


class ChannelFormation:
    """Create -> join every org -> update every anchor peer.
    Any failure is fatal; already joined orgs are not rolled back and are
    reported on the raised error. With a store, progress is recorded after
    every step so that a later run resumes where the failed one stopped.

    Arguments:
        cli {AdminCLI} -- Runs the peer channel commands
        config {NetworkConfig} -- Channel, orgs, orderer and retry policy

    Keyword Arguments:
        store {ArtifactStore} -- Keeps the formation progress (default: {None})
    """

    def __init__(self, cli, config, store=None):
        self.cli = cli
        self.config = config
        self.store = store
        self.state = ChannelState.NOT_CREATED
        self.joined = []
        self.anchored = []

    @property
    def channel(self):
        return self.config.channel

    @property
    def tx_path(self):
        return f"./channel-artifacts/{self.channel}.tx"

    @property
    def block_path(self):
        return f"./channel-artifacts/{self.channel}.block"

    def anchors_path(self, org):
        return f"./channel-artifacts/{org.msp_id}anchors.tx"

    def _ordered(self, names):
        order = [o.name for o in self.config.orgs]
        return sorted((n for n in set(names) if n in order), key=order.index)

    def _save(self):
        if self.store is not None:
            self.store.save_channel_progress(self.state.value, self.joined, self.anchored)

    def restore(self):
        """Loads the progress of a previous run on the same channel;
        without a channel block nothing was created and nothing is restored"""
        if self.store is None or not self.store.has_channel_block():
            return self.state

        progress = self.store.load_channel_progress()
        try:
            self.state = ChannelState(progress.get("state", ChannelState.CREATED.value))
        except ValueError:
            self.state = ChannelState.CREATED
        if self.state == ChannelState.NOT_CREATED:
            self.state = ChannelState.CREATED

        self.joined = self._ordered(progress.get("joined") or [])
        self.anchored = self._ordered(progress.get("anchored") or [])
        logger.info(
            f"Resuming channel {self.channel} formation: state {self.state.value}, "
            f"joined {self.joined}, anchors updated {self.anchored}"
        )
        return self.state

    async def create(self):
        policy = self.config.channel_create_policy
        args = [
            "channel",
            "create",
            "-c",
            self.channel,
            "-f",
            self.tx_path,
            "--outputBlock",
            self.block_path,
        ] + self.cli.orderer_args()

        async def attempt():
            return await self.cli.peer(args, org=self.config.orgs[0])

        def failed(attempt_no, _):
            logger.error(
                f"Failed to create channel {self.channel} on attempt "
                f"{attempt_no}/{policy.max_attempts}"
            )

        logger.info(f"Creating channel {self.channel}")
        ok, result, attempts = await retry(
            attempt,
            policy,
            uid=f"create-{self.channel}",
            accept=lambda r: r.ok,
            on_failure=failed,
        )
        if not ok:
            raise ChannelOperationFailed(
                f"failed to create channel {self.channel} after {attempts} attempts",
                step="channel-create",
                output=result.output if result else "",
            )

        self.state = ChannelState.CREATED
        self._save()
        logger.info(f"Channel {self.channel} created - block {self.block_path}")

    async def _join_org(self, org):
        logger.info(f"Joining {org.peer_host} to channel {self.channel}")
        args = ["channel", "join", "-b", self.block_path, "--tls", "--cafile"]
        args.append(self.config.orderer.tls_ca())

        result = await self.cli.peer(args, org=org)
        if not result.ok:
            raise ChannelOperationFailed(
                f"failed to join {org.peer_host} to channel {self.channel}",
                step="channel-join",
                output=result.output,
                joined=self.joined,
            )

        self.joined = self._ordered(self.joined + [org.name])
        self._save()
        logger.info(f"{org.peer_host} joined channel {self.channel}")
        return org.name

    async def join(self):
        pending = [org for org in self.config.orgs if org.name not in self.joined]
        if not pending:
            logger.info(f"Every organization already joined channel {self.channel}")
        await fan_out(pending, self._join_org, self.config.max_parallel)
        if self.state == ChannelState.CREATED:
            self.state = ChannelState.JOINED
            self._save()

    async def _update_anchor(self, org):
        logger.info(f"Updating anchor peer for {org.msp_id} on channel {self.channel}")
        args = [
            "channel",
            "update",
            "-c",
            self.channel,
            "-f",
            self.anchors_path(org),
        ] + self.cli.orderer_args()

        result = await self.cli.peer(args, org=org)
        if not result.ok:
            raise ChannelOperationFailed(
                f"failed to update anchor peer for {org.msp_id}",
                step="channel-anchors",
                output=result.output,
                joined=self.joined,
            )
        self.anchored = self._ordered(self.anchored + [org.name])
        self._save()

    async def update_anchors(self):
        for org in self.config.orgs:
            if org.name in self.anchored:
                logger.info(f"Anchor peer for {org.msp_id} already updated")
                continue
            await self._update_anchor(org)
        self.state = ChannelState.ANCHORS_UPDATED
        self._save()

    async def form(self, resume=False):
        """Forms the channel; with resume the recorded progress of a
        previous run is honoured, otherwise formation starts from create

        Returns:
            ChannelState -- ANCHORS_UPDATED once every org joined and
            updated its anchor peer
        """
        if resume:
            self.restore()
        elif self.store is not None:
            self.store.discard_channel_progress()

        if self.state == ChannelState.NOT_CREATED:
            await self.create()
        await self.join()
        await self.update_anchors()
        logger.info(f"Channel {self.channel} successfully configured")
        return self.state
