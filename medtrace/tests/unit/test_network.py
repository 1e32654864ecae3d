import asyncio
import logging
import unittest
import tempfile

from medtrace.common.errors import ReadinessTimeout, ChannelOperationFailed
from medtrace.common.scheduler import RetryPolicy
from medtrace.design.artifacts import ArtifactStore
from medtrace.network.channel import ChannelFormation, ChannelState
from medtrace.network.peer import AdminCLI
from medtrace.network.readiness import ReadinessProbe, ContainerNode, phrase_predicate

from fakes import FakeRunner, FakeEngine, fast_config, READY_LOG


logger = logging.getLogger(__name__)


class SlowNode:
    """Node whose log shows readiness from the ready_at-th read on"""

    def __init__(self, ready_at, resolvable=True):
        self.name = "orderer.medtrace.com"
        self.ready_at = ready_at
        self.resolvable = resolvable
        self.reads = 0

    async def logs(self):
        self.reads += 1
        if self.reads >= self.ready_at:
            return READY_LOG
        return "INFO Starting orderer"

    async def resolves(self, host):
        return self.resolvable


class TestReadiness(unittest.TestCase):
    def probe(self, max_attempts):
        predicate = phrase_predicate(["Start accepting requests as Raft leader"])
        return ReadinessProbe(predicate, RetryPolicy(max_attempts, 0), RetryPolicy(2, 0))

    def test_ready_iff_budget_reaches_signal(self):
        for ready_at in (1, 3, 5):
            for max_attempts in (1, 3, 5, 6):
                node = SlowNode(ready_at)
                probe = self.probe(max_attempts)

                if max_attempts >= ready_at:
                    attempts = asyncio.run(probe.wait_until_ready(node, node.name))
                    assert attempts == (ready_at, 1)
                else:
                    with self.assertRaises(ReadinessTimeout) as ctx:
                        asyncio.run(probe.wait_until_ready(node, node.name))
                    assert ctx.exception.step == "readiness-logs"
                    assert node.reads == max_attempts

    def test_unreachable(self):
        node = SlowNode(1, resolvable=False)
        with self.assertRaises(ReadinessTimeout) as ctx:
            asyncio.run(self.probe(3).wait_until_ready(node, node.name))
        assert ctx.exception.step == "readiness-reachability"

    def test_from_config(self):
        config = fast_config("/tmp/medtrace-net", ready_phrases=["Raft leader"], log_policy=RetryPolicy(4, 0))
        readiness = ReadinessProbe.from_config(config)

        assert readiness.log_policy is config.log_policy
        assert readiness.reach_policy is config.reach_policy
        assert asyncio.run(readiness.wait_until_ready(SlowNode(2), "orderer.medtrace.com")) == (2, 1)

        config = fast_config("/tmp/medtrace-net", ready_phrases=["Beginning to serve requests"])
        with self.assertRaises(ReadinessTimeout):
            asyncio.run(ReadinessProbe.from_config(config).wait_until_ready(SlowNode(1), "orderer"))

    def test_container_node(self):
        engine = FakeEngine(FakeRunner(), running=["orderer.medtrace.com", "cli.medtrace.com"])
        node = ContainerNode(engine, "orderer.medtrace.com", "cli.medtrace.com")

        assert asyncio.run(node.logs()) == READY_LOG
        assert asyncio.run(node.resolves("orderer.medtrace.com")) is True

        engine.running.discard("cli.medtrace.com")
        assert asyncio.run(node.resolves("orderer.medtrace.com")) is False

    def test_phrase_predicate(self):
        predicate = phrase_predicate(["Beginning to serve requests", "Raft leader"])
        assert predicate("... Beginning to serve requests ...") is True
        assert predicate("... Start accepting requests as Raft leader") is True
        assert predicate("Starting orderer") is False


class TestAdminCLI(unittest.TestCase):
    def test_exec_args_carry_org_context(self):
        config = fast_config("/tmp/medtrace-net")
        runner = FakeRunner()
        cli = AdminCLI(runner, config)

        asyncio.run(cli.peer(["channel", "list"], org=config.get_org(2)))

        call = runner.calls[0]
        assert call.args[:2] == ["docker", "exec"]
        assert call.args[-3:] == ["peer", "channel", "list"]
        assert call.exec_env["CORE_PEER_LOCALMSPID"] == "Org2MSP"
        assert call.exec_env["CORE_PEER_ADDRESS"] == "peer0.org2.medtrace.com:8051"
        assert call.args[call.args.index("peer") - 1] == "cli.medtrace.com"


class TestChannelFormation(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config = fast_config(self.tmp.name)
        self.runner = FakeRunner(workdir=self.tmp.name)
        self.formation = ChannelFormation(AdminCLI(self.runner, self.config), self.config)

    def tearDown(self):
        self.tmp.cleanup()

    def test_form(self):
        state = asyncio.run(self.formation.form())

        assert state == ChannelState.ANCHORS_UPDATED
        assert self.formation.joined == ["Org1", "Org2", "Org3", "Org4"]
        assert self.formation.anchored == ["Org1", "Org2", "Org3", "Org4"]

        joins = self.runner.calls_with("channel", "join")
        assert [c.exec_env["CORE_PEER_LOCALMSPID"] for c in joins] == [
            "Org1MSP",
            "Org2MSP",
            "Org3MSP",
            "Org4MSP",
        ]
        updates = self.runner.calls_with("channel", "update")
        assert updates[2].args[updates[2].args.index("-f") + 1] == "./channel-artifacts/Org3MSPanchors.tx"
        assert self.runner.index_of(joins[-1]) < self.runner.index_of(updates[0])

    def test_create_retried(self):
        self.runner.respond("channel", "create", code=1, stderr="orderer not ready", times=2)

        asyncio.run(self.formation.create())

        assert len(self.runner.calls_with("channel", "create")) == 3
        assert self.formation.state == ChannelState.CREATED

    def test_create_exhausted(self):
        self.runner.respond("channel", "create", code=1, stderr="orderer not ready")

        with self.assertRaises(ChannelOperationFailed) as ctx:
            asyncio.run(self.formation.form())

        assert ctx.exception.step == "channel-create"
        assert "orderer not ready" in ctx.exception.output
        assert len(self.runner.calls_with("channel", "create")) == 3
        assert self.runner.calls_with("channel", "join") == []
        assert self.formation.state == ChannelState.NOT_CREATED

    def test_join_failure_reports_joined(self):
        self.runner.respond("channel", "join", "CORE_PEER_LOCALMSPID=Org3MSP", code=1)

        with self.assertRaises(ChannelOperationFailed) as ctx:
            asyncio.run(self.formation.form())

        assert ctx.exception.step == "channel-join"
        assert ctx.exception.joined == ["Org1", "Org2"]
        assert self.runner.calls_with("channel", "update") == []
        assert self.formation.state == ChannelState.CREATED

    def test_parallel_join(self):
        self.config.max_parallel = 4
        state = asyncio.run(self.formation.form())

        assert state == ChannelState.ANCHORS_UPDATED
        assert self.formation.joined == ["Org1", "Org2", "Org3", "Org4"]

    def test_resume_after_join_failure(self):
        store = ArtifactStore(self.tmp.name, self.config.channel)
        cli = AdminCLI(self.runner, self.config)
        self.runner.respond("channel", "join", "CORE_PEER_LOCALMSPID=Org3MSP", code=1, times=1)

        with self.assertRaises(ChannelOperationFailed):
            asyncio.run(ChannelFormation(cli, self.config, store=store).form())

        progress = store.load_channel_progress()
        assert progress == {"state": "created", "joined": ["Org1", "Org2"], "anchored": []}

        formation = ChannelFormation(cli, self.config, store=store)
        state = asyncio.run(formation.form(resume=True))

        assert state == ChannelState.ANCHORS_UPDATED
        assert formation.joined == ["Org1", "Org2", "Org3", "Org4"]
        assert len(self.runner.calls_with("channel", "create")) == 1
        joins = self.runner.calls_with("channel", "join")
        assert [c.exec_env["CORE_PEER_LOCALMSPID"] for c in joins[2:]] == [
            "Org3MSP",
            "Org3MSP",
            "Org4MSP",
        ]
        assert len(self.runner.calls_with("channel", "update")) == 4
        assert store.load_channel_progress()["state"] == "anchors-updated"

    def test_resume_after_anchor_failure(self):
        store = ArtifactStore(self.tmp.name, self.config.channel)
        cli = AdminCLI(self.runner, self.config)
        self.runner.respond("channel", "update", "CORE_PEER_LOCALMSPID=Org2MSP", code=1, times=1)

        with self.assertRaises(ChannelOperationFailed) as ctx:
            asyncio.run(ChannelFormation(cli, self.config, store=store).form())
        assert ctx.exception.step == "channel-anchors"

        formation = ChannelFormation(cli, self.config, store=store)
        state = asyncio.run(formation.form(resume=True))

        assert state == ChannelState.ANCHORS_UPDATED
        assert len(self.runner.calls_with("channel", "join")) == 4
        updates = self.runner.calls_with("channel", "update")
        assert [c.exec_env["CORE_PEER_LOCALMSPID"] for c in updates] == [
            "Org1MSP",
            "Org2MSP",
            "Org2MSP",
            "Org3MSP",
            "Org4MSP",
        ]

    def test_resume_without_block_creates(self):
        store = ArtifactStore(self.tmp.name, self.config.channel)
        formation = ChannelFormation(AdminCLI(self.runner, self.config), self.config, store=store)

        state = asyncio.run(formation.form(resume=True))

        assert state == ChannelState.ANCHORS_UPDATED
        assert len(self.runner.calls_with("channel", "create")) == 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
