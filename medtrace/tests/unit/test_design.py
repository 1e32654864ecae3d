import os
import logging
import unittest
import tempfile

import yaml

from medtrace.common.errors import InvalidConfig
from medtrace.design.fabric import (
    Organization,
    NetworkConfig,
    ChaincodeDefinition,
    CLI_ORGS_DIR,
)
from medtrace.design.artifacts import ArtifactStore
from medtrace.design.templates import TemplateRenderer


logger = logging.getLogger(__name__)


class TestTopology(unittest.TestCase):
    def test_default_topology(self):
        config = NetworkConfig(workdir="/tmp/medtrace-net")

        assert config.n_orgs == 4
        assert [org.peer_port for org in config.orgs] == [7051, 8051, 9051, 10051]
        assert [org.chaincode_port for org in config.orgs] == [7052, 8052, 9052, 10052]
        assert [org.operations_port for org in config.orgs] == [9444, 9445, 9446, 9447]
        assert config.orderer.address == "orderer.medtrace.com:7050"
        assert config.cli_container == "cli.medtrace.com"
        assert config.docker_network == "fabric_medtrace"
        assert config.channel == "medtrace"

    def test_org_admin_env(self):
        org = Organization(3, "medtrace.com")
        env = org.admin_env()

        assert org.peer_address == "peer0.org3.medtrace.com:9051"
        assert env["CORE_PEER_LOCALMSPID"] == "Org3MSP"
        assert env["CORE_PEER_ADDRESS"] == "peer0.org3.medtrace.com:9051"
        assert env["CORE_PEER_MSPCONFIGPATH"] == (
            f"{CLI_ORGS_DIR}/peerOrganizations/org3.medtrace.com/users/Admin@org3.medtrace.com/msp"
        )
        assert env["CORE_PEER_TLS_ROOTCERT_FILE"].endswith(
            "peers/peer0.org3.medtrace.com/tls/ca.crt"
        )

    def test_invalid_orgs(self):
        with self.assertRaises(ValueError):
            NetworkConfig(n_orgs=0)
        with self.assertRaises(ValueError):
            Organization(0, "medtrace.com")

    def test_parse_config(self):
        config = NetworkConfig.parse(
            {
                "orgs": 2,
                "channel": "recall",
                "workdir": "/tmp/medtrace-net",
                "parallel": 2,
                "retry": {"logs": {"max_attempts": 5, "interval": 0}},
            }
        )

        assert config.n_orgs == 2
        assert config.channel == "recall"
        assert config.max_parallel == 2
        assert config.log_policy.max_attempts == 5
        assert config.log_policy.interval == 0
        assert config.reach_policy.max_attempts == 20
        assert config.channel_create_policy.max_attempts == 3
        assert config.get_org(2).name == "Org2"

    def test_parse_numeric_strings(self):
        config = NetworkConfig.parse({"orgs": "3", "parallel": "2", "settle_seconds": "0.5"})

        assert config.n_orgs == 3
        assert len(config.orgs) == 3
        assert config.max_parallel == 2
        assert config.settle_seconds == 0.5

    def test_parse_not_numeric(self):
        for key in ("orgs", "parallel", "settle_seconds"):
            with self.assertRaises(InvalidConfig) as ctx:
                NetworkConfig.parse({key: "four"})
            assert key in str(ctx.exception)
            assert ctx.exception.step == "config"

        with self.assertRaises(InvalidConfig):
            NetworkConfig.parse({"orgs": True})

    def test_chaincode_definition(self):
        definition = ChaincodeDefinition()
        assert definition.label == "medtracecc_1.0"
        assert definition.package_file == "medtracecc_1.0.tar.gz"
        assert definition.init_required is False

        definition = ChaincodeDefinition.parse(
            {"name": "recallcc", "version": 2, "sequence": 3, "init_args": '{"Args":["Init"]}'}
        )
        assert definition.label == "recallcc_2"
        assert definition.sequence == "3"
        assert definition.init_required is True


class TestTemplates(unittest.TestCase):
    def setUp(self):
        self.config = NetworkConfig(workdir="/tmp/medtrace-net", image_tag="2.5")
        self.renderer = TemplateRenderer(self.config)

    def test_crypto_config(self):
        document = self.renderer.crypto_config(self.config.get_org(2))
        org = document["PeerOrgs"][0]
        assert org["Name"] == "Org2"
        assert org["Domain"] == "org2.medtrace.com"

        document = self.renderer.crypto_config_orderer()
        assert document["OrdererOrgs"][0]["Specs"] == [{"Hostname": "orderer"}]

    def test_configtx(self):
        text = self.renderer.dump(self.renderer.configtx())
        document = yaml.safe_load(text)

        profiles = document["Profiles"]
        assert set(profiles) == {"MedTraceOrdererGenesis", "MedTraceChannel"}

        channel_orgs = profiles["MedTraceChannel"]["Application"]["Organizations"]
        assert [org["ID"] for org in channel_orgs] == [
            "Org1MSP",
            "Org2MSP",
            "Org3MSP",
            "Org4MSP",
        ]
        assert channel_orgs[3]["AnchorPeers"] == [
            {"Host": "peer0.org4.medtrace.com", "Port": 10051}
        ]
        assert profiles["MedTraceChannel"]["Consortium"] == "MedTraceConsortium"
        consortium = profiles["MedTraceOrdererGenesis"]["Consortiums"]["MedTraceConsortium"]
        assert len(consortium["Organizations"]) == 4

    def test_compose(self):
        document = yaml.safe_load(self.renderer.dump(self.renderer.compose()))
        services = document["services"]

        names = sorted(service["container_name"] for service in services.values())
        assert names == sorted(
            ["orderer.medtrace.com", "cli.medtrace.com"]
            + [f"peer0.org{i}.medtrace.com" for i in range(1, 5)]
        )

        peer = services["peer0.org2.medtrace.com"]
        assert peer["image"] == "hyperledger/fabric-peer:2.5"
        assert "8051:8051" in peer["ports"]
        assert "9445:9445" in peer["ports"]
        assert "CORE_PEER_CHAINCODEADDRESS=peer0.org2.medtrace.com:8052" in peer["environment"]

        orderer = services["orderer.medtrace.com"]
        assert orderer["ports"] == ["7050:7050", "7053:7053", "9443:9443"]
        assert "fabric_medtrace" in document["networks"]


class TestArtifactStore(unittest.TestCase):
    def test_presence_and_clear(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = ArtifactStore(tmp, "medtrace")
            assert store.has_identities() is False
            assert store.has_channel_artifacts() is False
            assert store.listing() == []

            os.makedirs(store.identities_dir)
            store.ensure_dirs()
            store.write_text("configtx.yaml", "Profiles: {}\n")
            store.write_text("channel-artifacts/medtrace.tx", "")
            assert store.has_channel_artifacts() is False

            store.write_text("system-genesis-block/genesis.block", "")
            store.write_text("medtracecc_1.0.tar.gz", "")
            store.write_text("notes.txt", "kept")

            assert store.has_identities() is True
            assert store.has_channel_artifacts() is True
            assert store.has_channel_block() is False

            removed = store.clear()
            assert store.path("configtx.yaml") in removed
            assert store.path("medtracecc_1.0.tar.gz") in removed
            assert store.has_identities() is False
            assert store.has_channel_artifacts() is False
            assert os.path.exists(store.path("notes.txt"))
            assert store.clear() == []

    def test_channel_progress(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = ArtifactStore(tmp, "medtrace")
            assert store.load_channel_progress() == {}

            store.save_channel_progress("joined", ["Org1", "Org2"], ["Org1"])
            assert store.channel_progress == os.path.join(tmp, "channel-artifacts", "medtrace.progress.yaml")
            assert store.load_channel_progress() == {
                "state": "joined",
                "joined": ["Org1", "Org2"],
                "anchored": ["Org1"],
            }

            store.discard_channel_progress()
            assert store.load_channel_progress() == {}
            store.discard_channel_progress()

            store.save_channel_progress("created", [], [])
            store.clear()
            assert not os.path.exists(store.channel_progress)


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
