import os
import logging

from medtrace.common.errors import InvalidConfig
from medtrace.common.scheduler import RetryPolicy


logger = logging.getLogger(__name__)


CLI_PEER_DIR = "/opt/gopath/src/github.com/hyperledger/fabric/peer"
CLI_ORGS_DIR = CLI_PEER_DIR + "/organizations"

DEFAULT_READY_PHRASES = [
    "Start accepting requests as Raft leader",
    "Beginning to serve requests",
]


def number(data, key, default, kind=int):
    """Reads a numeric setting, accepting its string form as YAML
    quoting or an environment overlay may leave it"""
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidConfig(f"setting {key} must be a number, got {value!r}", step="config")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise InvalidConfig(f"setting {key} must be a number, got {value!r}", step="config")


class Organization:
    """A peer organization owning one peer node

    Arguments:
        index {int} -- Position of the org in the network, 1..N
        domain {string} -- Network base domain, e.g. medtrace.com

    Keyword Arguments:
        peer_port {int} -- Peer listen port (default: {7051 + 1000 * (index - 1)})
        operations_port {int} -- Peer operations port (default: {9444 + index - 1})
    """

    def __init__(self, index, domain, peer_port=None, operations_port=None):
        if index < 1:
            raise ValueError(f"organization index starts at 1, got {index}")
        self.index = index
        self.name = f"Org{index}"
        self.msp_id = f"Org{index}MSP"
        self.domain = f"org{index}.{domain}"
        self.peer_host = f"peer0.{self.domain}"
        self.peer_port = peer_port or 7051 + 1000 * (index - 1)
        self.chaincode_port = self.peer_port + 1
        self.operations_port = operations_port or 9444 + (index - 1)

    @property
    def peer_address(self):
        return f"{self.peer_host}:{self.peer_port}"

    def crypto_dir(self, root=CLI_ORGS_DIR):
        return f"{root}/peerOrganizations/{self.domain}"

    def msp_dir(self, root=CLI_ORGS_DIR):
        return f"{self.crypto_dir(root)}/msp"

    def peer_dir(self, root=CLI_ORGS_DIR):
        return f"{self.crypto_dir(root)}/peers/{self.peer_host}"

    def admin_msp_dir(self, root=CLI_ORGS_DIR):
        return f"{self.crypto_dir(root)}/users/Admin@{self.domain}/msp"

    def tls_root_cert(self, root=CLI_ORGS_DIR):
        return f"{self.peer_dir(root)}/tls/ca.crt"

    def admin_env(self):
        """Peer CLI context acting as this org admin against its own peer"""
        return {
            "CORE_PEER_LOCALMSPID": self.msp_id,
            "CORE_PEER_TLS_ROOTCERT_FILE": self.tls_root_cert(),
            "CORE_PEER_MSPCONFIGPATH": self.admin_msp_dir(),
            "CORE_PEER_ADDRESS": self.peer_address,
        }

    def __repr__(self):
        return f"Organization({self.name}, {self.peer_address})"


class OrdererOrg:
    def __init__(self, domain, port=7050, admin_port=7053, operations_port=9443):
        self.name = "Orderer"
        self.msp_id = "OrdererMSP"
        self.domain = domain
        self.hostname = "orderer"
        self.host = f"{self.hostname}.{domain}"
        self.port = port
        self.admin_port = admin_port
        self.operations_port = operations_port

    @property
    def address(self):
        return f"{self.host}:{self.port}"

    def crypto_dir(self, root=CLI_ORGS_DIR):
        return f"{root}/ordererOrganizations/{self.domain}"

    def msp_dir(self, root=CLI_ORGS_DIR):
        return f"{self.crypto_dir(root)}/msp"

    def node_dir(self, root=CLI_ORGS_DIR):
        return f"{self.crypto_dir(root)}/orderers/{self.host}"

    def tls_ca(self, root=CLI_ORGS_DIR):
        return f"{self.node_dir(root)}/tls/ca.crt"


class NetworkConfig:
    """Everything a network run needs, passed explicitly to each
    orchestrator instead of being read from exported variables.

    Keyword Arguments:
        n_orgs {int} -- Number of peer organizations (default: {4})
        domain {string} -- Base domain (default: {"medtrace.com"})
        channel {string} -- Application channel name (default: {"medtrace"})
        workdir {string} -- Directory receiving every artifact (default: {cwd})
        image_tag {string} -- Tag of the fabric orderer/peer/tools images
        max_parallel {int} -- Per-org fan-out width, 1 is sequential
    """

    def __init__(
        self,
        n_orgs=4,
        domain="medtrace.com",
        channel="medtrace",
        workdir=None,
        image_tag="latest",
        project="medtrace",
        container_cli="docker",
        max_parallel=1,
        verbose=False,
        settle_seconds=10.0,
        ready_phrases=None,
        log_policy=None,
        reach_policy=None,
        channel_create_policy=None,
    ):
        if n_orgs < 1:
            raise ValueError(f"at least one organization is required, got {n_orgs}")
        self.domain = domain
        self.orgs = [Organization(i, domain) for i in range(1, n_orgs + 1)]
        self.orderer = OrdererOrg(domain)
        self.channel = channel
        self.system_channel = "system-channel"
        self.consortium = "MedTraceConsortium"
        self.genesis_profile = "MedTraceOrdererGenesis"
        self.channel_profile = "MedTraceChannel"
        self.workdir = os.path.abspath(workdir or os.getcwd())
        self.image_tag = image_tag
        self.project = project
        self.docker_network = f"fabric_{project}"
        self.cli_container = f"cli.{domain}"
        self.container_cli = container_cli
        self.cryptogen = "cryptogen"
        self.configtxgen = "configtxgen"
        self.max_parallel = max_parallel
        self.verbose = verbose
        self.settle_seconds = settle_seconds
        self.ready_phrases = list(ready_phrases or DEFAULT_READY_PHRASES)
        self.log_policy = log_policy or RetryPolicy(20, 3)
        self.reach_policy = reach_policy or RetryPolicy(20, 5)
        self.channel_create_policy = channel_create_policy or RetryPolicy(3, 10)

    @property
    def n_orgs(self):
        return len(self.orgs)

    def get_org(self, index):
        return self.orgs[index - 1]

    @classmethod
    def parse(cls, data):
        """Builds a config from a (YAML loaded) dict, keys absent
        from data keep their defaults"""
        data = dict(data or {})
        policies = data.pop("retry", {}) or {}

        config = cls(
            n_orgs=number(data, "orgs", 4),
            domain=data.get("domain", "medtrace.com"),
            channel=data.get("channel", "medtrace"),
            workdir=data.get("workdir"),
            image_tag=data.get("image_tag", "latest"),
            project=data.get("project", "medtrace"),
            container_cli=data.get("container_cli", "docker"),
            max_parallel=number(data, "parallel", 1),
            verbose=data.get("verbose", False),
            settle_seconds=number(data, "settle_seconds", 10.0, kind=float),
            ready_phrases=data.get("ready_phrases"),
        )
        config.log_policy = RetryPolicy.parse(policies.get("logs"), config.log_policy)
        config.reach_policy = RetryPolicy.parse(
            policies.get("reachability"), config.reach_policy
        )
        config.channel_create_policy = RetryPolicy.parse(
            policies.get("channel_create"), config.channel_create_policy
        )
        return config


class ChaincodeDefinition:
    """Chaincode to deploy; its package id is discovered at install
    time and is never part of the definition itself.

    Arguments:
        name {string} -- Chaincode name
        version {string} -- Chaincode version
        sequence {string} -- Definition sequence number

    Keyword Arguments:
        source_path {string} -- Host path of the (vendored) chaincode source
        cli_path {string} -- Path the source is copied to inside the CLI container
        init_args {string} -- JSON args of the init call, init is skipped if empty
        lang {string} -- Chaincode language (default: {"golang"})
    """

    def __init__(
        self,
        name="medtracecc",
        version="1.0",
        sequence="1",
        source_path="../chaincode_src/medtrace-go",
        cli_path="/opt/gopath/src/github.com/chaincode",
        init_args="",
        lang="golang",
    ):
        self.name = name
        self.version = str(version)
        self.sequence = str(sequence)
        self.source_path = source_path
        self.cli_path = cli_path
        self.init_args = init_args or ""
        self.lang = lang

    @property
    def label(self):
        return f"{self.name}_{self.version}"

    @property
    def package_file(self):
        return f"{self.label}.tar.gz"

    @property
    def init_required(self):
        return bool(self.init_args)

    def __repr__(self):
        return (
            f"ChaincodeDefinition({self.name}, version={self.version}, "
            f"sequence={self.sequence}, init_required={self.init_required})"
        )

    @classmethod
    def parse(cls, data):
        data = data or {}
        return cls(
            name=data.get("name", "medtracecc"),
            version=data.get("version", "1.0"),
            sequence=data.get("sequence", "1"),
            source_path=data.get("source_path", "../chaincode_src/medtrace-go"),
            cli_path=data.get("cli_path", "/opt/gopath/src/github.com/chaincode"),
            init_args=data.get("init_args", ""),
            lang=data.get("lang", "golang"),
        )
