import logging

import yaml

from medtrace.design.fabric import CLI_PEER_DIR


logger = logging.getLogger(__name__)


HOST_ORGS_DIR = "organizations"


def signature(rule):
    return {"Type": "Signature", "Rule": rule}


def implicit_meta(rule):
    return {"Type": "ImplicitMeta", "Rule": rule}


def env_list(env):
    return [f"{k}={v}" for k, v in env.items()]


class TemplateRenderer:
    """Builds the generator and container manifests of a network as
    plain dicts, serialized by PyYAML instead of text templates.

    Arguments:
        config {NetworkConfig} -- The network to render
    """

    def __init__(self, config):
        self.config = config

    def dump(self, document):
        return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)

    def crypto_config(self, org):
        return {
            "PeerOrgs": [
                {
                    "Name": org.name,
                    "Domain": org.domain,
                    "EnableNodeOUs": True,
                    "Template": {"Count": 1},
                    "Users": {"Count": 1},
                }
            ]
        }

    def crypto_config_orderer(self):
        orderer = self.config.orderer
        return {
            "OrdererOrgs": [
                {
                    "Name": orderer.name,
                    "Domain": orderer.domain,
                    "EnableNodeOUs": True,
                    "Specs": [{"Hostname": orderer.hostname}],
                }
            ]
        }

    def _orderer_org(self):
        orderer = self.config.orderer
        msp = orderer.msp_id
        return {
            "Name": msp,
            "ID": msp,
            "MSPDir": orderer.msp_dir(HOST_ORGS_DIR),
            "Policies": {
                "Readers": signature(f"OR('{msp}.member')"),
                "Writers": signature(f"OR('{msp}.member')"),
                "Admins": signature(f"OR('{msp}.admin')"),
            },
            "OrdererEndpoints": [orderer.address],
        }

    def _peer_org(self, org):
        msp = org.msp_id
        return {
            "Name": msp,
            "ID": msp,
            "MSPDir": org.msp_dir(HOST_ORGS_DIR),
            "Policies": {
                "Readers": signature(
                    f"OR('{msp}.admin', '{msp}.peer', '{msp}.client')"
                ),
                "Writers": signature(f"OR('{msp}.admin', '{msp}.client')"),
                "Admins": signature(f"OR('{msp}.admin')"),
                "Endorsement": signature(f"OR('{msp}.peer')"),
            },
            "AnchorPeers": [{"Host": org.peer_host, "Port": org.peer_port}],
        }

    def _default_policies(self):
        return {
            "Readers": implicit_meta("ANY Readers"),
            "Writers": implicit_meta("ANY Writers"),
            "Admins": implicit_meta("MAJORITY Admins"),
        }

    def configtx(self):
        orderer = self.config.orderer
        orderer_org = self._orderer_org()
        peer_orgs = [self._peer_org(org) for org in self.config.orgs]

        capabilities = {
            "Channel": {"V2_0": True},
            "Orderer": {"V2_0": True},
            "Application": {"V2_5": True},
        }

        application_policies = self._default_policies()
        application_policies["LifecycleEndorsement"] = implicit_meta(
            "MAJORITY Endorsement"
        )
        application_policies["Endorsement"] = implicit_meta("MAJORITY Endorsement")

        application = {
            "Organizations": None,
            "Policies": application_policies,
            "Capabilities": capabilities["Application"],
        }

        orderer_policies = self._default_policies()
        orderer_policies["BlockValidation"] = implicit_meta("ANY Writers")
        server_cert = orderer.node_dir(HOST_ORGS_DIR) + "/tls/server.crt"

        orderer_defaults = {
            "OrdererType": "etcdraft",
            "EtcdRaft": {
                "Consenters": [
                    {
                        "Host": orderer.host,
                        "Port": orderer.port,
                        "ClientTLSCert": server_cert,
                        "ServerTLSCert": server_cert,
                    }
                ]
            },
            "Addresses": [orderer.address],
            "BatchTimeout": "2s",
            "BatchSize": {
                "MaxMessageCount": 10,
                "AbsoluteMaxBytes": "99 MB",
                "PreferredMaxBytes": "512 KB",
            },
            "Organizations": None,
            "Policies": orderer_policies,
        }

        channel = {
            "Policies": self._default_policies(),
            "Capabilities": capabilities["Channel"],
        }

        genesis_orderer = dict(orderer_defaults)
        genesis_orderer["Organizations"] = [orderer_org]
        genesis_orderer["Capabilities"] = capabilities["Orderer"]

        channel_application = dict(application)
        channel_application["Organizations"] = peer_orgs

        genesis_profile = dict(channel)
        genesis_profile["Orderer"] = genesis_orderer
        genesis_profile["Consortiums"] = {
            self.config.consortium: {"Organizations": peer_orgs}
        }

        channel_profile = {"Consortium": self.config.consortium}
        channel_profile.update(channel)
        channel_profile["Application"] = channel_application

        return {
            "Organizations": [orderer_org] + peer_orgs,
            "Capabilities": capabilities,
            "Application": application,
            "Orderer": orderer_defaults,
            "Channel": channel,
            "Profiles": {
                self.config.genesis_profile: genesis_profile,
                self.config.channel_profile: channel_profile,
            },
        }

    def _orderer_service(self, image):
        orderer = self.config.orderer
        tls = "/var/hyperledger/orderer/tls"
        env = {
            "FABRIC_LOGGING_SPEC": "INFO",
            "ORDERER_GENERAL_LISTENADDRESS": "0.0.0.0",
            "ORDERER_GENERAL_LISTENPORT": orderer.port,
            "ORDERER_GENERAL_LOCALMSPID": orderer.msp_id,
            "ORDERER_GENERAL_LOCALMSPDIR": "/var/hyperledger/orderer/msp",
            "ORDERER_GENERAL_TLS_ENABLED": "true",
            "ORDERER_GENERAL_TLS_PRIVATEKEY": f"{tls}/server.key",
            "ORDERER_GENERAL_TLS_CERTIFICATE": f"{tls}/server.crt",
            "ORDERER_GENERAL_TLS_ROOTCAS": f"[{tls}/ca.crt]",
            "ORDERER_GENERAL_GENESISMETHOD": "file",
            "ORDERER_GENERAL_GENESISFILE": "/var/hyperledger/orderer/orderer.genesis.block",
            "ORDERER_GENERAL_CLUSTER_CLIENTCERTIFICATE": f"{tls}/server.crt",
            "ORDERER_GENERAL_CLUSTER_CLIENTPRIVATEKEY": f"{tls}/server.key",
            "ORDERER_GENERAL_CLUSTER_ROOTCAS": f"[{tls}/ca.crt]",
            "ORDERER_ADMIN_TLS_ENABLED": "true",
            "ORDERER_ADMIN_TLS_CERTIFICATE": f"{tls}/server.crt",
            "ORDERER_ADMIN_TLS_PRIVATEKEY": f"{tls}/server.key",
            "ORDERER_ADMIN_TLS_ROOTCAS": f"[{tls}/ca.crt]",
            "ORDERER_ADMIN_LISTENADDRESS": f"0.0.0.0:{orderer.admin_port}",
            "ORDERER_OPERATIONS_LISTENADDRESS": f"0.0.0.0:{orderer.operations_port}",
            "ORDERER_METRICS_PROVIDER": "prometheus",
        }
        node_dir = "./" + orderer.node_dir(HOST_ORGS_DIR)
        return {
            "container_name": orderer.host,
            "image": f"{image}-orderer:{self.config.image_tag}",
            "environment": env_list(env),
            "working_dir": "/opt/gopath/src/github.com/hyperledger/fabric",
            "command": "orderer",
            "volumes": [
                "./system-genesis-block/genesis.block:/var/hyperledger/orderer/orderer.genesis.block",
                f"{node_dir}/msp:/var/hyperledger/orderer/msp",
                f"{node_dir}/tls:{tls}",
                f"{orderer.host}:/var/hyperledger/production/orderer",
            ],
            "ports": [
                f"{port}:{port}"
                for port in (orderer.port, orderer.admin_port, orderer.operations_port)
            ],
            "networks": [self.config.docker_network],
        }

    def _peer_service(self, org, image):
        tls = "/etc/hyperledger/fabric/tls"
        env = {
            "CORE_VM_ENDPOINT": "unix:///host/var/run/docker.sock",
            "CORE_VM_DOCKER_HOSTCONFIG_NETWORKMODE": self.config.docker_network,
            "FABRIC_LOGGING_SPEC": "INFO",
            "CORE_PEER_TLS_ENABLED": "true",
            "CORE_PEER_PROFILE_ENABLED": "false",
            "CORE_PEER_TLS_CERT_FILE": f"{tls}/server.crt",
            "CORE_PEER_TLS_KEY_FILE": f"{tls}/server.key",
            "CORE_PEER_TLS_ROOTCERT_FILE": f"{tls}/ca.crt",
            "CORE_PEER_ID": org.peer_host,
            "CORE_PEER_ADDRESS": org.peer_address,
            "CORE_PEER_LISTENADDRESS": f"0.0.0.0:{org.peer_port}",
            "CORE_PEER_CHAINCODEADDRESS": f"{org.peer_host}:{org.chaincode_port}",
            "CORE_PEER_CHAINCODELISTENADDRESS": f"0.0.0.0:{org.chaincode_port}",
            "CORE_PEER_GOSSIP_BOOTSTRAP": org.peer_address,
            "CORE_PEER_GOSSIP_EXTERNALENDPOINT": org.peer_address,
            "CORE_PEER_LOCALMSPID": org.msp_id,
            "CORE_OPERATIONS_LISTENADDRESS": f"0.0.0.0:{org.operations_port}",
            "CORE_METRICS_PROVIDER": "prometheus",
        }
        peer_dir = "./" + org.peer_dir(HOST_ORGS_DIR)
        return {
            "container_name": org.peer_host,
            "image": f"{image}-peer:{self.config.image_tag}",
            "environment": env_list(env),
            "volumes": [
                "/var/run/:/host/var/run/",
                f"{peer_dir}/msp:/etc/hyperledger/fabric/msp",
                f"{peer_dir}/tls:{tls}",
                f"{org.peer_host}:/var/hyperledger/production",
            ],
            "working_dir": CLI_PEER_DIR,
            "command": "peer node start",
            "ports": [
                f"{org.peer_port}:{org.peer_port}",
                f"{org.operations_port}:{org.operations_port}",
            ],
            "networks": [self.config.docker_network],
        }

    def _cli_service(self, image):
        first = self.config.orgs[0]
        orderer = self.config.orderer
        env = {
            "GOPATH": "/opt/gopath",
            "CORE_VM_ENDPOINT": "unix:///host/var/run/docker.sock",
            "FABRIC_LOGGING_SPEC": "INFO",
            "CORE_PEER_ID": "cli",
            "CORE_PEER_TLS_ENABLED": "true",
            "ORDERER_CA_CLI": orderer.tls_ca(),
        }
        env.update(first.admin_env())
        return {
            "container_name": self.config.cli_container,
            "image": f"{image}-tools:{self.config.image_tag}",
            "tty": True,
            "stdin_open": True,
            "environment": env_list(env),
            "working_dir": CLI_PEER_DIR,
            "command": "/bin/bash",
            "volumes": [
                "/var/run/:/host/var/run/",
                f"./organizations:{CLI_PEER_DIR}/organizations",
                f"./channel-artifacts:{CLI_PEER_DIR}/channel-artifacts",
                f"./system-genesis-block:{CLI_PEER_DIR}/system-genesis-block",
            ],
            "depends_on": [orderer.host] + [org.peer_host for org in self.config.orgs],
            "networks": [self.config.docker_network],
        }

    def compose(self, image="hyperledger/fabric"):
        orderer = self.config.orderer
        network = self.config.docker_network

        services = {orderer.host: self._orderer_service(image)}
        for org in self.config.orgs:
            services[org.peer_host] = self._peer_service(org, image)
        services["cli"] = self._cli_service(image)

        volumes = {orderer.host: None}
        for org in self.config.orgs:
            volumes[org.peer_host] = None

        return {
            "volumes": volumes,
            "networks": {network: {"name": network, "driver": "bridge"}},
            "services": services,
        }
