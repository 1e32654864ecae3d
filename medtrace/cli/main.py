import sys
import signal
import asyncio
import logging

from medtrace.common.cfg import Config
from medtrace.common.errors import ProvisionError, ChannelOperationFailed
from medtrace.common.logs import Logs, LOGS_DIR
from medtrace.common.scheduler import run_cancellable
from medtrace.design.fabric import NetworkConfig, ChaincodeDefinition
from medtrace.network.lifecycle import NetworkLifecycle
from medtrace.chaincode.lifecycle import ChaincodeLifecycle
from medtrace.cli.output import print_cli


logger = logging.getLogger(__name__)


NETWORK_MODES = ["up", "down", "restart", "generate"]

NETWORK_FLAGS = {
    "workdir": "workdir",
    "orgs": "orgs",
    "channel": "channel",
    "image_tag": "image_tag",
    "parallel": "parallel",
    "verbose": "verbose",
}

CHAINCODE_NETWORK_FLAGS = {
    "workdir": "workdir",
    "channel": "channel",
    "parallel": "parallel",
    "verbose": "verbose",
}

CHAINCODE_FLAGS = {
    "name": "name",
    "version": "version",
    "sequence": "sequence",
    "source_path": "source_path",
    "cli_path": "cli_path",
    "init_args": "init_args",
}


class App:
    """Common run of a medtrace command: parse, configure logs, run the
    orchestration under its deadline with SIGINT/SIGTERM mapped to
    cancellation, and turn the outcome into an exit code.

    Keyword Arguments:
        runner {ProcessRunner} -- Process runner handed to the orchestrators
        engine {ContainerEngine} -- Container engine handed to the orchestrators
        log_dir {string} -- Directory of the command log file
        screen {bool} -- Also log to the terminal (default: {True})
    """

    name = "medtrace"
    description = ""

    def __init__(self, runner=None, engine=None, log_dir=LOGS_DIR, screen=True):
        self.cfg = Config(self.name, self.description)
        self.runner = runner
        self.engine = engine
        self.log_dir = log_dir
        self.screen = screen
        self.config = None
        self.arguments()

    def arguments(self):
        pass

    def ready(self):
        return True

    def settings(self):
        raise NotImplementedError

    async def execute(self):
        raise NotImplementedError

    def logs(self):
        filename = Logs.filepath(self.name, self.log_dir)
        Logs(filename, screen=self.screen, debug=self.config.verbose)

    async def main(self, deadline=None):
        task = asyncio.ensure_future(self.execute())
        loop = asyncio.get_running_loop()

        handled = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, task.cancel)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug(f"Signal {sig} not handled - {e}")
            else:
                handled.append(sig)

        try:
            return await run_cancellable(task, deadline)
        finally:
            for sig in handled:
                loop.remove_signal_handler(sig)

    def failure(self, error):
        logger.error(f"{self.name} failed: {error}")
        print_cli(None, err=str(error), style="error")

        if isinstance(error, ChannelOperationFailed):
            print_cli(None, err=f"organizations joined so far: {error.joined}", style="warning")
        if error.output:
            print_cli(None, err=error.output.strip(), style="main")

    def run(self, argv=None):
        """Runs the command line argv

        Keyword Arguments:
            argv {list} -- Arguments, sys.argv[1:] when None (default: {None})

        Returns:
            int -- Exit code, 0 on success and 1 on any fatal failure
        """
        self.cfg.parse(argv)
        if not self.ready():
            return 0

        try:
            self.settings()
        except (ProvisionError, ValueError) as e:
            print_cli(None, err=str(e), style="error")
            return 1

        self.logs()
        deadline = self.cfg.get_cfg_attrib("deadline")

        try:
            asyncio.run(self.main(deadline))
        except ProvisionError as e:
            self.failure(e)
            return 1

        logger.info(f"{self.name} finished")
        return 0


class NetworkApp(App):
    name = "medtrace-network"
    description = "Bring the MedTrace Fabric test network up or down"

    def arguments(self):
        self.cfg.add_argument(
            "mode",
            nargs="?",
            choices=NETWORK_MODES,
            help="up: generate artifacts, start containers and form the channel; "
            "down: stop containers and remove artifacts; restart: down then up; "
            "generate: identities and channel artifacts only",
        )
        self.cfg.add_argument("--workdir", type=str, help="Artifacts directory (default: cwd)")
        self.cfg.add_argument("--orgs", type=int, help="Number of organizations (default: 4)")
        self.cfg.add_argument("--channel", type=str, help="Channel name (default: medtrace)")
        self.cfg.add_argument(
            "--image-tag", dest="image_tag", type=str, help="Fabric images tag (default: latest)"
        )

    def ready(self):
        if self.cfg.get_cfg_attrib("mode") is None:
            self.cfg.print_help()
            return False
        return True

    def settings(self):
        self.config = NetworkConfig.parse(self.cfg.settings(NETWORK_FLAGS))

    def lifecycle(self):
        return NetworkLifecycle(self.config, runner=self.runner, engine=self.engine)

    async def execute(self):
        mode = self.cfg.get_cfg_attrib("mode")
        lifecycle = self.lifecycle()
        channel = self.config.channel

        if mode == "up":
            print_cli(f"Starting network with {self.config.n_orgs} organizations")
            state = await lifecycle.bring_up()
            print_cli(f"Network is up, channel {channel} {state.value}", style="normal")

        elif mode == "down":
            print_cli("Stopping network")
            for warning in await lifecycle.tear_down():
                print_cli(warning, style="warning")
            print_cli("Network stopped", style="normal")

        elif mode == "restart":
            print_cli("Restarting network")
            state = await lifecycle.restart()
            print_cli(f"Network restarted, channel {channel} {state.value}", style="normal")

        elif mode == "generate":
            print_cli("Generating identities and channel artifacts")
            generated = await lifecycle.generate()
            msg = "Artifacts generated" if generated else "Artifacts already present"
            print_cli(msg, style="normal")

        return mode


class ChaincodeApp(App):
    name = "medtrace-chaincode"
    description = "Deploy the MedTrace chaincode on a running network"
    definition = None

    def arguments(self):
        self.cfg.add_argument("-ccn", dest="name", type=str, help="Chaincode name (default: medtracecc)")
        self.cfg.add_argument("-ccv", dest="version", type=str, help="Chaincode version (default: 1.0)")
        self.cfg.add_argument("-ccs", dest="sequence", type=str, help="Definition sequence (default: 1)")
        self.cfg.add_argument(
            "-ccp",
            dest="source_path",
            type=str,
            help="Chaincode source on the host (default: ../chaincode_src/medtrace-go)",
        )
        self.cfg.add_argument(
            "-ccicli",
            dest="cli_path",
            type=str,
            help="Chaincode path inside the CLI container "
            "(default: /opt/gopath/src/github.com/chaincode)",
        )
        self.cfg.add_argument("-c", dest="channel", type=str, help="Channel name (default: medtrace)")
        self.cfg.add_argument(
            "-cci",
            dest="init_args",
            type=str,
            help="Init call JSON args, init is skipped when empty (default: none)",
        )
        self.cfg.add_argument("--workdir", type=str, help="Network artifacts directory (default: cwd)")

    def settings(self):
        self.config = NetworkConfig.parse(self.cfg.settings(CHAINCODE_NETWORK_FLAGS))
        self.definition = ChaincodeDefinition.parse(
            self.cfg.settings(CHAINCODE_FLAGS, section="chaincode")
        )

    def lifecycle(self):
        return ChaincodeLifecycle(self.config, runner=self.runner, engine=self.engine)

    async def execute(self):
        print_cli(f"Deploying chaincode {self.definition.name} on channel {self.config.channel}")
        report = await self.lifecycle().deploy(self.definition)

        for key, value in report.info().items():
            print_cli(f"{key}: {value}", style="normal")
        return report


def main_network():
    sys.exit(NetworkApp().run())


def main_chaincode():
    sys.exit(ChaincodeApp().run())


if __name__ == "__main__":
    main_network()
