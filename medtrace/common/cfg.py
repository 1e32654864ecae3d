import sys
import logging
import argparse

import yaml

from medtrace.common.errors import InvalidConfig


logger = logging.getLogger(__name__)


class ArgumentParser(argparse.ArgumentParser):
    """Unknown modes and flags print the full help and exit with 1"""

    def error(self, message):
        self.print_help(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


class Config:
    """Command line of a medtrace command plus its optional YAML file.
    Values come from the defaults, then the file, then the flags.

    Arguments:
        prog {string} -- Command name, e.g. medtrace-network
        description {string} -- Help header
    """

    def __init__(self, prog, description):
        self.cfg = None
        self.parser = ArgumentParser(prog=prog, description=description, allow_abbrev=False)
        self.parser.add_argument(
            "-verbose",
            action="store_true",
            default=None,
            help="Print every CLI output and debug logs (default: False)",
        )
        self.parser.add_argument(
            "--config", type=str, help="YAML file overriding the defaults (default: None)"
        )
        self.parser.add_argument(
            "--parallel",
            type=int,
            help="Max organizations handled concurrently, 1 is sequential (default: 1)",
        )
        self.parser.add_argument(
            "--deadline",
            type=float,
            help="Seconds allowed for the whole run (default: None)",
        )

    def add_argument(self, *args, **kwargs):
        return self.parser.add_argument(*args, **kwargs)

    def print_help(self):
        self.parser.print_help()

    def get_cfg_attrib(self, name):
        try:
            value = getattr(self.cfg, name)
        except AttributeError as e:
            logger.debug(f"Argparser attrib name not found - exception {e}")
            value = None
        return value

    def load(self, filename):
        try:
            with open(filename, "r") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise InvalidConfig(f"could not read config file {filename}: {e}", step="config")
        except yaml.YAMLError as e:
            raise InvalidConfig(f"config file {filename} is not valid YAML: {e}", step="config")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise InvalidConfig(f"config file {filename} must hold a mapping", step="config")
        return data

    def parse(self, argv=None):
        self.cfg = self.parser.parse_args(argv)
        return self.cfg

    def cfg_args(self):
        filename = self.get_cfg_attrib("config")
        if filename:
            return self.load(filename)
        return {}

    def settings(self, flags, section=None):
        """Merges the config file and the command line flags

        Arguments:
            flags {dict} -- Config key -> argparse attribute name; a flag
            left unset on the command line keeps the file value

        Keyword Arguments:
            section {string} -- Read the file keys under this top
            level key only (default: {None})

        Returns:
            dict -- Merged settings
        """
        data = self.cfg_args()
        if section:
            data = data.get(section) or {}
            if not isinstance(data, dict):
                raise InvalidConfig(f"config section '{section}' must be a mapping", step="config")
        data = dict(data)

        for key, attrib in flags.items():
            value = self.get_cfg_attrib(attrib)
            if value is not None:
                data[key] = value

        logger.debug(f"Settings: {data}")
        return data
