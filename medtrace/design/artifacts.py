import os
import glob
import shutil
import logging

import yaml


logger = logging.getLogger(__name__)


IDENTITIES_DIR = "organizations"
GENESIS_DIR = "system-genesis-block"
CHANNEL_DIR = "channel-artifacts"

RENDERED_PATTERNS = [
    "crypto-config-*.yaml",
    "configtx.yaml",
    "docker-compose.yaml",
    "log.txt",
    "*.tar.gz",
]


class ArtifactStore:
    """Presence checks, writes and wholesale removal of everything the
    generators and the renderer leave in the working directory.
    Idempotence is decided by existence only, content is never compared.
    """

    def __init__(self, workdir, channel):
        self.workdir = workdir
        self.channel = channel

    def path(self, *parts):
        return os.path.join(self.workdir, *parts)

    @property
    def identities_dir(self):
        return self.path(IDENTITIES_DIR)

    @property
    def genesis_block(self):
        return self.path(GENESIS_DIR, "genesis.block")

    @property
    def channel_tx(self):
        return self.path(CHANNEL_DIR, f"{self.channel}.tx")

    @property
    def channel_block(self):
        return self.path(CHANNEL_DIR, f"{self.channel}.block")

    @property
    def compose_file(self):
        return self.path("docker-compose.yaml")

    def anchors_tx(self, org):
        return self.path(CHANNEL_DIR, f"{org.msp_id}anchors.tx")

    @property
    def channel_progress(self):
        return self.path(CHANNEL_DIR, f"{self.channel}.progress.yaml")

    def has_identities(self):
        return os.path.isdir(self.identities_dir)

    def has_channel_artifacts(self):
        return os.path.isfile(self.channel_tx) and os.path.isfile(self.genesis_block)

    def has_channel_block(self):
        return os.path.isfile(self.channel_block)

    def has_compose_file(self):
        return os.path.isfile(self.compose_file)

    def save_channel_progress(self, state, joined, anchored):
        """Records how far channel formation got, written after every
        successful create, join and anchor update"""
        text = yaml.safe_dump(
            {"state": state, "joined": list(joined), "anchored": list(anchored)},
            default_flow_style=False,
            sort_keys=False,
        )
        return self.write_text(os.path.join(CHANNEL_DIR, f"{self.channel}.progress.yaml"), text)

    def load_channel_progress(self):
        if not os.path.isfile(self.channel_progress):
            return {}
        with open(self.channel_progress) as fp:
            data = yaml.safe_load(fp)
        return data if isinstance(data, dict) else {}

    def discard_channel_progress(self):
        if os.path.isfile(self.channel_progress):
            os.remove(self.channel_progress)

    def ensure_dirs(self):
        for dirname in (self.workdir, self.path(GENESIS_DIR), self.path(CHANNEL_DIR)):
            os.makedirs(dirname, exist_ok=True)

    def write_text(self, filename, text):
        filepath = self.path(filename)
        os.makedirs(os.path.dirname(filepath), exist_ok=True)
        with open(filepath, "w") as fp:
            fp.write(text)
        logger.debug(f"Saved file {filepath}")
        return filepath

    def listing(self):
        """Every artifact path currently present, sorted"""
        found = []
        for dirname in (IDENTITIES_DIR, GENESIS_DIR, CHANNEL_DIR):
            if os.path.exists(self.path(dirname)):
                found.append(self.path(dirname))
        for pattern in RENDERED_PATTERNS:
            found.extend(glob.glob(self.path(pattern)))
        return sorted(set(found))

    def clear(self):
        """Removes every known artifact, missing ones are ignored

        Returns:
            list -- The removed paths
        """
        removed = []
        for filepath in self.listing():
            try:
                if os.path.isdir(filepath) and not os.path.islink(filepath):
                    shutil.rmtree(filepath)
                else:
                    os.remove(filepath)
            except FileNotFoundError:
                continue
            removed.append(filepath)
            logger.info(f"Removed {filepath}")
        return removed
