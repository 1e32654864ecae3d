import re
import json
import logging

from medtrace.common.errors import ChaincodePackageParseFailed


logger = logging.getLogger(__name__)


PACKAGE_LINE = re.compile(r"^\s*Package ID:\s*(?P<id>.+?),\s*Label:\s*(?P<label>\S+)\s*$")


def _from_json(output):
    try:
        data = json.loads(output)
    except ValueError:
        return None

    if not isinstance(data, dict):
        return None

    installed = data.get("installed_chaincodes") or []
    return [
        (entry.get("package_id"), entry.get("label"))
        for entry in installed
        if isinstance(entry, dict)
    ]


def _from_text(output):
    packages = []
    for line in output.splitlines():
        match = PACKAGE_LINE.match(line)
        if match:
            packages.append((match.group("id"), match.group("label")))
    return packages


def installed_packages(output):
    """Lists (package_id, label) pairs of a queryinstalled output,
    either its JSON form or its human readable text form

    Arguments:
        output {string} -- stdout of `peer lifecycle chaincode queryinstalled`

    Returns:
        list -- (package_id, label) tuples in output order
    """
    packages = _from_json(output.strip())
    if packages is None:
        packages = _from_text(output)
    return packages


def parse_package_id(output, label):
    """Extracts the id of the package installed under label

    Arguments:
        output {string} -- stdout of `peer lifecycle chaincode queryinstalled`
        label {string} -- Expected package label, e.g. medtracecc_1.0

    Raises:
        ChaincodePackageParseFailed -- No package carries exactly that label

    Returns:
        string -- The package id, e.g. medtracecc_1.0:abcd
    """
    packages = installed_packages(output)
    logger.debug(f"Installed packages found: {packages}")

    for package_id, package_label in packages:
        if package_label == label and package_id:
            return package_id

    raise ChaincodePackageParseFailed(
        f"could not parse package id for label '{label}'",
        step="install",
        output=output,
    )
