import logging

from medtrace.common.errors import ReadinessTimeout
from medtrace.common.scheduler import retry


logger = logging.getLogger(__name__)


class ContainerNode:
    """Node reference backed by the container engine: logs come from
    the node container, reachability is checked from the control
    plane container (name resolution of the node host).

    Arguments:
        engine {ContainerEngine} -- Engine queried for logs and exec
        name {string} -- Container whose logs carry the readiness phrase
        vantage {string} -- Container resolving the host
    """

    def __init__(self, engine, name, vantage):
        self.engine = engine
        self.name = name
        self.vantage = vantage

    async def logs(self):
        return await self.engine.logs(self.name)

    async def resolves(self, host):
        return await self.engine.exec_ok(self.vantage, ["getent", "hosts", host])


def phrase_predicate(phrases):
    """Log predicate true when any of the known readiness phrases shows up"""
    phrases = list(phrases)

    def predicate(logs):
        for phrase in phrases:
            if phrase in logs:
                logger.info(f"Log indicates '{phrase}'")
                return True
        return False

    return predicate


class ReadinessProbe:
    """Two-phase readiness wait: (a) a log signal, then (b) the node
    host being resolvable from the control plane. Each phase has its own
    attempt budget, exhausting either one raises ReadinessTimeout.

    Arguments:
        predicate {callable} -- Log text -> bool
        log_policy {RetryPolicy} -- Budget of phase (a)
        reach_policy {RetryPolicy} -- Budget of phase (b)
    """

    def __init__(self, predicate, log_policy, reach_policy):
        self.predicate = predicate
        self.log_policy = log_policy
        self.reach_policy = reach_policy

    @classmethod
    def from_config(cls, config):
        return cls(
            phrase_predicate(config.ready_phrases),
            config.log_policy,
            config.reach_policy,
        )

    async def wait_for_logs(self, node):
        state = {"logs": ""}

        async def poll():
            state["logs"] = await node.logs()
            return self.predicate(state["logs"])

        def waiting(attempt, _):
            logger.debug(
                f"Still waiting for {node.name} logs... attempt "
                f"{attempt}/{self.log_policy.max_attempts}"
            )

        ok, _, attempts = await retry(
            poll, self.log_policy, uid=f"logs-{node.name}", on_failure=waiting
        )
        if not ok:
            raise ReadinessTimeout(
                f"{node.name} log did not show readiness after {attempts} attempts",
                step="readiness-logs",
                output=state["logs"],
            )
        return attempts

    async def wait_for_reachability(self, node, host):
        async def poll():
            return await node.resolves(host)

        def waiting(attempt, _):
            logger.debug(
                f"Resolution of {host} failed, retrying... attempt "
                f"{attempt}/{self.reach_policy.max_attempts}"
            )

        ok, _, attempts = await retry(
            poll, self.reach_policy, uid=f"resolve-{host}", on_failure=waiting
        )
        if not ok:
            raise ReadinessTimeout(
                f"could not resolve {host} after {attempts} attempts",
                step="readiness-reachability",
            )
        return attempts

    async def wait_until_ready(self, node, host):
        """Returns only once both signals succeeded at least once

        Arguments:
            node {object} -- Provides async logs() and resolves(host)
            host {string} -- Host name that must be resolvable

        Returns:
            tuple -- (int, int) Attempts used by each phase
        """
        logger.info(f"Waiting for {node.name} to be ready")
        log_attempts = await self.wait_for_logs(node)
        reach_attempts = await self.wait_for_reachability(node, host)
        logger.info(f"{node.name} is ready and {host} resolves")
        return log_attempts, reach_attempts
