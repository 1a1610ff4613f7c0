"""
Execution of stack lifecycle hooks on the host.
"""
import logging
from typing import List, Sequence, Tuple

from .command_executor import CommandExecutor

logger = logging.getLogger(__name__)


class HookRunner:
    """
    Runs hook commands through the host shell, one invocation per hook.
    """
    def __init__(self, executor: CommandExecutor, shell: str = "sh"):
        """
        :param executor: Executor used for every hook.
        :param shell: Shell that interprets each hook string.
        """
        self.executor = executor
        self.shell = shell

    def run(self, stage: str, hooks: Sequence[str]) -> List[Tuple[str, str]]:
        """
        Runs every hook of a stage in order. A failing hook does not stop
        the remaining ones.

        :param stage: Lifecycle stage name, used in log messages.
        :param hooks: Shell command strings.
        :return: ``(hook, reason)`` for every hook that failed.
        """
        failures = []
        if hooks:
            logger.info("Executing %s hooks", stage)
        for hook in hooks:
            result = self.executor.run(self.shell, ["-c", hook])
            if not result.ok:
                reason = result.stderr.strip() or f"exit status {result.returncode}"
                failures.append((hook, reason))
        return failures
