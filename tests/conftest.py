import pytest

from pxc.RUNNERS.command_executor import CommandResult
from pxc.RUNNERS.container_client import ContainerClient


class RecordingExecutor:
    """
    Stands in for CommandExecutor: records every invocation and answers
    from configured responses. Unmatched commands succeed.
    """
    def __init__(self):
        self.calls = []
        self._responses = []

    def respond(self, prefix, returncode=0, stdout="", stderr=""):
        """
        Answer invocations whose arguments start with ``prefix``. Later
        responses take precedence over earlier ones.
        """
        prefix = [str(p) for p in prefix]
        self._responses.append((prefix, returncode, stdout, stderr))

    def fail(self, prefix, stderr="boom"):
        self.respond(prefix, returncode=1, stderr=stderr)

    def run(self, command, args, capture_output=False):
        args = [str(a) for a in args]
        self.calls.append([command] + args)
        for prefix, returncode, stdout, stderr in reversed(self._responses):
            if args[:len(prefix)] == prefix:
                return CommandResult(command, args, returncode, stdout, stderr)
        return CommandResult(command, args, 0)

    def commands(self, verb=None):
        """Tool invocations without the tool name, optionally filtered by verb."""
        return [call[1:] for call in self.calls if verb is None or call[1] == verb]

    def verbs(self):
        return [call[1] for call in self.calls]


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def client(executor):
    return ContainerClient(executor)
