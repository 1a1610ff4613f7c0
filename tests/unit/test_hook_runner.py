from pxc.RUNNERS.hook_runner import HookRunner


def test_hooks_run_through_shell_in_order(executor):
    failures = HookRunner(executor).run('post-start', ['echo one', 'echo two'])
    assert failures == []
    assert executor.calls == [['sh', '-c', 'echo one'], ['sh', '-c', 'echo two']]


def test_failing_hook_does_not_stop_the_rest(executor):
    executor.fail(['-c', 'exit 3'], stderr='')
    failures = HookRunner(executor).run('pre-stop', ['exit 3', 'echo after'])
    assert failures == [('exit 3', 'exit status 1')]
    assert executor.calls[-1] == ['sh', '-c', 'echo after']


def test_no_hooks(executor):
    assert HookRunner(executor).run('post-stop', []) == []
    assert executor.calls == []
