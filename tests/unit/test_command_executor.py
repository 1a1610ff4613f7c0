import logging
import sys

from pxc.RUNNERS.command_executor import CommandExecutor, CommandResult


def test_successful_command_captures_output():
    result = CommandExecutor().run(sys.executable, ['-c', 'print("hello")'])
    assert result.ok
    assert result.stdout.strip() == 'hello'


def test_failing_command_reports_status_and_stderr():
    result = CommandExecutor().run(
        sys.executable, ['-c', 'import sys; sys.stderr.write("bad"); sys.exit(3)']
    )
    assert not result.ok
    assert result.returncode == 3
    assert result.stderr == 'bad'


def test_arguments_are_not_shell_interpreted():
    result = CommandExecutor().run(sys.executable, ['-c', 'import sys; print(sys.argv[1])', '$HOME; echo x'])
    assert result.stdout.strip() == '$HOME; echo x'


def test_missing_executable():
    result = CommandExecutor().run('pxc-no-such-tool', ['list'])
    assert result.returncode == 127
    assert 'not found' in result.stderr


def test_dry_run_executes_nothing(tmp_path, caplog):
    marker = tmp_path / 'marker'
    executor = CommandExecutor(dry_run=True)
    with caplog.at_level(logging.INFO):
        result = executor.run('touch', [str(marker)])
    assert result.ok
    assert not marker.exists()
    assert 'DRY RUN' in caplog.text


def test_verbose_capture_override():
    result = CommandExecutor(verbose=True).run(
        sys.executable, ['-c', 'print("ready")'], capture_output=True
    )
    assert result.stdout.strip() == 'ready'


def test_args_are_stringified():
    result = CommandExecutor(dry_run=True).run('pct', ['start', 101])
    assert result.args == ['start', '101']
    assert result.command_line == 'pct start 101'


def test_command_result_ok():
    assert CommandResult('pct', [], 0).ok
    assert not CommandResult('pct', [], 1).ok
