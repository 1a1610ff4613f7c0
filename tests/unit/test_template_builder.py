import pytest

from pxc.BUILDERS.template_builder import EphemeralIdAllocator, TemplateBuilder
from pxc.exceptions import (
    BuildError,
    BuildPhase,
    CleanupStepWarning,
    ExportError,
    ReadinessTimeoutError,
    StepExecutionError,
)
from pxc.MANAGERS.config_manager import Settings
from pxc.MODELS.build_manifest import BuildManifest

VMID = '10042'


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def builder(client, sleeps):
    settings = Settings(ready_attempts=3, ready_interval=0.5)
    return TemplateBuilder(
        client,
        settings,
        allocator=EphemeralIdAllocator(clock=lambda: 42),
        sleep=sleeps.append,
    )


def manifest(setup, **extra):
    return BuildManifest.from_mapping({'from': 'ubuntu:22.04', 'setup': setup, **extra})


def test_simple_build_reaches_export(builder, executor):
    result = builder.build(manifest([{'run': 'apt-get update'}]), 'web:latest')

    assert result.executed_step_labels == ['Step 1']
    assert result.template_name == 'web:latest'
    assert result.template_reference == VMID
    assert result.ephemeral_id == 10042
    assert result.warnings == []
    assert executor.commands() == [
        ['list'],
        ['create', VMID, 'ubuntu:22.04', '--hostname', 'pxc-build-10042',
         '--memory', '512', '--cores', '1', '--unprivileged', '1', '--storage', 'local-lvm'],
        ['start', VMID],
        ['exec', VMID, '--', 'echo', 'ready'],
        ['exec', VMID, '--', 'sh', '-c', 'apt-get update'],
        ['stop', VMID],
        ['template', VMID],
    ]


def test_export_preserves_container(builder, executor):
    builder.build(manifest([{'run': 'true'}]), 'web:latest')
    assert 'destroy' not in executor.verbs()


def test_readiness_polls_until_ready(builder, executor, sleeps):
    attempts = []

    def is_ready(vmid):
        attempts.append(vmid)
        return len(attempts) == 2

    builder.client.is_ready = is_ready
    builder.build(manifest([{'run': 'true'}]), 'web:latest')
    assert len(attempts) == 2
    assert sleeps == [0.5]


def test_readiness_timeout_destroys_container(builder, executor, sleeps):
    executor.fail(['exec', VMID, '--', 'echo', 'ready'])

    with pytest.raises(ReadinessTimeoutError) as exc:
        builder.build(manifest([{'run': 'true'}]), 'web:latest')

    assert exc.value.attempts == 3
    assert exc.value.phase == BuildPhase.AWAIT_READY
    assert len(sleeps) == 2
    assert executor.commands()[-2:] == [['stop', VMID], ['destroy', VMID]]
    assert 'template' not in executor.verbs()


def test_setup_failure_short_circuits(builder, executor):
    executor.fail(['exec', VMID, '--', 'sh', '-c', 'false'])
    m = manifest(
        [{'run': 'true'}, {'run': 'false'}, {'run': 'never'}],
        cleanup=[{'run': 'apt-get clean'}],
        resources={'cores': 2},
    )

    with pytest.raises(StepExecutionError) as exc:
        builder.build(m, 'web:latest')

    assert exc.value.position == 2
    assert exc.value.label == 'Step 2'
    assert exc.value.phase == BuildPhase.SETUP
    assert exc.value.container_id == 10042
    run_commands = [c[-1] for c in executor.commands('exec') if c[3:5] == ['sh', '-c']]
    assert run_commands == ['true', 'false']
    assert 'set' not in executor.verbs()
    assert 'template' not in executor.verbs()
    assert executor.commands()[-1] == ['destroy', VMID]


def test_cleanup_failure_is_a_warning(builder, executor):
    executor.fail(['exec', VMID, '--', 'sh', '-c', 'rm -rf /var/cache/apt'])
    m = manifest(
        [{'run': 'true'}],
        cleanup=[{'run': 'rm -rf /var/cache/apt'}, {'run': 'apt-get clean'}],
    )

    result = builder.build(m, 'web:latest')

    assert result.template_reference == VMID
    assert result.executed_step_labels == ['Step 1', 'Cleanup 2']
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert isinstance(warning, CleanupStepWarning)
    assert warning.position == 1
    assert warning.label == 'Cleanup 1'
    assert 'template' in executor.verbs()
    assert 'destroy' not in executor.verbs()


def test_apply_config_in_single_call(builder, executor):
    m = manifest(
        [{'run': 'true'}],
        resources={'cores': 2, 'memory': 1024},
        features={'nesting': True, 'keyctl': True},
    )
    builder.build(m, 'web:latest')
    assert executor.commands('set') == [
        ['set', VMID, '-cores', '2', '-memory', '1024', '-features', 'nesting=1,keyctl=1'],
    ]


def test_apply_config_skipped_without_values(builder, executor):
    builder.build(manifest([{'run': 'true'}], resources={}), 'web:latest')
    assert 'set' not in executor.verbs()


def test_apply_config_failure(builder, executor):
    executor.fail(['set', VMID])
    with pytest.raises(BuildError) as exc:
        builder.build(manifest([{'run': 'true'}], resources={'memory': 256}), 'web:latest')
    assert exc.value.phase == BuildPhase.APPLY_CONFIG
    assert executor.commands()[-1] == ['destroy', VMID]


def test_create_failure_leaves_nothing_to_clean(builder, executor):
    executor.fail(['create'])
    with pytest.raises(BuildError) as exc:
        builder.build(manifest([{'run': 'true'}]), 'web:latest')
    assert exc.value.phase == BuildPhase.CREATE
    assert executor.verbs() == ['list', 'create']


def test_stop_failure_is_an_export_error(builder, executor):
    executor.fail(['stop', VMID])
    with pytest.raises(ExportError) as exc:
        builder.build(manifest([{'run': 'true'}]), 'web:latest')
    assert exc.value.phase == BuildPhase.STOP
    assert executor.commands()[-1] == ['destroy', VMID]


def test_export_failure_destroys_container(builder, executor):
    executor.fail(['template', VMID])
    with pytest.raises(ExportError) as exc:
        builder.build(manifest([{'run': 'true'}]), 'web:latest')
    assert exc.value.phase == BuildPhase.EXPORT
    assert exc.value.cleanup_error is None
    assert executor.commands()[-1] == ['destroy', VMID]


def test_destroy_failure_is_attached_to_cause(builder, executor):
    executor.fail(['template', VMID], stderr='storage full')
    executor.fail(['destroy', VMID], stderr='container locked')

    with pytest.raises(ExportError) as exc:
        builder.build(manifest([{'run': 'true'}]), 'web:latest')

    assert 'storage full' in str(exc.value)
    assert exc.value.cleanup_error is not None
    assert 'container locked' in str(exc.value)


def test_listing_failure_does_not_stop_build(builder, executor):
    executor.fail(['list'])
    result = builder.build(manifest([{'run': 'true'}]), 'web:latest')
    assert result.template_reference == VMID


def test_allocated_id_skips_listed_containers(builder, executor):
    executor.respond(['list'], stdout=(
        "VMID       Status     Lock         Name\n"
        "10042      running                 other-build\n"
    ))
    result = builder.build(manifest([{'run': 'true'}]), 'web:latest')
    assert result.template_reference == '10043'


def test_build_args_substituted(builder, executor):
    builder.build(
        manifest([{'run': 'echo ${VERSION} $VERSION $HOME'}]),
        'web:latest',
        build_args={'VERSION': '1.2'},
    )
    assert ['exec', VMID, '--', 'sh', '-c', 'echo 1.2 1.2 $HOME'] in executor.commands()


class TestEphemeralIdAllocator:
    """Tests for build container id allocation."""

    def test_time_based_id(self):
        assert EphemeralIdAllocator(clock=lambda: 1700000123.7).allocate() == 10000 + 123

    def test_skips_ids_in_use(self):
        allocator = EphemeralIdAllocator(clock=lambda: 42)
        assert allocator.allocate({10042, 10043}) == 10044

    def test_wraps_around_range(self):
        allocator = EphemeralIdAllocator(clock=lambda: 99999)
        assert allocator.allocate({109999}) == 10000

    def test_exhausted_range(self):
        allocator = EphemeralIdAllocator(clock=lambda: 0)
        with pytest.raises(BuildError):
            allocator.allocate(range(10000, 110000))
