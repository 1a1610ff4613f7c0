import pytest

from pxc.exceptions import ValidationError
from pxc.MODELS.build_manifest import (
    BuildManifest,
    CopyStep,
    EnvStep,
    Features,
    Resources,
    RunStep,
    WorkDirStep,
    parse_step,
)


def test_parse_minimal_manifest():
    manifest = BuildManifest.from_mapping({
        'from': 'ubuntu:22.04',
        'setup': [{'run': 'apt-get update'}],
    })

    assert manifest.base_image == 'ubuntu:22.04'
    assert manifest.setup_steps == [RunStep(command='apt-get update')]
    assert manifest.cleanup_steps == []
    assert manifest.resources is None
    assert not manifest.has_configuration()


def test_parse_all_step_kinds():
    manifest = BuildManifest.from_mapping({
        'from': 'debian:12',
        'setup': [
            {'workdir': '/app'},
            {'copy': {'source': 'app.py', 'dest': '/app/app.py', 'owner': 'app', 'mode': 0o755}},
            {'env': {'PORT': 8080, 'DEBUG': 'false'}},
            {'run': 'pip install flask'},
        ],
        'cleanup': [{'run': 'apt-get clean'}],
        'resources': {'cores': 2, 'memory': 1024},
        'features': {'nesting': True},
    })

    kinds = [type(step) for step in manifest.setup_steps]
    assert kinds == [WorkDirStep, CopyStep, EnvStep, RunStep]
    assert manifest.setup_steps[1].mode == '755'
    assert manifest.setup_steps[2].vars == {'PORT': '8080', 'DEBUG': 'false'}
    assert manifest.resources == Resources(cores=2, memory=1024)
    assert manifest.has_configuration()


@pytest.mark.parametrize('data, message', [
    ({'setup': [{'run': 'true'}]}, 'from'),
    ({'from': '', 'setup': [{'run': 'true'}]}, "'from' field is required"),
    ({'from': 'ubuntu:22.04'}, 'setup'),
    ({'from': 'ubuntu:22.04', 'setup': []}, 'at least one step'),
    ({'from': 'ubuntu:22.04', 'setup': [{}]}, 'at least one action'),
    ({'from': 'ubuntu:22.04', 'setup': [{'run': 'a', 'workdir': '/x'}]}, 'exactly one action'),
    ({'from': 'ubuntu:22.04', 'setup': [{'shell': 'a'}]}, 'unknown step key'),
    ({'from': 'ubuntu:22.04', 'setup': [{'copy': {'dest': '/x'}}]}, 'copy source is required'),
    ({'from': 'ubuntu:22.04', 'setup': [{'copy': {'source': 'x'}}]}, 'copy dest is required'),
    ({'from': 'ubuntu:22.04', 'setup': [{'run': 'true'}], 'resources': {'memory': -1}}, 'memory'),
])
def test_invalid_manifests(data, message):
    with pytest.raises(ValidationError) as exc:
        BuildManifest.from_mapping(data)
    assert message in str(exc.value)


def test_step_position_in_error():
    with pytest.raises(ValidationError) as exc:
        BuildManifest.from_mapping({
            'from': 'ubuntu:22.04',
            'setup': [{'run': 'true'}, {'run': 'true'}],
            'cleanup': [{'run': 'a', 'env': {'A': '1'}}],
        })
    assert 'cleanup step 1' in str(exc.value)


def test_validation_is_repeatable():
    valid = {'from': 'ubuntu:22.04', 'setup': [{'run': 'make'}], 'resources': {'memory': 512}}
    assert BuildManifest.from_mapping(valid) == BuildManifest.from_mapping(valid)

    data = {'from': 'ubuntu:22.04', 'setup': [{}]}
    errors = []
    for _ in range(2):
        with pytest.raises(ValidationError) as exc:
            BuildManifest.from_mapping(data)
        errors.append(str(exc.value))
    assert errors[0] == errors[1]


def test_non_mapping_rejected():
    with pytest.raises(ValidationError):
        BuildManifest.from_mapping(['from', 'ubuntu'])


def test_parse_step_passes_models_through():
    step = RunStep(command='echo hi')
    assert parse_step(step) is step


def test_feature_flags():
    assert Features(nesting=True, fuse=True, unprivileged=True).flags() == ['nesting=1', 'fuse=1']
    assert Features().flags() == []


def test_template_name_from_metadata():
    manifest = BuildManifest.from_mapping({
        'from': 'ubuntu:22.04',
        'setup': [{'run': 'true'}],
        'metadata': {'name': 'web', 'version': 1.2},
    })
    assert manifest.template_name() == 'web:1.2'

    plain = BuildManifest.from_mapping({'from': 'ubuntu:22.04', 'setup': [{'run': 'true'}]})
    assert plain.template_name() == 'custom-template'


def test_describe_truncates_long_commands():
    step = RunStep(command='x' * 200)
    assert len(step.describe()) < 200
    assert step.describe().endswith('...')
