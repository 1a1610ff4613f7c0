import itertools

import pytest

from pxc.exceptions import CycleError, UndefinedServiceError
from pxc.MODELS.stack_manifest import ServiceSpec
from pxc.RUNNERS.dependency_resolver import DependencyResolver


def services(graph):
    return {name: ServiceSpec(template='t', depends_on=deps) for name, deps in graph.items()}


def assert_valid_order(graph, order):
    assert sorted(order) == sorted(graph)
    for name, deps in graph.items():
        for dep in deps:
            assert order.index(dep) < order.index(name)


def test_resolve_order_simple():
    order = DependencyResolver().resolve_order(services({'web': ['db'], 'db': []}))
    assert order == ['db', 'web']


def test_resolve_order_diamond():
    graph = {
        'app': ['api', 'worker'],
        'api': ['db', 'cache'],
        'worker': ['db'],
        'db': [],
        'cache': [],
    }
    order = DependencyResolver().resolve_order(services(graph))
    assert_valid_order(graph, order)


def test_independent_services_each_appear_once():
    graph = {'b': [], 'a': [], 'c': []}
    order = DependencyResolver().resolve_order(services(graph))
    assert_valid_order(graph, order)
    assert len(order) == len(set(order)) == 3


@pytest.mark.parametrize('names', list(itertools.permutations(['a', 'b', 'c', 'd'])))
def test_any_declaration_order_yields_valid_order(names):
    base = {'a': ['b', 'c'], 'b': ['d'], 'c': ['d'], 'd': []}
    graph = {name: base[name] for name in names}
    assert_valid_order(graph, DependencyResolver().resolve_order(services(graph)))


def test_cycle_detected():
    with pytest.raises(CycleError) as exc:
        DependencyResolver().resolve_order(services({'web': ['api'], 'api': ['web']}))
    assert exc.value.service in ('web', 'api')
    assert exc.value.path[0] == exc.value.path[-1]


def test_self_dependency_is_a_cycle():
    with pytest.raises(CycleError) as exc:
        DependencyResolver().resolve_order(services({'web': ['web']}))
    assert exc.value.path == ['web', 'web']


def test_long_cycle_reports_path():
    graph = {'a': ['b'], 'b': ['c'], 'c': ['a'], 'd': []}
    with pytest.raises(CycleError) as exc:
        DependencyResolver().resolve_order(services(graph))
    assert exc.value.path == ['a', 'b', 'c', 'a']


def test_undefined_dependency_rejected_before_resolution():
    # The cycle between a and b is never reached
    graph = {'a': ['b'], 'b': ['a'], 'c': ['missing']}
    with pytest.raises(UndefinedServiceError) as exc:
        DependencyResolver().resolve_order(services(graph))
    assert exc.value.service == 'c'
    assert exc.value.reference == 'missing'


def test_shutdown_order_is_reverse():
    graph = services({'web': ['api'], 'api': ['db'], 'db': []})
    resolver = DependencyResolver()
    assert resolver.resolve_shutdown_order(graph) == list(reversed(resolver.resolve_order(graph)))
