import pytest

from models import Position
from tree_store import InMemoryTreeStore


@pytest.fixture
def store():
    return InMemoryTreeStore()


def _check_invariants(store):
    """
    every non-root node is pointed at by exactly one of its parent's slots,
    sits one level below its parent, and there is exactly one root.
    """
    nodes = {n.id: n for n in store.all_nodes()}
    roots = [n for n in nodes.values() if n.parent_id is None]
    assert len(roots) <= 1

    for node in nodes.values():
        if node.parent_id is None:
            assert node.position is None
            assert node.level == 0
            continue

        parent = nodes[node.parent_id]
        points_left = parent.left_child_id == node.id
        points_right = parent.right_child_id == node.id
        assert points_left != points_right
        assert (node.position is Position.LEFT) == points_left
        assert node.level == parent.level + 1

        for child_id in (node.left_child_id, node.right_child_id):
            if child_id is not None:
                assert nodes[child_id].parent_id == node.id


@pytest.fixture
def assert_tree_invariants():
    return _check_invariants
