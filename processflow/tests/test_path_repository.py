import pytest

from processflow.core.errors import InvalidOperation, NotFound
from processflow.database import SessionLocal
from processflow.models.block import Block
from processflow.models.path import Path
from processflow.models.path_parent_block import PathParentBlock
from processflow.services import block_repository, path_repository, tree_deletion, tree_store


def _db():
    return SessionLocal()


def _blocks(path_id: int):
    db = _db()
    try:
        return tree_store.path_blocks(db, path_id)
    finally:
        db.close()


def _terminal(path_id: int):
    return _blocks(path_id)[-1]


def _children(block_id: int):
    db = _db()
    try:
        return tree_store.child_path_ids(db, block_id)
    finally:
        db.close()


def _path_exists(path_id: int) -> bool:
    db = _db()
    try:
        return db.query(Path).filter(Path.id == path_id).first() is not None
    finally:
        db.close()


def _block_count(workflow_id: int) -> int:
    db = _db()
    try:
        return db.query(Block).filter(Block.workflow_id == workflow_id).count()
    finally:
        db.close()


def test_new_workflow_gets_minimal_first_path():
    workflow = path_repository.create_workflow("Onboarding")

    nodes = path_repository.list_workflow_paths(workflow.id)
    assert len(nodes) == 1
    assert nodes[0].path.name == "First Path"
    assert nodes[0].parent_block_ids == []
    assert [(n.block.type, n.block.position) for n in nodes[0].blocks] == [("BEGIN", 0), ("LAST", 1)]
    assert path_repository.is_root_path(nodes[0].path.id)


def test_create_default_path_is_idempotent(workflow_factory):
    workflow, root = workflow_factory()

    again = path_repository.create_default_path(workflow.id)

    assert again.id == root.id
    assert len(path_repository.list_workflow_paths(workflow.id)) == 1


def test_blank_names_are_rejected(workflow_factory):
    workflow, _root = workflow_factory()

    with pytest.raises(ValueError):
        path_repository.create_workflow("   ")
    with pytest.raises(ValueError):
        path_repository.create_path(workflow.id, "")


def test_unknown_workflow_is_not_found():
    with pytest.raises(NotFound):
        path_repository.create_default_path(987654)


def test_terminal_type_follows_child_paths(workflow_factory):
    _workflow, root = workflow_factory()

    (only,) = path_repository.create_child_paths(root.id, ["Only"])
    assert _terminal(root.id).type == "MERGE"
    assert not path_repository.is_root_path(only.id)

    path_repository.create_child_paths(root.id, ["Second"])
    assert _terminal(root.id).type == "PATH"
    assert len(_children(_terminal(root.id).id)) == 2


def test_child_paths_start_minimal(workflow_factory):
    _workflow, root = workflow_factory()

    yes, no = path_repository.create_child_paths(root.id, ["Yes", "No"])

    for path in (yes, no):
        node = path_repository.get_path_node(path.id)
        assert node.parent_block_ids == [_terminal(root.id).id]
        assert [(n.block.type, n.block.position) for n in node.blocks] == [("BEGIN", 0), ("LAST", 1)]


def test_first_root_path_cannot_be_deleted(workflow_factory):
    _workflow, root = workflow_factory()

    with pytest.raises(InvalidOperation):
        path_repository.delete_path(root.id)

    assert _path_exists(root.id)


def test_branch_of_two_way_split_cannot_be_deleted(workflow_factory):
    _workflow, root = workflow_factory()
    yes, _no = path_repository.create_child_paths(root.id, ["Yes", "No"])

    with pytest.raises(InvalidOperation):
        path_repository.delete_path(yes.id)

    assert _path_exists(yes.id)
    assert _terminal(root.id).type == "PATH"


def test_deleting_one_of_three_branches_keeps_path_block(workflow_factory):
    _workflow, root = workflow_factory()
    a, b, c = path_repository.create_child_paths(root.id, ["A", "B", "C"])

    result = path_repository.delete_path(c.id)

    assert result.path_ids == [c.id]
    assert not _path_exists(c.id)
    terminal = _terminal(root.id)
    assert terminal.type == "PATH"
    assert _children(terminal.id) == [a.id, b.id]


def test_deleting_single_branch_demotes_parent_to_last(workflow_factory):
    _workflow, root = workflow_factory()
    (only,) = path_repository.create_child_paths(root.id, ["Only"])

    path_repository.delete_path(only.id)

    assert _terminal(root.id).type == "LAST"


def test_delete_path_removes_nested_subtree(workflow_factory):
    workflow, root = workflow_factory()
    a, _b, _c = path_repository.create_child_paths(root.id, ["A", "B", "C"])
    a1, a2 = path_repository.create_child_paths(a.id, ["A1", "A2"])
    (a1x,) = path_repository.create_child_paths(a1.id, ["A1x"])
    block_repository.insert_block(a1x.id, 1, {"title": "deep"})

    result = path_repository.delete_path(a.id)

    assert set(result.path_ids) == {a.id, a1.id, a2.id, a1x.id}
    for path_id in (a.id, a1.id, a2.id, a1x.id):
        assert not _path_exists(path_id)
    # 3 surviving paths with BEGIN + terminal each
    assert _block_count(workflow.id) == 6

    db = _db()
    try:
        dangling = (
            db.query(PathParentBlock)
            .filter(
                PathParentBlock.path_id.in_(result.path_ids)
                | PathParentBlock.block_id.in_(result.block_ids)
            )
            .count()
        )
        assert dangling == 0
    finally:
        db.close()


def test_merge_path_survives_until_its_last_parent_goes(workflow_factory):
    _workflow, root = workflow_factory()
    a, b, _c = path_repository.create_child_paths(root.id, ["A", "B", "C"])
    a_end, b_end = _terminal(a.id), _terminal(b.id)

    merge = path_repository.create_merge_path(root.workflow_id, "Join", [a_end.id, b_end.id])
    assert _terminal(a.id).type == "MERGE"
    assert _terminal(b.id).type == "MERGE"

    result = path_repository.delete_path(a.id)

    assert merge.id not in result.path_ids
    assert _path_exists(merge.id)
    node = path_repository.get_path_node(merge.id)
    assert node.parent_block_ids == [b_end.id]

    assert path_repository.update_merge_parents(merge.id, disconnect=[b_end.id]) is None
    assert not _path_exists(merge.id)
    assert _terminal(b.id).type == "LAST"


def test_merge_requires_childless_terminals(workflow_factory):
    _workflow, root = workflow_factory()
    a, b = path_repository.create_child_paths(root.id, ["A", "B"])
    step = block_repository.insert_block(a.id, 1, {"title": "not an end"}).block

    with pytest.raises(InvalidOperation):
        path_repository.create_merge_path(root.workflow_id, "Join", [_terminal(root.id).id])
    with pytest.raises(InvalidOperation):
        path_repository.create_merge_path(root.workflow_id, "Join", [step.id, _terminal(b.id).id])


def test_update_merge_parents_connects_new_parent(workflow_factory):
    _workflow, root = workflow_factory()
    a, b, c = path_repository.create_child_paths(root.id, ["A", "B", "C"])
    merge = path_repository.create_merge_path(root.workflow_id, "Join", [_terminal(a.id).id])

    updated = path_repository.update_merge_parents(merge.id, connect=[_terminal(c.id).id])

    assert updated.id == merge.id
    node = path_repository.get_path_node(merge.id)
    assert node.parent_block_ids == sorted([_terminal(a.id).id, _terminal(c.id).id])
    assert _terminal(c.id).type == "MERGE"


def test_merge_parent_below_the_merge_is_a_cycle(workflow_factory):
    _workflow, root = workflow_factory()
    a, b = path_repository.create_child_paths(root.id, ["A", "B"])
    merge = path_repository.create_merge_path(root.workflow_id, "Join", [_terminal(a.id).id, _terminal(b.id).id])
    (below,) = path_repository.create_child_paths(merge.id, ["After"])

    with pytest.raises(InvalidOperation):
        path_repository.update_merge_parents(merge.id, connect=[_terminal(below.id).id])


def test_connect_paths_moves_branches(workflow_factory):
    workflow, root = workflow_factory()
    a, b = path_repository.create_child_paths(root.id, ["A", "B"])
    loose = path_repository.create_path(workflow.id, "Loose")

    path_repository.connect_paths([loose.id], a.id)

    assert _terminal(a.id).type == "MERGE"
    assert path_repository.get_path_node(loose.id).parent_block_ids == [_terminal(a.id).id]


def test_connect_paths_rejects_cycles(workflow_factory):
    _workflow, root = workflow_factory()
    a, _b = path_repository.create_child_paths(root.id, ["A", "B"])

    with pytest.raises(InvalidOperation):
        path_repository.connect_paths([root.id], a.id)
    with pytest.raises(InvalidOperation):
        path_repository.connect_paths([a.id], a.id)


def test_connect_paths_rejects_other_workflows(workflow_factory):
    _first, root = workflow_factory("First")
    _second, other_root = workflow_factory("Second")

    with pytest.raises(InvalidOperation):
        path_repository.connect_paths([other_root.id], root.id)


def test_delete_paths_orchestrator_reclassifies_parent(workflow_factory):
    _workflow, root = workflow_factory()
    yes, no = path_repository.create_child_paths(root.id, ["Yes", "No"])

    result = tree_deletion.delete_paths([yes.id, no.id])

    assert set(result.path_ids) == {yes.id, no.id}
    assert _terminal(root.id).type == "LAST"


def test_first_path_cannot_be_connected_under_another_path(workflow_factory):
    workflow, root = workflow_factory()
    loose = path_repository.create_path(workflow.id, "Loose")

    with pytest.raises(InvalidOperation):
        path_repository.connect_paths([root.id], loose.id)

    assert path_repository.is_root_path(root.id)
    with pytest.raises(InvalidOperation):
        path_repository.delete_path(root.id)
