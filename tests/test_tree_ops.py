import pytest

from timeturn.tree.models import (
    NodeType,
    TaskNode,
    TaskTreeError,
    forest_from_dicts,
    forest_to_dicts,
    generate_node_id,
    infer_node_type,
    strip_type_prefix,
)
from timeturn.tree.ops import (
    add_node,
    add_nodes,
    archive_node,
    find_node_by_id,
    find_parent,
    fix_duplicate_ids,
    flatten_tree,
    incomplete_tasks,
    serialize_tree_for_ai,
    serialize_tree_for_chat,
    tree_statistics,
)


def _sample_forest() -> list[TaskNode]:
    goal = TaskNode.create(NodeType.GOAL, "英語上達")
    project = TaskNode.create(NodeType.PROJECT, "リスニング強化")
    milestone = TaskNode.create(NodeType.MILESTONE, "基礎固め")
    task_a = TaskNode.create(NodeType.TASK, "毎日15分シャドーイング")
    task_b = TaskNode.create(NodeType.TASK, "単語帳1周")
    milestone.children.extend([task_a, task_b])
    project.children.append(milestone)
    goal.children.append(project)
    return [goal]


def test_generate_node_id_embeds_type_and_is_unique() -> None:
    first = generate_node_id(NodeType.MILESTONE)
    second = generate_node_id(NodeType.MILESTONE)

    assert first.startswith("milestone-")
    assert first != second


def test_type_prefix_helpers() -> None:
    assert strip_type_prefix("Goal: 英語上達") == "英語上達"
    assert strip_type_prefix("Task：単語帳") == "単語帳"
    assert strip_type_prefix("単語帳") == "単語帳"
    assert infer_node_type("Milestone: 基礎") == NodeType.MILESTONE
    assert infer_node_type("prefixless title") == NodeType.TASK


def test_leaf_nodes_reject_children() -> None:
    task = TaskNode.create(NodeType.TASK, "単語帳")
    micro = TaskNode.create(NodeType.MICRO_TASK, "1ページ")

    with pytest.raises(TaskTreeError):
        task.add_child(TaskNode.create(NodeType.TASK, "child"))
    with pytest.raises(TaskTreeError):
        micro.add_child(TaskNode.create(NodeType.TASK, "child"))


def test_untyped_node_infers_type_from_title() -> None:
    node = TaskNode(id="n1", title="Project: 受験対策")

    assert node.effective_type == NodeType.PROJECT
    assert node.display_title == "受験対策"


def test_forest_dict_roundtrip_uses_camel_case_dates() -> None:
    forest = _sample_forest()
    forest[0].end_date = "2025-12-31"
    forest[0].memo = "来年の留学に向けて"

    payload = forest_to_dicts(forest)
    restored = forest_from_dicts(payload)

    assert payload[0]["endDate"] == "2025-12-31"
    assert "startDate" not in payload[0]
    assert restored[0].memo == "来年の留学に向けて"
    assert [node.title for node in flatten_tree(restored)] == [
        node.title for node in flatten_tree(forest)
    ]
    assert restored[0].children[0].children[0].children[0].type == NodeType.TASK


def test_forest_from_dicts_ignores_garbage() -> None:
    assert forest_from_dicts(None) == []
    assert forest_from_dicts({"id": "x"}) == []
    assert len(forest_from_dicts([{"id": "a", "title": "Goal: A"}, "junk"])) == 1


def test_find_and_add_nodes() -> None:
    forest = _sample_forest()
    milestone = forest[0].children[0].children[0]
    new_task = TaskNode.create(NodeType.TASK, "模試の復習")

    parent = add_node(forest, milestone.id, new_task)

    assert parent is milestone
    assert find_node_by_id(forest, new_task.id) is new_task
    assert find_parent(forest, new_task.id) is milestone

    root = TaskNode.create(NodeType.GOAL, "資格取得")
    assert add_node(forest, None, root) is None
    assert forest[-1] is root


def test_add_node_rejects_unknown_or_leaf_parent() -> None:
    forest = _sample_forest()
    task = forest[0].children[0].children[0].children[0]

    with pytest.raises(TaskTreeError):
        add_node(forest, "missing", TaskNode.create(NodeType.TASK, "x"))
    with pytest.raises(TaskTreeError):
        add_nodes(forest, task.id, [TaskNode.create(NodeType.TASK, "x")])


def test_archive_node_marks_subtree_and_updates_statistics() -> None:
    forest = _sample_forest()
    milestone = forest[0].children[0].children[0]

    archive_node(forest, milestone.id)
    stats = tree_statistics(forest)

    assert all(child.archived for child in milestone.children)
    assert stats["goal_count"] == 1
    assert stats["task_count"] == 2
    assert stats["completed_task_count"] == 2
    assert stats["completion_rate"] == 100.0
    assert incomplete_tasks(forest) == []


def test_incomplete_tasks_are_unarchived_leaves() -> None:
    forest = _sample_forest()
    forest[0].children[0].children[0].children[0].archived = True

    titles = [node.title for node in incomplete_tasks(forest)]

    assert titles == ["単語帳1周"]


def test_fix_duplicate_ids_reassigns_collisions() -> None:
    forest = _sample_forest()
    forest[0].children[0].id = forest[0].id

    assert fix_duplicate_ids(forest) is True
    ids = [node.id for node in flatten_tree(forest)]
    assert len(ids) == len(set(ids))
    assert fix_duplicate_ids(forest) is False


def test_serialize_tree_for_chat_marks_status_and_respects_depth() -> None:
    forest = _sample_forest()
    forest[0].children[0].children[0].children[0].archived = True
    forest[0].children[0].children[0].children[0].memo = "朝やる"

    text = serialize_tree_for_chat(forest)
    shallow = serialize_tree_for_chat(forest, max_depth=1)

    assert "- Goal: 英語上達" in text
    assert "    - Milestone: 基礎固め" in text
    assert "毎日15分シャドーイング[完了] (メモ: 朝やる)" in text
    assert "基礎固め" not in shallow


def test_serialize_tree_for_ai_counts_children() -> None:
    text = serialize_tree_for_ai(_sample_forest())

    assert text.startswith("【現在のタスクツリー】")
    assert "Milestone: 基礎固め (2個のサブタスク)" in text
