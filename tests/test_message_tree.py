import random

from app.schemas.message import Message, TextContentBlock
from app.services.message_tree import ancestor_chain, build_view


def _msg(message_id: str, parent: str | None, created_at: str, role: str = "user") -> Message:
    return Message(
        id=message_id,
        role=role,
        content=[TextContentBlock(id=f"t-{message_id}", text=message_id)],
        parentMessageId=parent,
        chatId="c1",
        createdAt=created_at,
    )


T0 = "2024-01-01T00:00:00.000000Z"
T1 = "2024-01-01T00:00:01.000000Z"
T2 = "2024-01-01T00:00:02.000000Z"
T3 = "2024-01-01T00:00:03.000000Z"
T4 = "2024-01-01T00:00:04.000000Z"


def _forest() -> list[Message]:
    return [
        _msg("A", None, T0),
        _msg("B", "A", T1, role="assistant"),
        _msg("C", "B", T2),
        _msg("D", None, T3),
    ]


def test_latest_path_is_most_recent_leaf_not_deepest() -> None:
    view = build_view(_forest())

    assert view.root_message_ids == ["A", "D"]
    assert view.latest_path == ["D"]


def test_branch_extension_moves_latest_path() -> None:
    view = build_view(_forest() + [_msg("E", "B", T4)])

    assert view.latest_path == ["A", "B", "E"]
    assert view.messages["B"].childrenMessageIds == ["C", "E"]


def test_view_is_independent_of_input_order() -> None:
    messages = _forest() + [_msg("E", "B", T4)]
    expected = build_view(messages)

    rng = random.Random(7)
    for _ in range(10):
        shuffled = list(messages)
        rng.shuffle(shuffled)
        view = build_view(shuffled)
        assert view.root_message_ids == expected.root_message_ids
        assert view.latest_path == expected.latest_path
        assert view.messages == expected.messages


def test_identical_timestamps_break_ties_by_id() -> None:
    messages = [
        _msg("root", None, T0),
        _msg("x", "root", T1, role="assistant"),
        _msg("y", "root", T1, role="assistant"),
    ]

    view = build_view(messages)

    assert view.messages["root"].childrenMessageIds == ["x", "y"]
    assert view.latest_path == ["root", "y"]


def test_empty_input() -> None:
    view = build_view([])

    assert view.root_message_ids == []
    assert view.latest_path == []
    assert view.messages == {}


def test_input_messages_are_not_mutated() -> None:
    messages = _forest()
    build_view(messages)

    assert all(message.childrenMessageIds == [] for message in messages)


def test_ancestor_chain_runs_root_to_leaf() -> None:
    messages = _forest() + [_msg("E", "B", T4)]

    assert [m.id for m in ancestor_chain(messages, "E")] == ["A", "B", "E"]
    assert [m.id for m in ancestor_chain(messages, "D")] == ["D"]
    assert ancestor_chain(messages, None) == []
    assert ancestor_chain(messages, "missing") == []
