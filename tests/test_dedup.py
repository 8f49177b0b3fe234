from billing_copilot.ai.dedup import arguments_equal, canonical_json, find_reusable_result, hash_arguments
from billing_copilot.core.types import MessageRole
from billing_copilot.storage.models import Message, text_block


def _tool_message(index, metadata):
    return Message(
        id=f"msg-{index}",
        conversation_id="conv-1",
        user_id="user-1",
        role=MessageRole.TOOL,
        content=[text_block("résultat")],
        tool_name="create_client",
        metadata=metadata,
    )


def test_hash_ignores_key_order():
    left = {"name": "Atlas", "address": {"city": "Tunis", "zip": "1000"}}
    right = {"address": {"zip": "1000", "city": "Tunis"}, "name": "Atlas"}

    assert hash_arguments(left) == hash_arguments(right)
    assert canonical_json(right) == '{"address":{"city":"Tunis","zip":"1000"},"name":"Atlas"}'


def test_hash_keeps_list_order():
    assert hash_arguments({"lines": [1, 2]}) != hash_arguments({"lines": [2, 1]})
    assert not arguments_equal({"lines": [1, 2]}, {"lines": [2, 1]})


def test_hash_is_hex_sha256():
    digest = hash_arguments({"name": "Atlas"})

    assert len(digest) == 64
    int(digest, 16)


def test_reuse_by_hash():
    normalized = {"display_name": "Jean"}
    digest = hash_arguments(normalized)
    candidates = [_tool_message(1, {"arguments_hash": digest, "data": {"client_id": "c-1"}})]

    assert find_reusable_result(candidates, digest, normalized) is candidates[0]


def test_reuse_by_deep_equality_when_hash_missing():
    normalized = {"display_name": "Jean", "email": None}
    candidates = [
        _tool_message(1, {"arguments_normalized": {"email": None, "display_name": "Jean"}}),
    ]

    assert find_reusable_result(candidates, "", normalized) is candidates[0]


def test_legacy_arguments_are_compared_when_normalized_missing():
    normalized = {"display_name": "Jean"}
    candidates = [_tool_message(1, {"arguments": {"display_name": "Jean"}})]

    assert find_reusable_result(candidates, "other-digest", normalized) is candidates[0]


def test_failed_calls_are_never_reused():
    normalized = {"display_name": "Jean"}
    digest = hash_arguments(normalized)
    candidates = [
        _tool_message(2, {"arguments_hash": digest, "error": True, "error_kind": "domain"}),
        _tool_message(1, {"arguments_hash": hash_arguments({"display_name": "Marie"})}),
    ]

    assert find_reusable_result(candidates, digest, normalized) is None


def test_newest_matching_candidate_wins():
    normalized = {"display_name": "Jean"}
    digest = hash_arguments(normalized)
    newest = _tool_message(2, {"arguments_hash": digest, "data": {"client_id": "c-2"}})
    older = _tool_message(1, {"arguments_hash": digest, "data": {"client_id": "c-1"}})

    assert find_reusable_result([newest, older], digest, normalized) is newest
