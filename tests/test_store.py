# tests/test_store.py
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from feed_store.core.errors import InvalidArgumentError
from feed_store.schemas.common import InviteLinkResponse, PendingContactRequest, User


def test_add_user_notifies_once_for_identical_value(store, make_user) -> None:
    listener = MagicMock()
    store.listen_to_users(listener)
    per_user = MagicMock()
    store.listen_to_user("u1", per_user)

    store.add_user(make_user("u1", "Ada"))
    store.add_user(make_user("u1", "Ada"))

    assert listener.call_count == 1
    assert per_user.call_count == 1


def test_add_none_is_ignored(store) -> None:
    listener = MagicMock()
    store.listen_to_users(listener)
    store.add_user(None)
    store.add_group(None)
    store.add_feed_item(None)
    listener.assert_not_called()


def test_user_change_replaces_record_and_name_index(store, make_user) -> None:
    store.add_user(make_user("u1", "Ada"))
    store.add_user(make_user("u1", "Ada", avatar="a.png"))

    assert store.maybe_get_user_by_id("u1").avatar == "a.png"
    assert store.maybe_user_by_name("Ada").avatar == "a.png"
    assert store.get_all_user_ids() == ["u1"]


def test_unknown_users_get_distinct_placeholders(store) -> None:
    x = store.get_user_by_id("x")
    y = store.get_user_by_id("y")

    assert x.name == y.name == "[deleted]"
    assert x.id != y.id
    assert store.maybe_get_user_by_id("x") is None


def test_transaction_coalesces_collection_listeners(store, make_user) -> None:
    snapshots = []
    store.listen_to_users(lambda users: snapshots.append([u.id for u in users]))

    with store.transaction():
        store.add_user(make_user("a"))
        store.add_user(make_user("b"))
        store.add_user(make_user("c"))
        # Reads inside the transaction already see the writes
        assert store.maybe_get_user_by_id("b") is not None
        assert snapshots == []

    assert snapshots == [["a", "b", "c"]]


def test_transaction_fires_entity_listeners_immediately(store, make_user) -> None:
    seen = []
    store.listen_to_user("a", lambda user: seen.append(user.id))

    with store.transaction():
        store.add_user(make_user("a"))
        assert seen == ["a"]


def test_nested_transactions_flush_once_at_the_outermost(store, make_user) -> None:
    listener = MagicMock()
    store.listen_to_users(listener)

    with store.transaction():
        store.add_user(make_user("a"))
        with store.transaction():
            store.add_user(make_user("b"))
        listener.assert_not_called()

    listener.assert_called_once()


def test_failed_transaction_resets_and_propagates(store, make_user) -> None:
    listener = MagicMock()
    store.listen_to_users(listener)

    with pytest.raises(RuntimeError, match="boom"):
        with store.transaction():
            store.add_user(make_user("a"))
            raise RuntimeError("boom")

    assert not store.in_transaction
    listener.assert_not_called()

    store.add_user(make_user("b"))
    listener.assert_called_once()


def test_listener_failure_does_not_stop_siblings(store, make_user, caplog) -> None:
    def broken(_users):
        raise ValueError("listener bug")

    healthy = MagicMock()
    store.listen_to_users(broken)
    store.listen_to_users(healthy)

    store.add_user(make_user("a"))

    healthy.assert_called_once()
    assert store.maybe_get_user_by_id("a") is not None
    assert "raised while being notified" in caplog.text


def test_removed_listener_is_not_called(store, make_group) -> None:
    listener = MagicMock()
    lid = store.listen_to_groups(listener)
    store.remove_groups_listener(lid)
    store.remove_groups_listener(lid)
    store.remove_group_listener("g1", "unknown")

    store.add_group(make_group("g1"))

    listener.assert_not_called()


def test_me_is_never_a_contact(store) -> None:
    store.add_contact_id("me")
    assert store.is_my_contact("me")

    store.set_me(User(id="me", name="Me"))
    assert not store.is_my_contact("me")

    store.add_contact_id("me")
    assert not store.is_my_contact("me")
    assert store.get_my_contacts() == set()


def test_contact_ids(store) -> None:
    store.add_contact_id("c1")
    store.add_contact_id("c2")
    store.remove_contact_id("c1")
    store.remove_contact_id("missing")

    assert store.get_my_contacts() == {"c2"}
    assert store.is_my_contact("c2")
    assert not store.is_my_contact("c1")


@pytest.mark.parametrize("contact_id", [None, ""])
def test_is_my_contact_rejects_empty_ids(store, contact_id) -> None:
    with pytest.raises(InvalidArgumentError):
        store.is_my_contact(contact_id)


def test_feature_flags_default_to_false(store) -> None:
    assert store.get_feature_flag("global_invites_enabled") is True
    assert store.get_feature_flag("no_such_flag") is False

    store.set_feature_flags({"post_to_friends_of_friends": True})
    assert store.get_feature_flag("post_to_friends_of_friends") is True
    assert store.get_feature_flag("global_invites_enabled") is False


def test_pending_contact_requests_count(store, make_user) -> None:
    counts = []
    store.listen_to_pending_contact_requests_count(counts.append)

    store.add_pending_contact_requests(
        [
            PendingContactRequest(id="r1", contact=make_user("a")),
            PendingContactRequest(id="r2", contact=make_user("b")),
        ]
    )
    store.remove_pending_contact_request("r1")
    store.remove_pending_contact_request("r1")

    assert store.get_pending_contact_requests_count() == 1
    assert counts == [2, 1, 1]


def test_store_me_result_is_one_transaction(store) -> None:
    users_listener = MagicMock()
    groups_listener = MagicMock()
    me_listener = MagicMock()
    store.listen_to_users(users_listener)
    store.listen_to_groups(groups_listener)
    store.listen_to_me(me_listener)

    store.store_me_result(
        {
            "user": {"id": "me", "name": "Me"},
            "contacts": [{"id": "me", "name": "Me"}, {"id": "c1", "name": "Cy"}],
            "groups": [{"id": "g1", "name": "Friends"}],
            "contact_requests": [{"id": "r1", "contact": {"id": "c2", "name": "Di"}}],
            "flags": {"values": {"post_to_friends_of_friends": True}},
        }
    )

    assert store.get_me().id == "me"
    assert store.get_my_contacts() == {"c1"}
    assert store.get_all_user_ids() == ["c1", "me"]
    assert store.get_group_by_id("g1").name == "Friends"
    assert store.get_pending_contact_requests_count() == 1
    assert store.get_feature_flag("post_to_friends_of_friends") is True
    users_listener.assert_called_once()
    groups_listener.assert_called_once()
    me_listener.assert_called_once()


def test_store_me_result_accepts_partial_payload(store) -> None:
    store.store_me_result({"groups": [{"id": "g1", "name": "Friends"}]})

    assert store.get_me() is None
    assert store.get_all_groups()[0].id == "g1"
    assert store.get_feature_flag("global_invites_enabled") is True


def test_invite_links_are_keyed_by_link_id(store) -> None:
    listener = MagicMock()
    store.listen_to_invite_link("l1", listener)
    response = InviteLinkResponse.model_validate(
        {"invite_link": {"id": "l1", "code": "ABC"}, "invited_by": {"id": "u1", "name": "Ada"}}
    )

    store.add_invite_link_response(response)
    store.add_invite_link_response(response.model_copy())

    assert store.get_invite_link_response_by_id("l1").invite_link.code == "ABC"
    listener.assert_called_once()


def test_feed_items_newest_first_and_sorted_ids(store, make_feed_item, day) -> None:
    store.add_feed_item(make_feed_item("b", ref_id="d1", created_at=day(1)))
    store.add_feed_item(make_feed_item("a", ref_id="d2", created_at=day(3)))
    store.add_feed_item(make_feed_item("c", ref_id="d3", created_at=day(2)))

    assert [item.id for item in store.get_all_feed_items()] == ["a", "c", "b"]
    assert store.get_all_feed_item_ids() == ["a", "b", "c"]


def test_feed_item_ids_listener_fires_on_insert_and_dismissal(store, make_feed_item) -> None:
    ids_listener = MagicMock()
    store.listen_to_feed_item_ids(ids_listener)

    item = make_feed_item("i1", ref_id="d1")
    store.add_feed_item(item)
    store.add_feed_item(item.model_copy(update={"seen_at": {"viewer": item.created_at}}))
    assert ids_listener.call_count == 1

    store.add_feed_item(item.model_copy(update={"dismissed_by": ["viewer"]}))
    assert ids_listener.call_count == 2
    ids_listener.assert_called_with(["i1"])


def test_incoming_listeners_fire_only_on_membership_change(store) -> None:
    snapshots = []
    store.listen_to_incoming(snapshots.append)

    store.add_incoming_feed(["a", "b"])
    store.add_incoming_feed(["a"])
    store.add_incoming_feed(["c"])
    store.reset_incoming_feed()
    store.reset_incoming_feed()

    assert snapshots == [{"a", "b"}, {"a", "b", "c"}, set()]
    assert store.count_incoming_feed_items() == 0
