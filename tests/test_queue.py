"""Unit tests for MutationQueue argument handling and wildcard semantics."""

import pytest

from hosts_writer.errors import InvalidArgument
from hosts_writer.hosts import WILDCARD, MutationQueue


class TestQueueAdd:
    def test_add_string_appends(self) -> None:
        queue = MutationQueue()
        queue.add("10.0.0.1", "a")
        queue.add("10.0.0.1", "b")

        assert queue.additions == {"10.0.0.1": ["a", "b"]}

    def test_add_list_extends_and_keeps_duplicates(self) -> None:
        queue = MutationQueue()
        queue.add("10.0.0.1", ["a", "b"])
        queue.add("10.0.0.1", ("a",))

        assert queue.additions == {"10.0.0.1": ["a", "b", "a"]}

    @pytest.mark.parametrize("host", [5, None, {"a": 1}, ["a", 3]])
    def test_add_rejects_non_string_hosts(self, host) -> None:
        queue = MutationQueue()

        with pytest.raises(InvalidArgument, match="expects `host` to be a string"):
            queue.add("10.0.0.1", host)

        assert queue.additions == {}

    def test_invalid_argument_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            MutationQueue().add("10.0.0.1", 42)


class TestQueueRemove:
    def test_remove_appends_specific_hosts(self) -> None:
        queue = MutationQueue()
        assert queue.remove("10.0.0.1", "a")
        assert queue.remove("10.0.0.1", ["b", "c"])

        assert queue.removals == {"10.0.0.1": ["a", "b", "c"]}

    def test_wildcard_token_replaces_specific_removals(self) -> None:
        queue = MutationQueue()
        queue.remove("10.0.0.1", "a")
        queue.remove("10.0.0.1", "*")

        assert queue.removals == {"10.0.0.1": WILDCARD}

    def test_wildcard_member_accepted(self) -> None:
        queue = MutationQueue()
        queue.remove("10.0.0.1", WILDCARD)

        assert queue.removals["10.0.0.1"] is WILDCARD

    def test_remove_after_wildcard_is_noop(self) -> None:
        queue = MutationQueue()
        queue.remove("10.0.0.1", "*")

        assert queue.remove("10.0.0.1", "x") is False
        assert queue.removals == {"10.0.0.1": WILDCARD}

    def test_remove_rejects_non_string_hosts(self) -> None:
        queue = MutationQueue()

        with pytest.raises(InvalidArgument, match="hosts.remove"):
            queue.remove("10.0.0.1", 1.5)

        assert queue.removals == {}


class TestQueueRemoveHost:
    def test_remove_host_is_a_set(self) -> None:
        queue = MutationQueue()
        queue.remove_host("x")
        queue.remove_host("y")
        queue.remove_host("x")

        assert list(queue.host_removals) == ["x", "y"]

    def test_remove_host_rejects_non_string(self) -> None:
        with pytest.raises(InvalidArgument):
            MutationQueue().remove_host(["x"])


class TestQueueClear:
    def test_clear_empties_all_maps(self) -> None:
        queue = MutationQueue()
        queue.add("10.0.0.1", "a")
        queue.remove("10.0.0.2", "*")
        queue.remove_host("x")
        assert queue

        queue.clear()

        assert not queue
        assert queue.additions == {}
        assert queue.removals == {}
        assert queue.host_removals == {}
