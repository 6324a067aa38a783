import threading

import pytest

from slackduty.errors import UnsupportedKindError
from slackduty.members import Member, MembershipSet, filter_members, flatten_members
from slackduty.selector import parse


# Dedup -----------------------------------------------------------------------


def test_add_is_unique_on_id():
    ms = MembershipSet()
    assert ms.add(Member("U1", "a@example.com")) is True
    assert ms.add(Member("U1", "other@example.com")) is False
    assert ms.add(Member("U2")) is True
    assert ms.ids() == ["U1", "U2"]
    # first writer wins
    assert ms.members[0].email == "a@example.com"


def test_concurrent_adds_keep_one_per_id():
    ms = MembershipSet()
    barrier = threading.Barrier(16)

    def worker(n):
        barrier.wait()
        for i in range(200):
            ms.add(Member(f"U{i % 50}", f"{n}@example.com"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(ms) == 50
    assert sorted(ms.ids()) == sorted(f"U{i}" for i in range(50))


def test_contains_accepts_member_or_id():
    ms = MembershipSet([Member("U1")])
    assert "U1" in ms
    assert Member("U1", "whatever") in ms
    assert "U2" not in ms


# Filter ----------------------------------------------------------------------


def test_filter_without_excludes_returns_same_object():
    ms = MembershipSet([Member("U1")])
    assert filter_members(ms, []) is ms


def test_filter_drops_by_id_and_email():
    ms = MembershipSet([
        Member("U1", "a@example.com"),
        Member("U2", "b@example.com"),
        Member("U3", ""),
        Member("U4", "d@example.com"),
    ])
    out = filter_members(ms, [parse("id:U1"), parse("email:d@example.com")])
    assert out.ids() == ["U2", "U3"]
    # input untouched
    assert len(ms) == 4


def test_filter_empty_email_never_matches():
    ms = MembershipSet([Member("U3", "")])
    out = filter_members(ms, [parse("email:x@example.com")])
    assert out.ids() == ["U3"]


@pytest.mark.parametrize("raw", ["name:alice", "handle:oncall"])
def test_filter_unsupported_kind(raw):
    ms = MembershipSet([Member("U1", "a@example.com")])
    with pytest.raises(UnsupportedKindError) as ei:
        filter_members(ms, [parse("id:U9"), parse(raw)])
    assert ei.value.context == "exclude"


# Flatten ---------------------------------------------------------------------


def test_flatten_is_comma_joined_in_order():
    ms = MembershipSet([Member("1"), Member("2"), Member("3")])
    assert flatten_members(ms) == "1,2,3"
    assert flatten_members(MembershipSet()) == ""
