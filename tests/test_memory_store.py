import pytest

from rollguard.exceptions import NotFoundError
from rollguard.models import Voter


def test_records_are_copied(store):
    saved = store.save_voter(Voter(voter_id="v1", name="Priya Sharma"))
    saved.name = "Changed"

    fetched = store.get_voter("v1")
    fetched.validation_flags.add("edited")

    assert store.get_voter("v1").name == "Priya Sharma"
    assert store.get_voter("v1").validation_flags == set()


def test_failed_transaction_restores_everything(store):
    store.save_voter(Voter(voter_id="v1", name="Priya Sharma"))

    with pytest.raises(ValueError):
        with store.transaction():
            voter = store.get_voter("v1")
            voter.is_active = False
            store.update_voter(voter)
            store.save_voter(Voter(voter_id="v2", name="Ravi Kumar"))
            raise ValueError("abort")

    assert store.get_voter("v1").is_active
    assert store.get_voter("v2") is None


def test_nested_transactions_join_the_outer_one(store):
    with store.transaction():
        store.save_voter(Voter(voter_id="v1", name="Priya Sharma"))
        try:
            with store.transaction():
                store.save_voter(Voter(voter_id="v2", name="Ravi Kumar"))
                raise ValueError("inner")
        except ValueError:
            pass

    assert [v.voter_id for v in store.list_voters()] == ["v1", "v2"]


def test_update_of_unknown_record_raises(store):
    with pytest.raises(NotFoundError):
        store.update_voter(Voter(voter_id="ghost"))


def test_voter_filters(store):
    store.save_voter(Voter(voter_id="v1", name="A B", address={"district": "Pune"}, address_hash="h1"))
    store.save_voter(Voter(voter_id="v2", name="C D", address={"district": "Mumbai"}, is_active=False))

    assert [v.voter_id for v in store.list_voters(active_only=True)] == ["v1"]
    assert [v.voter_id for v in store.list_voters(district="mumbai")] == ["v2"]
    assert [v.voter_id for v in store.list_voters(with_address_hash=True)] == ["v1"]
