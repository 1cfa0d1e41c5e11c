"""Test the crawl frontier and its claim step."""

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from wikicrawl.db.frontier import Frontier, FrontierEntry


def _add(store, *titles):
    return [store.pages.upsert(title)[0] for title in titles]


class TestNext:
    """Test claiming frontier pages."""

    def test_ascending_order(self, store):
        """Pages are claimed by ascending id."""
        store.pages.upsert("C", 30)
        store.pages.upsert("A", 10)
        store.pages.upsert("B", 20)
        assert store.frontier.next(2) == [10, 20]
        assert store.frontier.next(2) == [30]
        assert store.frontier.next(2) == []

    def test_claimed_pages_not_handed_out_again(self, store):
        """A claimed page stays in the frontier but is not returned."""
        (a,) = _add(store, "A")
        assert store.frontier.next(1) == [a]
        assert store.frontier.next(1) == []
        assert store.frontier.size() == 1
        assert store.frontier.claimed_count() == 1

    def test_zero_batch(self, store):
        """Non-positive batch sizes claim nothing."""
        _add(store, "A")
        assert store.frontier.next(0) == []
        assert store.frontier.claimed_count() == 0

    def test_new_pages_appear_immediately(self, store):
        """Upserted pages are in the frontier as soon as they are stored."""
        (a,) = _add(store, "A")
        assert store.frontier.contains(a) is True

    def test_explored_and_bugged_excluded(self, store):
        """Only unexplored, non-bugged pages are claimed."""
        a, b, c = _add(store, "A", "B", "C")
        store.frontier.complete(a)
        store.frontier.mark_bugged(b)
        assert store.frontier.next(10) == [c]
        assert store.frontier.contains(a) is False
        assert store.frontier.contains(b) is False

    def test_france_scenario(self, store, france):
        """An explored page never comes back, even once bugged."""
        assert store.pages.upsert("France") == (1095, False)
        store.pages.mark_explored(1095)
        assert 1095 not in store.frontier.next(10)

        store.pages.mark_bugged(1095)
        assert store.frontier.requeue_bugged() == 0
        assert 1095 not in store.frontier.next(10)


class TestRelease:
    """Test handing claims back."""

    def test_release(self, store):
        """Released pages can be claimed again."""
        (a,) = _add(store, "A")
        store.frontier.next(1)
        assert store.frontier.release(a) is True
        assert store.frontier.release(a) is False
        assert store.frontier.next(1) == [a]

    def test_release_many(self, store):
        """Several claims are released at once."""
        ids = _add(store, "A", "B", "C")
        store.frontier.next(3)
        assert store.frontier.release_many(ids) == 3
        assert store.frontier.claimed_count() == 0

    def test_lease_releases_on_error(self, store):
        """A failing block gives its pages back."""
        (a,) = _add(store, "A")
        with pytest.raises(RuntimeError):
            with store.frontier.lease(1) as ids:
                assert ids == [a]
                raise RuntimeError("crawl failed")
        assert store.frontier.next(1) == [a]

    def test_lease_complete(self, store):
        """Pages completed inside a lease leave the frontier."""
        (a,) = _add(store, "A")
        with store.frontier.lease(1) as ids:
            for page_id in ids:
                store.frontier.complete(page_id)
        assert store.frontier.size() == 0
        assert store.frontier.claimed_count() == 0

    def test_lease_releases_unfinished_on_normal_exit(self, store):
        """Pages left unfinished by a clean block go back to the frontier."""
        a, b = _add(store, "A", "B")
        with store.frontier.lease(2) as ids:
            assert ids == [a, b]
            store.frontier.complete(a)
        assert store.frontier.claimed_count() == 0
        assert store.frontier.next(2) == [b]


class TestClaimRecovery:
    """Test abandoned and stale claims."""

    def test_expired_claim_reclaimable(self, store, temp_db_path):
        """Claims older than the timeout are handed out again."""
        (a,) = _add(store, "A")
        frontier = Frontier(store.pages, claim_timeout=60)
        assert frontier.next(1) == [a]

        con = sqlite3.connect(temp_db_path)
        con.execute("UPDATE pages SET claimed_at = 1.0 WHERE id = ?", (a,))
        con.commit()
        con.close()

        assert frontier.claimed_count() == 0
        assert frontier.next(1) == [a]

    def test_no_timeout_never_expires(self, store, temp_db_path):
        """A zero timeout keeps claims until released."""
        (a,) = _add(store, "A")
        frontier = Frontier(store.pages, claim_timeout=0)
        frontier.next(1)

        con = sqlite3.connect(temp_db_path)
        con.execute("UPDATE pages SET claimed_at = 1.0 WHERE id = ?", (a,))
        con.commit()
        con.close()

        assert frontier.next(1) == []

    def test_recover_stale_claims(self, store):
        """Startup recovery drops every claim."""
        _add(store, "A", "B")
        store.frontier.next(2)
        assert store.frontier.recover_stale_claims() == 2
        assert store.frontier.claimed_count() == 0


class TestBugged:
    """Test the bugged retry pass."""

    def test_requeue_bugged(self, store):
        """Bugged pages return to the frontier on request."""
        a, b = _add(store, "A", "B")
        store.frontier.mark_bugged(a)
        assert store.frontier.next(10) == [b]

        assert store.frontier.requeue_bugged() == 1
        assert store.frontier.contains(a) is True


class TestPeek:
    """Test non-claiming listings."""

    def test_peek(self, store):
        """peek lists entries by id without claiming them."""
        a, b, c = _add(store, "A", "B", "C")
        store.frontier.mark_bugged(b)
        store.frontier.next(1)

        assert store.frontier.peek() == [
            FrontierEntry(page_id=a, key="A", bugged=False, claimed=True),
            FrontierEntry(page_id=c, key="C", bugged=False, claimed=False),
        ]
        assert [e.page_id for e in store.frontier.peek(include_bugged=True)] == [a, b, c]
        assert len(store.frontier.peek(limit=1)) == 1


class TestConcurrency:
    """Test concurrent claiming."""

    def test_no_double_dispatch(self, store):
        """Concurrent next(1) calls never return the same page twice."""
        ids = _add(store, *[f"Page {i}" for i in range(40)])

        def drain(_):
            claimed = []
            while True:
                batch = store.frontier.next(1)
                if not batch:
                    return claimed
                claimed.extend(batch)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(drain, range(8)))

        claimed = [page_id for batch in results for page_id in batch]
        assert len(claimed) == len(set(claimed))
        assert sorted(claimed) == ids
