import pytest

from mindloop.core.bounded import LRUMap, RingBuffer


def test_ring_evicts_oldest_to_callback():
    evicted = []
    ring = RingBuffer(3, on_evict=evicted.append)
    ring.extend([1, 2, 3, 4, 5])
    assert ring.to_list() == [3, 4, 5]
    assert evicted == [1, 2]
    assert ring.recent(2) == [5, 4]
    assert ring.tail(2) == [4, 5]
    assert ring.last() == 5


def test_ring_pop_oldest_skips_callback():
    evicted = []
    ring = RingBuffer(5, [1, 2, 3], on_evict=evicted.append)
    assert ring.pop_oldest(2) == [1, 2]
    assert ring.pop_oldest(10) == [3]
    assert not ring
    assert evicted == []


def test_ring_rejects_zero_capacity():
    with pytest.raises(ValueError):
        RingBuffer(0)


def test_lru_map_evicts_stalest():
    m = LRUMap(2)
    m.put("a", 1)
    m.put("b", 2)
    m.put("a", 3)  # touch
    m.put("c", 4)
    assert m.keys() == ["a", "c"]
    assert m.get("a") == 3
    assert "b" not in m
