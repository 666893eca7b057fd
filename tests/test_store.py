"""
Tests for the in-memory metric store.
"""

import threading

from cert_expiry_exporter.store import (
    SENTINEL,
    CheckStatus,
    EndpointKey,
    Measurement,
    MetricStore,
)


class TestMetricStore:
    """Test metric store behaviour."""

    def test_initialize_sets_sentinel(self):
        """Test a new key starts at the sentinel and unmeasured."""
        store = MetricStore()
        key = EndpointKey("http://a.local", "prod")

        assert store.initialize(key) is True

        measurement = store.get(key)
        assert measurement.value == SENTINEL == -1
        assert measurement.status is CheckStatus.UNMEASURED
        assert measurement.updated_at is None

    def test_initialize_is_idempotent(self):
        """Test initialize never overwrites a real measurement."""
        store = MetricStore()
        key = EndpointKey("http://a.local", "prod")

        store.initialize(key)
        store.set(key, 42.5)

        assert store.initialize(key) is False
        assert store.get(key).value == 42.5
        assert store.get(key).status is CheckStatus.OK

    def test_set_creates_unknown_key(self):
        """Test set on an unknown key creates it."""
        store = MetricStore()
        key = EndpointKey("http://new.local", "")

        store.set(key, 3.0)

        assert key in store
        assert len(store) == 1

    def test_set_failed_publishes_sentinel(self):
        """Test failures publish the sentinel with their status."""
        store = MetricStore()
        key = EndpointKey("http://a.local", "prod")
        store.set(key, 10.0)

        store.set_failed(key, CheckStatus.TRANSPORT_ERROR, "connection refused")

        measurement = store.get(key)
        assert measurement.value == SENTINEL
        assert measurement.status is CheckStatus.TRANSPORT_ERROR
        assert measurement.error == "connection refused"
        assert measurement.updated_at is not None

    def test_later_write_wins(self):
        """Test duplicate keys resolve to the last write."""
        store = MetricStore()
        key = EndpointKey("http://a.local", "prod")

        store.set(key, 1.0)
        store.set(key, 2.0)

        assert store.get(key).value == 2.0

    def test_keys_distinguish_origin(self):
        """Test the same url under two origins gives two entries."""
        store = MetricStore()

        store.set(EndpointKey("http://a.local", "prod"), 1.0)
        store.set(EndpointKey("http://a.local", "staging"), 2.0)

        assert len(store) == 2
        assert store.get(EndpointKey("http://a.local", "staging")).value == 2.0

    def test_snapshot_is_a_copy(self):
        """Test mutating the store does not change a taken snapshot."""
        store = MetricStore()
        key = EndpointKey("http://a.local", "prod")
        store.set(key, 1.0)

        snapshot = store.snapshot()
        store.set(key, 5.0)
        store.set(EndpointKey("http://b.local", "prod"), 7.0)

        assert snapshot == {key: snapshot[key]}
        assert snapshot[key].value == 1.0

    def test_status_counts(self):
        """Test status counts cover every status."""
        store = MetricStore()
        store.initialize(EndpointKey("a", ""))
        store.set(EndpointKey("b", ""), 1.0)
        store.set_failed(EndpointKey("c", ""), CheckStatus.CONTRACT_ERROR)

        assert store.status_counts() == {
            "unmeasured": 1,
            "ok": 1,
            "transport_error": 0,
            "contract_error": 1,
        }

    def test_concurrent_writers_and_readers(self):
        """Test concurrent writes to distinct keys with concurrent snapshots."""
        store = MetricStore()
        keys = [EndpointKey(f"http://host{i}.local", f"o{i}") for i in range(20)]
        for key in keys:
            store.initialize(key)

        errors = []

        def writer(index: int) -> None:
            for n in range(200):
                store.set(keys[index], float(index * 1000 + n))

        def reader() -> None:
            for _ in range(200):
                for key, measurement in store.snapshot().items():
                    if not isinstance(measurement, Measurement):
                        errors.append(key)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(len(keys))]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        snapshot = store.snapshot()
        assert len(snapshot) == len(keys)
        for index, key in enumerate(keys):
            assert snapshot[key].value == float(index * 1000 + 199)
