"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for the SQLite model store.
"""

import os
import json
import sqlite3

import numpy as np
import pytest

from digitnet.network import Network
from digitnet.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    get_network_metadata,
    delete_old_networks,
    ModelDatabase
)


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a simple 3-layer network for testing."""
    return Network([3, 4, 2], learning_rate=0.1, rng=np.random.default_rng(11))


@pytest.fixture
def trained_network(simple_network):
    """Create a simple network with some training applied."""
    rng = np.random.default_rng(12)
    for i in range(10):
        target = [1.0, 0.0] if i % 2 == 0 else [0.0, 1.0]
        simple_network.train_one(rng.uniform(0, 1, size=3).tolist(), target)
    return simple_network


def age_network(temp_db_dir, network_id, modifier):
    """Move a network's creation time into the past."""
    conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
    conn.execute(
        "UPDATE networks SET created_at = datetime('now', ?) WHERE network_id = ?",
        (modifier, network_id)
    )
    conn.commit()
    conn.close()


@pytest.mark.unit
class TestModelPersistence:
    """Test basic model persistence operations."""

    def test_save_network_creates_database(self, simple_network, temp_db_dir):
        """Test that saving a network creates the database file."""
        success = save_network(
            simple_network, "test_network_1", model_dir=temp_db_dir, trained=False
        )

        assert success is True
        assert os.path.exists(f"{temp_db_dir}/networks.db")

    def test_save_network_with_metadata(self, trained_network, temp_db_dir):
        """Test that network metadata is saved correctly."""
        save_network(trained_network, "trained_1", model_dir=temp_db_dir,
                     trained=True, accuracy=0.85)

        metadata = get_network_metadata("trained_1", temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == "trained_1"
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85
        assert metadata['architecture'] == [3, 4, 2]
        assert metadata['learning_rates'] == [0.1, 0.1]
        assert metadata['layer_shapes'] == [[4, 4], [2, 5]]

    def test_load_network_returns_network(self, simple_network, temp_db_dir):
        """Test that loading a network returns a valid Network object."""
        save_network(simple_network, "test_network_2", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_2", temp_db_dir)

        assert isinstance(loaded_network, Network)
        assert loaded_network.layer_widths == simple_network.layer_widths

    def test_load_nonexistent_network(self, temp_db_dir):
        assert load_network("nonexistent", temp_db_dir) is None

    def test_load_preserves_weights_exactly(self, trained_network, temp_db_dir):
        """Test that saved weights and biases come back bit for bit."""
        save_network(trained_network, "test_network_3", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_3", temp_db_dir)

        for original, loaded in zip(trained_network.layers, loaded_network.layers):
            assert [n.weights for n in original.nodes] == \
                [n.weights for n in loaded.nodes]
            assert [n.bias for n in original.nodes] == \
                [n.bias for n in loaded.nodes]
        assert loaded_network.forward([0.2, 0.4, 0.6]) == \
            trained_network.forward([0.2, 0.4, 0.6])

    def test_load_preserves_learning_rates(self, temp_db_dir):
        net = Network([2, 3, 1], learning_rate=0.1, rng=np.random.default_rng(1))
        net.layers[1].learning_rate = 0.05

        save_network(net, "rates", model_dir=temp_db_dir)

        assert load_network("rates", temp_db_dir).learning_rates == [0.1, 0.05]

    def test_load_corrupted_layers_returns_none(self, simple_network, temp_db_dir):
        """Test that layer tables disagreeing with the architecture are rejected."""
        save_network(simple_network, "corrupt", model_dir=temp_db_dir)

        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        conn.execute(
            "UPDATE networks SET architecture = ? WHERE network_id = ?",
            (json.dumps([3, 5, 2]), "corrupt")
        )
        conn.commit()
        conn.close()

        assert load_network("corrupt", temp_db_dir) is None

    def test_load_non_text_cell_returns_none(self, temp_db_dir):
        """Test that a number where hex text belongs is rejected."""
        net = Network([1, 1], rng=np.random.default_rng(3))
        save_network(net, "numeric", model_dir=temp_db_dir)

        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        conn.execute(
            "UPDATE networks SET layer_data = ? WHERE network_id = ?",
            (json.dumps([[[1.0, "3ff0000000000000"]]]), "numeric")
        )
        conn.commit()
        conn.close()

        assert load_network("numeric", temp_db_dir) is None

    def test_list_saved_networks_empty(self, temp_db_dir):
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        save_network(simple_network, "net1", model_dir=temp_db_dir,
                     trained=True, accuracy=0.9)
        save_network(simple_network, "net2", model_dir=temp_db_dir, trained=False)

        networks = list_saved_networks(temp_db_dir)

        assert len(networks) == 2
        assert {net['network_id'] for net in networks} == {"net1", "net2"}

    def test_list_includes_metadata(self, simple_network, temp_db_dir):
        save_network(simple_network, "metadata_test", model_dir=temp_db_dir,
                     trained=True, accuracy=0.75)

        network = list_saved_networks(temp_db_dir)[0]

        assert network['architecture'] == [3, 4, 2]
        assert network['trained'] is True
        assert network['accuracy'] == 0.75
        for field in ('created_at', 'updated_at', 'layer_shapes', 'learning_rates'):
            assert field in network

    def test_delete_network_success(self, simple_network, temp_db_dir):
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        ModelDatabase(db_path=f'{temp_db_dir}/networks.db')

        assert delete_network("nonexistent", temp_db_dir) is False

    def test_save_untrained_network(self, simple_network, temp_db_dir):
        save_network(simple_network, "untrained", model_dir=temp_db_dir,
                     trained=False, accuracy=None)

        metadata = get_network_metadata("untrained", temp_db_dir)
        assert metadata['trained'] is False
        assert metadata['accuracy'] is None

    def test_update_network(self, simple_network, temp_db_dir):
        """Test that saving with the same ID replaces the row."""
        save_network(simple_network, "update_test", model_dir=temp_db_dir,
                     trained=False)
        save_network(simple_network, "update_test", model_dir=temp_db_dir,
                     trained=True, accuracy=0.88)

        metadata = get_network_metadata("update_test", temp_db_dir)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.88
        assert len(list_saved_networks(temp_db_dir)) == 1

    def test_invalid_accuracy_rejected(self, simple_network, temp_db_dir):
        assert save_network(simple_network, "bad", model_dir=temp_db_dir,
                            accuracy=1.5) is False
        assert get_network_metadata("bad", temp_db_dir) is None

    def test_database_method_raises_on_invalid_accuracy(self, simple_network,
                                                        temp_db_dir):
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "networks.db"))

        with pytest.raises(ValueError):
            db.save_network_to_db(simple_network, "bad", accuracy=-0.1)

    @pytest.mark.parametrize('network_id', ['', None, 42])
    def test_invalid_network_id(self, simple_network, temp_db_dir, network_id):
        assert save_network(simple_network, network_id, model_dir=temp_db_dir) is False
        assert load_network(network_id, temp_db_dir) is None
        assert delete_network(network_id, temp_db_dir) is False


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_train_cycle(self, simple_network, temp_db_dir):
        """Test complete cycle: save, load, train, save again."""
        save_network(simple_network, "cycle_test", model_dir=temp_db_dir,
                     trained=False)
        loaded_network = load_network("cycle_test", temp_db_dir)

        for _ in range(20):
            loaded_network.train_one([0.1, 0.2, 0.3], [1.0, 0.0])
        save_network(loaded_network, "cycle_test", model_dir=temp_db_dir,
                     trained=True, accuracy=0.85)

        final_network = load_network("cycle_test", temp_db_dir)
        metadata = get_network_metadata("cycle_test", temp_db_dir)

        assert final_network.predict([0.1, 0.2, 0.3]) == \
            loaded_network.predict([0.1, 0.2, 0.3])
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85

    def test_multiple_networks_coexist(self, temp_db_dir):
        networks_to_create = [
            ([784, 30, 10], "mnist_network"),
            ([3, 4, 2], "simple_network"),
            ([10, 20, 20, 10], "deep_network")
        ]

        for architecture, network_id in networks_to_create:
            net = Network(architecture, rng=np.random.default_rng(0))
            save_network(net, network_id, model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(networks_to_create)
        for architecture, network_id in networks_to_create:
            assert load_network(network_id, temp_db_dir).layer_widths == architecture


class TestDeleteOldNetworks:
    """Tests for automatic cleanup of old networks."""

    def test_delete_old_networks_mixed_ages(self, simple_network, temp_db_dir):
        old_ids = ["old_1", "old_2"]
        recent_ids = ["recent_1", "recent_2"]
        for network_id in old_ids + recent_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)
        for network_id in old_ids:
            age_network(temp_db_dir, network_id, '-3 days')

        deleted_count = delete_old_networks(days=2, model_dir=temp_db_dir)

        assert deleted_count == len(old_ids)
        for network_id in old_ids:
            assert load_network(network_id, temp_db_dir) is None
        for network_id in recent_ids:
            assert load_network(network_id, temp_db_dir) is not None

    def test_delete_old_networks_custom_days(self, simple_network, temp_db_dir):
        save_network(simple_network, "aged", model_dir=temp_db_dir)
        age_network(temp_db_dir, "aged", '-5 days')

        assert delete_old_networks(days=7, model_dir=temp_db_dir) == 0
        assert delete_old_networks(days=3, model_dir=temp_db_dir) == 1

    def test_update_keeps_creation_time(self, simple_network, temp_db_dir):
        """Test that re-saving a network does not make it look new."""
        save_network(simple_network, "aged", model_dir=temp_db_dir)
        age_network(temp_db_dir, "aged", '-3 days')
        save_network(simple_network, "aged", model_dir=temp_db_dir,
                     trained=True, accuracy=0.5)

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 1

    def test_delete_old_networks_empty_db(self, temp_db_dir):
        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0

    def test_delete_old_networks_negative_days(self, temp_db_dir):
        with pytest.raises(ValueError) as exc_info:
            delete_old_networks(days=-1, model_dir=temp_db_dir)
        assert "non-negative" in str(exc_info.value)
