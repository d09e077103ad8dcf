"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for the SQLite model store.
"""

import os
import sqlite3
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ffnet.errors import ModelStoreError, PersistenceFormatError
from ffnet.network import Loss, Network, NetworkConfig
from ffnet.persistence import (
    ModelDatabase,
    delete_network,
    delete_old_networks,
    get_network_metadata,
    list_saved_networks,
    load_network,
    save_network,
)


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a simple 3 -> 4 -> 2 network for testing."""
    return (
        NetworkConfig(seed=0, loss=Loss.CROSS_ENTROPY, l2_lambda=0.001)
        .add_layer(3, 4, 'leaky_relu')
        .add_layer(4, 2, 'softmax')
        .build()
    )


@pytest.fixture
def trained_network(simple_network):
    """Create a simple network with some training applied."""
    inputs = [[0.1 * i, -0.2 * i, 0.05] for i in range(10)]
    targets = [[1.0, 0.0] if i % 2 else [0.0, 1.0] for i in range(10)]
    simple_network.train(inputs, targets, learning_rate=0.1)
    return simple_network


def age_network(db_path, network_id, modifier):
    conn = sqlite3.connect(db_path)
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
        """Test that the first save creates networks.db in the model directory."""
        save_network(simple_network, "test_network_1", model_dir=temp_db_dir, trained=False)
        assert os.path.exists(f"{temp_db_dir}/networks.db")

    def test_save_network_with_metadata(self, trained_network, temp_db_dir):
        """Test that metadata records training status, loss and shapes."""
        save_network(trained_network, "trained_1", model_dir=temp_db_dir, trained=True, loss=0.25)

        metadata = get_network_metadata("trained_1", temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == "trained_1"
        assert metadata['trained'] is True
        assert metadata['loss'] == 0.25
        assert metadata['sizes'] == [3, 4, 2]
        assert metadata['weights_shape'] == [[4, 3], [2, 4]]
        assert metadata['biases_shape'] == [[4, 1], [2, 1]]
        assert metadata['architecture']['loss'] == 'cross_entropy'

    def test_load_network_returns_network(self, simple_network, temp_db_dir):
        """Test that loading rebuilds the architecture and hyperparameters."""
        save_network(simple_network, "test_network_2", model_dir=temp_db_dir)
        loaded = load_network("test_network_2", temp_db_dir)

        assert isinstance(loaded, Network)
        assert loaded.sizes == simple_network.sizes
        assert [l.activation for l in loaded.layers] == [l.activation for l in simple_network.layers]
        assert loaded.loss_kind is Loss.CROSS_ENTROPY
        assert loaded.l2_lambda == simple_network.l2_lambda

    def test_load_nonexistent_network(self, temp_db_dir):
        assert load_network("nonexistent", temp_db_dir) is None

    def test_load_preserves_weights(self, trained_network, temp_db_dir):
        """Test that trained weights and biases survive a save and load."""
        save_network(trained_network, "test_network_3", model_dir=temp_db_dir)
        loaded = load_network("test_network_3", temp_db_dir)

        for original, restored in zip(trained_network.layers, loaded.layers):
            assert original.weights == restored.weights
            assert original.biases == restored.biases

    def test_invalid_network_id(self, simple_network, temp_db_dir):
        """Test that an empty network ID is rejected."""
        with pytest.raises(ValueError):
            save_network(simple_network, "", model_dir=temp_db_dir)

    def test_negative_loss_rejected(self, simple_network, temp_db_dir):
        with pytest.raises(ValueError):
            save_network(simple_network, "bad", model_dir=temp_db_dir, loss=-1.0)

    def test_list_saved_networks_empty(self, temp_db_dir):
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        """Test listing several saved networks with timestamps."""
        save_network(simple_network, "net1", model_dir=temp_db_dir, trained=True, loss=0.1)
        save_network(simple_network, "net2", model_dir=temp_db_dir, trained=False)

        networks = list_saved_networks(temp_db_dir)
        assert {net['network_id'] for net in networks} == {"net1", "net2"}
        assert all('created_at' in net and 'updated_at' in net for net in networks)

    def test_delete_network_success(self, simple_network, temp_db_dir):
        """Test that a deleted network can no longer be loaded."""
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        assert delete_network("nonexistent", temp_db_dir) is False

    def test_update_network(self, trained_network, temp_db_dir):
        """Test that saving a network with the same ID updates it."""
        save_network(trained_network, "update_test", model_dir=temp_db_dir, trained=False)
        assert get_network_metadata("update_test", temp_db_dir)['trained'] is False

        trained_network.train([[0.5, 0.5, 0.5]], [[1.0, 0.0]])
        save_network(trained_network, "update_test", model_dir=temp_db_dir, trained=True, loss=0.5)

        metadata = get_network_metadata("update_test", temp_db_dir)
        assert metadata['trained'] is True
        assert metadata['loss'] == 0.5
        assert len(list_saved_networks(temp_db_dir)) == 1

        loaded = load_network("update_test", temp_db_dir)
        assert loaded.layers[0].weights == trained_network.layers[0].weights


@pytest.mark.integration
class TestPersistenceIntegration:
    """Test persistence across training sessions."""

    def test_save_load_train_cycle(self, simple_network, temp_db_dir):
        """Test save, load, train and save again."""
        save_network(simple_network, "cycle_test", model_dir=temp_db_dir, trained=False)

        loaded = load_network("cycle_test", temp_db_dir)
        loss = loaded.train([[0.2, 0.1, 0.0], [0.9, 0.1, 0.3]], [[1.0, 0.0], [0.0, 1.0]])
        save_network(loaded, "cycle_test", model_dir=temp_db_dir, trained=True, loss=loss)

        final = load_network("cycle_test", temp_db_dir)
        assert final.predict([0.2, 0.1, 0.0]) == loaded.predict([0.2, 0.1, 0.0])
        assert get_network_metadata("cycle_test", temp_db_dir)['loss'] == pytest.approx(loss)

    def test_multiple_networks_coexist(self, temp_db_dir):
        """Test that networks of different shapes share one database."""
        architectures = {
            "wide": [(8, 30), (30, 4)],
            "simple": [(3, 4), (4, 2)],
            "deep": [(10, 20), (20, 20), (20, 10)],
        }
        for network_id, layers in architectures.items():
            config = NetworkConfig(seed=1)
            for inp, out in layers:
                config.add_layer(inp, out)
            save_network(config.build(), network_id, model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(architectures)
        for network_id, layers in architectures.items():
            loaded = load_network(network_id, temp_db_dir)
            assert loaded.sizes == [layers[0][0]] + [out for _, out in layers]


class TestDeleteOldNetworks:
    """Tests for cleanup of old networks."""

    def test_delete_old_networks_basic(self, simple_network, temp_db_dir):
        """Test that a network older than the cutoff is deleted."""
        save_network(simple_network, "old", model_dir=temp_db_dir)
        age_network(os.path.join(temp_db_dir, "networks.db"), "old", '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 1
        assert load_network("old", temp_db_dir) is None

    def test_delete_old_networks_preserves_recent(self, simple_network, temp_db_dir):
        save_network(simple_network, "recent", model_dir=temp_db_dir)

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0
        assert load_network("recent", temp_db_dir) is not None

    def test_delete_old_networks_mixed_ages(self, simple_network, temp_db_dir):
        """Test that only networks past the cutoff are deleted."""
        db_path = os.path.join(temp_db_dir, "networks.db")
        old_ids = ["old_1", "old_2"]
        recent_ids = ["recent_1", "recent_2"]
        for network_id in old_ids + recent_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)
        for network_id in old_ids:
            age_network(db_path, network_id, '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == len(old_ids)
        assert all(load_network(n, temp_db_dir) is None for n in old_ids)
        assert all(load_network(n, temp_db_dir) is not None for n in recent_ids)

    def test_delete_old_networks_negative_days(self, temp_db_dir):
        with pytest.raises(ValueError) as exc_info:
            delete_old_networks(days=-1, model_dir=temp_db_dir)
        assert "non-negative" in str(exc_info.value)

    def test_delete_old_networks_zero_days(self, simple_network, temp_db_dir):
        save_network(simple_network, "hour_old", model_dir=temp_db_dir)
        age_network(os.path.join(temp_db_dir, "networks.db"), "hour_old", '-1 hour')

        assert delete_old_networks(days=0, model_dir=temp_db_dir) == 1

    def test_model_database_method(self, simple_network, temp_db_dir):
        """Test the ModelDatabase method directly."""
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "networks.db"))
        db.save_network_to_db(simple_network, "direct", trained=False)
        age_network(db.db_path, "direct", '-5 days')

        assert db.delete_old_networks_from_db(days=7) == 0
        assert db.delete_old_networks_from_db(days=3) == 1
        assert db.load_network_from_db("direct") is None


def corrupt_architecture(db_path, network_id, value):
    conn = sqlite3.connect(db_path)
    conn.execute(
        "UPDATE networks SET architecture = ? WHERE network_id = ?",
        (value, network_id)
    )
    conn.commit()
    conn.close()


@pytest.mark.unit
class TestStoreFailures:
    """Test how unreadable databases and corrupt rows are reported."""

    @pytest.fixture
    def garbage_db_dir(self, temp_db_dir):
        with open(os.path.join(temp_db_dir, "networks.db"), "wb") as f:
            f.write(b"this is not an sqlite database\n" * 64)
        return temp_db_dir

    def test_save_to_unreadable_database(self, simple_network, garbage_db_dir):
        """Test that saving into a non-SQLite file raises ModelStoreError."""
        with pytest.raises(ModelStoreError):
            save_network(simple_network, "net", model_dir=garbage_db_dir)

    def test_list_unreadable_database(self, garbage_db_dir):
        """Test that listing a non-SQLite file raises ModelStoreError."""
        with pytest.raises(ModelStoreError):
            list_saved_networks(garbage_db_dir)

    @pytest.mark.parametrize("value", [
        'not json',
        '{"x": 1}',
        '"layers"',
        '{"layers": []}',
        '{"layers": [{"input_size": "3", "output_size": 4}]}',
    ])
    def test_corrupt_architecture(self, simple_network, temp_db_dir, value):
        """Test that a corrupt architecture column raises PersistenceFormatError."""
        save_network(simple_network, "corrupt", model_dir=temp_db_dir)
        corrupt_architecture(os.path.join(temp_db_dir, "networks.db"), "corrupt", value)

        with pytest.raises(PersistenceFormatError):
            load_network("corrupt", temp_db_dir)
        with pytest.raises(PersistenceFormatError):
            list_saved_networks(temp_db_dir)
        with pytest.raises(PersistenceFormatError):
            get_network_metadata("corrupt", temp_db_dir)

    def test_architecture_not_matching_weights(self, simple_network, temp_db_dir):
        """Test that stored sizes disagreeing with the stored weights are rejected."""
        save_network(simple_network, "mismatch", model_dir=temp_db_dir)
        corrupt_architecture(
            os.path.join(temp_db_dir, "networks.db"),
            "mismatch",
            '{"layers": [{"input_size": 3, "output_size": 5}, {"input_size": 5, "output_size": 2}]}'
        )

        with pytest.raises(PersistenceFormatError):
            load_network("mismatch", temp_db_dir)
