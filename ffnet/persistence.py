"""
persistence.py
~~~~~~~~~~~~~~

Weight snapshots and SQLite-based storage for networks.

Weights are written in a versioned text format::

    ffnet-weights 1
    layers 2
    shape 1 3
    shape 3 2
    weights 0.52,-0.13,0.91
    biases 0.1,0.1,0.1
    weights ...
    biases ...

The header records every layer's (input, output) size, so a document is
checked against the target network before any weight is overwritten.
Values are written with ``repr`` and round-trip exactly.

The :class:`ModelDatabase` stores a network's configuration as JSON next
to its weight document, which is enough to rebuild it later.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional, Tuple

from ffnet.errors import (
    ConfigurationError,
    DimensionMismatchError,
    ModelStoreError,
    PersistenceFormatError,
)
from ffnet.matrix import Matrix
from ffnet.network import Network, NetworkConfig

# Configure module logger
logger = logging.getLogger(__name__)

FORMAT_MAGIC = 'ffnet-weights'
FORMAT_VERSION = 1
DELIMITER = ','


# ============================================================================
# TEXT FORMAT
# ============================================================================

def _format_values(values: List[float]) -> str:
    return DELIMITER.join(repr(float(v)) for v in values)


def dumps(network: Network) -> str:
    """
    Serialise every layer's weights and biases.

    Args:
        network: Network to snapshot

    Returns:
        str: Weight document in format version 1
    """
    lines = [
        f"{FORMAT_MAGIC} {FORMAT_VERSION}",
        f"layers {len(network.layers)}",
    ]
    for layer in network.layers:
        lines.append(f"shape {layer.size.input_size} {layer.size.output_size}")
    for layer in network.layers:
        lines.append(f"weights {_format_values(layer.weights.flatten())}")
        lines.append(f"biases {_format_values(layer.biases.flatten())}")
    return '\n'.join(lines) + '\n'


class _Reader:
    """Line cursor that reports the line number of every failure."""

    def __init__(self, text: str):
        self.lines = [line.strip() for line in text.splitlines() if line.strip()]
        self.position = 0

    def next_fields(self, keyword: str) -> List[str]:
        if self.position >= len(self.lines):
            raise PersistenceFormatError(
                f"Unexpected end of document, expected '{keyword}'"
            )
        line = self.lines[self.position]
        self.position += 1
        head, _, rest = line.partition(' ')
        if head != keyword:
            raise PersistenceFormatError(
                f"Line {self.position}: expected '{keyword}', found '{head}'"
            )
        return rest.split()

    def next_values(self, keyword: str, count: int) -> List[float]:
        fields = self.next_fields(keyword)
        if len(fields) != 1:
            raise PersistenceFormatError(
                f"Line {self.position}: '{keyword}' values must be joined by '{DELIMITER}'"
            )
        parts = fields[0].split(DELIMITER)
        if len(parts) != count:
            raise PersistenceFormatError(
                f"Line {self.position}: expected {count} {keyword} values, "
                f"found {len(parts)}"
            )
        try:
            return [float(part) for part in parts]
        except ValueError as e:
            raise PersistenceFormatError(f"Line {self.position}: {e}") from e

    def next_ints(self, keyword: str, count: int) -> List[int]:
        fields = self.next_fields(keyword)
        if len(fields) != count:
            raise PersistenceFormatError(
                f"Line {self.position}: '{keyword}' needs {count} field(s)"
            )
        try:
            return [int(field) for field in fields]
        except ValueError as e:
            raise PersistenceFormatError(f"Line {self.position}: {e}") from e


def read_shapes(text: str) -> List[Tuple[int, int]]:
    """
    Parse only the header of a weight document.

    Returns:
        list: ``(input_size, output_size)`` for every layer

    Raises:
        PersistenceFormatError: If the header is malformed or the version
            is not supported
    """
    return _parse(text)[0]


def _parse(text: str) -> Tuple[List[Tuple[int, int]], List[Tuple[Matrix, Matrix]]]:
    reader = _Reader(text)
    (version,) = reader.next_ints(FORMAT_MAGIC, 1)
    if version != FORMAT_VERSION:
        raise PersistenceFormatError(
            f"Unsupported weight format version {version}, "
            f"expected {FORMAT_VERSION}"
        )
    (count,) = reader.next_ints('layers', 1)
    if count < 1:
        raise PersistenceFormatError(f"Layer count must be positive, got {count}")

    shapes = []
    for _ in range(count):
        input_size, output_size = reader.next_ints('shape', 2)
        if input_size < 1 or output_size < 1:
            raise PersistenceFormatError(
                f"Line {reader.position}: layer sizes must be positive"
            )
        shapes.append((input_size, output_size))

    parameters = []
    for input_size, output_size in shapes:
        weights = reader.next_values('weights', input_size * output_size)
        biases = reader.next_values('biases', output_size)
        parameters.append((
            Matrix.from_array([
                weights[r * input_size:(r + 1) * input_size]
                for r in range(output_size)
            ]),
            Matrix.column(biases),
        ))

    if reader.position != len(reader.lines):
        raise PersistenceFormatError(
            f"Unexpected content after layer {count} at line {reader.position + 1}"
        )
    return shapes, parameters


def loads(network: Network, text: str) -> None:
    """
    Overwrite a network's weights and biases from a weight document.

    The whole document is validated against the network before any layer
    is modified.

    Raises:
        PersistenceFormatError: If the document is malformed or its shapes
            do not match the network's topology
    """
    shapes, parameters = _parse(text)
    expected = [(layer.size.input_size, layer.size.output_size) for layer in network.layers]
    if shapes != expected:
        raise PersistenceFormatError(
            f"Saved layer shapes {shapes} do not match network shapes {expected}"
        )
    for layer, (weights, biases) in zip(network.layers, parameters):
        layer.weights = weights
        layer.biases = biases


def save_weights(network: Network, path: str) -> None:
    """Write a network's weight document to ``path``."""
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(dumps(network))
    logger.info(f"Saved weights of network {network.sizes} to {path}")


def load_weights(network: Network, path: str) -> None:
    """Load the weight document at ``path`` into ``network``."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except UnicodeDecodeError as e:
        raise PersistenceFormatError(f"{path} is not a UTF-8 weight document: {e}") from e
    loads(network, text)
    logger.info(f"Loaded weights for network {network.sizes} from {path}")


# ============================================================================
# MODEL STORE
# ============================================================================

def _decode_architecture(row: sqlite3.Row) -> Dict[str, Any]:
    """
    Parse the JSON configuration stored next to a network.

    Raises:
        PersistenceFormatError: If the column is not JSON or lacks a
            non-empty list of layers with integer sizes
    """
    try:
        architecture = json.loads(row['architecture'])
        layers = architecture['layers']
        if not isinstance(layers, list) or not layers:
            raise TypeError("'layers' must be a non-empty list")
        for spec in layers:
            if not isinstance(spec['input_size'], int) or not isinstance(spec['output_size'], int):
                raise TypeError("layer sizes must be integers")
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise PersistenceFormatError(f"Corrupt stored architecture: {e!r}") from e
    return architecture


class ModelDatabase:
    """
    Manages SQLite database for network persistence.

    The database stores:
    - Network configuration as JSON (layers, hyperparameters)
    - Weights as a text weight document
    - Training status and the most recent training loss
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    network_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    loss REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        architecture = _decode_architecture(row)
        layers = architecture['layers']
        return {
            'network_id': row['network_id'],
            'architecture': architecture,
            'sizes': [layers[0]['input_size']] + [spec['output_size'] for spec in layers],
            'weights_shape': [
                [spec['output_size'], spec['input_size']] for spec in layers
            ],
            'biases_shape': [[spec['output_size'], 1] for spec in layers],
            'trained': bool(row['trained']),
            'loss': row['loss'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at'],
        }

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = True,
        loss: Optional[float] = None
    ) -> None:
        """
        Save (or replace) a network.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            loss: Most recent training loss

        Raises:
            ValueError: If loss is negative
        """
        if loss is not None and loss < 0:
            raise ValueError(f"Loss must be non-negative, got {loss}")

        architecture_json = json.dumps(network.to_config().to_dict())
        network_data = dumps(network)

        with self._get_connection() as conn:
            conn.execute('''
                INSERT INTO networks
                (network_id, architecture, network_data, trained, loss)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    loss = excluded.loss,
                    updated_at = CURRENT_TIMESTAMP
            ''', (network_id, architecture_json, network_data, 1 if trained else 0, loss))

        logger.info(
            f"Saved network '{network_id}' with sizes {network.sizes}, "
            f"trained={trained}, loss={loss}"
        )

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Rebuild a network from its configuration and weights.

        Returns:
            Network or None if not found

        Raises:
            PersistenceFormatError: If the stored weights are corrupt
        """
        with self._get_connection() as conn:
            row = conn.execute(
                'SELECT architecture, network_data FROM networks WHERE network_id = ?',
                (network_id,)
            ).fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        try:
            network = NetworkConfig.from_dict(_decode_architecture(row)).build()
        except (ConfigurationError, DimensionMismatchError) as e:
            raise PersistenceFormatError(
                f"Stored architecture of '{network_id}' is invalid: {e}"
            ) from e
        loads(network, row['network_data'])
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """List metadata of every stored network, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute('''
                SELECT network_id, architecture, trained, loss,
                       created_at, updated_at
                FROM networks
                ORDER BY created_at DESC
            ''').fetchall()

        networks = [self._row_metadata(row) for row in rows]
        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def get_network_metadata_from_db(self, network_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute('''
                SELECT network_id, architecture, trained, loss,
                       created_at, updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,)).fetchone()

        if row is None:
            logger.warning(f"Metadata for network '{network_id}' not found")
            return None
        return self._row_metadata(row)

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network.

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(f"Could not delete network '{network_id}': not found")
        return deleted

    def delete_old_networks_from_db(self, days: float) -> int:
        """
        Delete networks created more than ``days`` days ago.

        Returns:
            int: Number of deleted networks

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM networks WHERE julianday('now') - julianday(created_at) > ?",
                (days,)
            )
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


# ============================================================================
# MODULE-LEVEL HELPERS
# ============================================================================

def _get_db(model_dir: str) -> ModelDatabase:
    return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))


@contextmanager
def _store_errors(action: str) -> Generator[None, None, None]:
    """Log SQLite failures and re-raise them as ModelStoreError."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error(f"Database error {action}: {e}")
        raise ModelStoreError(f"Database error {action}: {e}") from e


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = 'models',
    trained: bool = True,
    loss: Optional[float] = None
) -> None:
    """
    Save a network to the SQLite database in ``model_dir``.

    Example:
        >>> net = NetworkConfig().add_layer(3, 4).add_layer(4, 2).build()
        >>> save_network(net, "my_network", trained=False)
    """
    if not network_id or not isinstance(network_id, str):
        raise ValueError("network_id must be a non-empty string")
    with _store_errors(f"saving network '{network_id}'"):
        _get_db(model_dir).save_network_to_db(network, network_id, trained, loss)


def load_network(network_id: str, model_dir: str = 'models') -> Optional[Network]:
    """Load a network, or None if no network has that id."""
    if not network_id or not isinstance(network_id, str):
        raise ValueError("network_id must be a non-empty string")
    with _store_errors(f"loading network '{network_id}'"):
        return _get_db(model_dir).load_network_from_db(network_id)


def list_saved_networks(model_dir: str = 'models') -> List[Dict[str, Any]]:
    with _store_errors("listing networks"):
        return _get_db(model_dir).list_networks_from_db()


def get_network_metadata(network_id: str, model_dir: str = 'models') -> Optional[Dict[str, Any]]:
    with _store_errors(f"getting metadata for '{network_id}'"):
        return _get_db(model_dir).get_network_metadata_from_db(network_id)


def delete_network(network_id: str, model_dir: str = 'models') -> bool:
    with _store_errors(f"deleting network '{network_id}'"):
        return _get_db(model_dir).delete_network_from_db(network_id)


def delete_old_networks(days: float = 2, model_dir: str = 'models') -> int:
    with _store_errors("deleting old networks"):
        return _get_db(model_dir).delete_old_networks_from_db(days)
