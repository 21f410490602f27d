"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-backed store of named networks.

Networks are stored as their per-layer tables (see layer_io), so a reload
reproduces the exact weights and biases, alongside queryable metadata:
topology, per-layer learning rates, training status and accuracy.
"""

import os
import json
import sqlite3
import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from digitnet.layer_io import LayerLoadError, network_from_tables, network_to_tables
from digitnet.network import Network

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = 'models'


class ModelDatabase:
    """
    Manages the SQLite database holding saved networks.

    Each row keeps:
    - Network metadata (architecture, learning rates, status, accuracy)
    - The encoded layer tables as JSON text
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
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
        """Connection that commits on success and rolls back on error."""
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
                    learning_rates TEXT NOT NULL,
                    layer_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        architecture = json.loads(row['architecture'])
        return {
            'network_id': row['network_id'],
            'architecture': architecture,
            'learning_rates': json.loads(row['learning_rates']),
            # Each layer holds one row per node: bias followed by weights
            'layer_shapes': [
                [architecture[i + 1], architecture[i] + 1]
                for i in range(len(architecture) - 1)
            ],
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Insert or replace a network.

        Raises:
            ValueError: If accuracy is outside [0.0, 1.0]
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        layer_data = json.dumps(network_to_tables(network))

        with self._get_connection() as conn:
            # Keep the original creation time when replacing a network
            conn.execute('''
                INSERT INTO networks
                (network_id, architecture, learning_rates, layer_data,
                 trained, accuracy)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    learning_rates = excluded.learning_rates,
                    layer_data = excluded.layer_data,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                json.dumps(network.layer_widths),
                json.dumps(network.learning_rates),
                layer_data,
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.layer_widths}, trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Load a network, or None if no such id exists.

        Raises:
            LayerLoadError: If the stored tables disagree with the stored
                architecture
        """
        with self._get_connection() as conn:
            row = conn.execute(
                '''SELECT architecture, learning_rates, layer_data
                   FROM networks WHERE network_id = ?''',
                (network_id,)
            ).fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = network_from_tables(
            json.loads(row['layer_data']),
            json.loads(row['architecture']),
            json.loads(row['learning_rates'])
        )
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """Metadata of every stored network, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute('''
                SELECT network_id, architecture, learning_rates, trained,
                       accuracy, created_at, updated_at
                FROM networks
                ORDER BY created_at DESC
            ''').fetchall()

        networks = [self._row_to_metadata(row) for row in rows]
        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """Delete one network; False if it did not exist."""
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

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """Metadata for one network without decoding its layers."""
        with self._get_connection() as conn:
            row = conn.execute('''
                SELECT network_id, architecture, learning_rates, trained,
                       accuracy, created_at, updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,)).fetchone()

        if row is None:
            logger.warning(f"Metadata for network '{network_id}' not found")
            return None
        return self._row_to_metadata(row)

    def delete_old_networks_from_db(self, days: int) -> int:
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
                '''DELETE FROM networks
                   WHERE julianday('now') - julianday(created_at) > ?''',
                (days,)
            )
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


# Global database instance for the default model directory
_db = None


def _get_db() -> ModelDatabase:
    global _db
    if _db is None:
        _db = ModelDatabase(
            db_path=os.path.join(DEFAULT_MODEL_DIR, 'networks.db')
        )
    return _db


def _database_for(model_dir: str) -> ModelDatabase:
    """Singleton for the default directory, a fresh handle otherwise."""
    if model_dir == DEFAULT_MODEL_DIR:
        return _get_db()
    return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))


def _valid_id(network_id: Any) -> bool:
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False
    return True


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR,
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a network to the store.

    Args:
        network: The network to save
        network_id: Unique identifier for the network
        model_dir: Directory holding networks.db
        trained: Whether the network has been trained
        accuracy: Test accuracy (0.0 to 1.0)

    Returns:
        bool: True if the save succeeded

    Example:
        >>> net = Network([784, 30, 10])
        >>> save_network(net, "my_network", trained=False)
        True
    """
    if not _valid_id(network_id):
        return False

    try:
        return _database_for(model_dir).save_network_to_db(
            network, network_id, trained, accuracy
        )
    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Network]:
    """
    Load a network from the store.

    Returns:
        The network, or None if it is missing or its layers are malformed
    """
    if not _valid_id(network_id):
        return None

    try:
        return _database_for(model_dir).load_network_from_db(network_id)
    except LayerLoadError as e:
        logger.error(f"Malformed layers in network '{network_id}': {e}")
        return None
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error loading network '{network_id}': {e}")
        return None
    except sqlite3.Error as e:
        logger.error(f"Database error loading network '{network_id}': {e}")
        return None


def list_saved_networks(model_dir: str = DEFAULT_MODEL_DIR) -> List[Dict[str, Any]]:
    """Metadata for every saved network ([] on storage errors)."""
    try:
        return _database_for(model_dir).list_networks_from_db()
    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = DEFAULT_MODEL_DIR) -> bool:
    """Delete a saved network; False if missing or on storage errors."""
    if not _valid_id(network_id):
        return False

    try:
        return _database_for(model_dir).delete_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def get_network_metadata(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Metadata for one saved network without decoding its layers.

    Example:
        >>> metadata = get_network_metadata("my_network")
        >>> if metadata:
        ...     print(f"Accuracy: {metadata['accuracy']}")
    """
    if not _valid_id(network_id):
        return None

    try:
        return _database_for(model_dir).get_network_metadata_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error getting metadata for '{network_id}': {e}")
        return None
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error getting metadata for '{network_id}': {e}")
        return None


def delete_old_networks(days: int = 2, model_dir: str = DEFAULT_MODEL_DIR) -> int:
    """
    Delete networks older than ``days`` days.

    Returns:
        int: Number deleted, or -1 on storage errors

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _database_for(model_dir).delete_old_networks_from_db(days)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
