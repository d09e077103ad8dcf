"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server for the network engine.

This module provides endpoints for:
- Creating networks from a layer configuration
- Running predictions and per-sample SGD training
- Persisting networks to/from the SQLite model store

Configuration is read from the environment:
- LOG_LEVEL: logging level (default INFO)
- FLASK_ENV: 'production' quiets third-party logs
- MODEL_DIR: directory holding networks.db (default 'models')
- PORT: listening port (default 8000)
"""

import os
import uuid
import logging
from typing import Any, Dict, Tuple

from flask import Flask, jsonify, request
from flask_cors import CORS

from ffnet.errors import ModelStoreError, NetworkError
from ffnet.network import NetworkConfig
from ffnet.persistence import (
    delete_network,
    list_saved_networks,
    load_network,
    save_network,
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep our own logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if os.getenv('FLASK_ENV') == 'production':
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('ffnet').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})
app.config['MODEL_DIR'] = os.getenv('MODEL_DIR', 'models')

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}


def _error(message: str, status: int) -> Tuple[Any, int]:
    return jsonify({'error': message}), status


@app.errorhandler(ModelStoreError)
def handle_store_error(e: ModelStoreError):
    logger.error(f"Model store failure: {e}")
    return jsonify({'error': str(e), 'type': type(e).__name__}), 500


@app.errorhandler(NetworkError)
def handle_network_error(e: NetworkError):
    logger.warning(f"Rejected request: {type(e).__name__}: {e}")
    return jsonify({'error': str(e), 'type': type(e).__name__}), 400


def _get_active(network_id: str):
    info = active_networks.get(network_id)
    return info['network'] if info else None


def _describe(network_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
    net = info['network']
    return {
        'network_id': network_id,
        'sizes': net.sizes,
        'activations': [layer.activation.value for layer in net.layers],
        'loss_function': net.loss_kind.value,
        'trained': info['trained'],
        'loss': info['loss'],
    }


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body:
        {
            'layers': [{'input_size': 2, 'output_size': 3, 'activation': 'sigmoid'}, ...],
            'learning_rate': 0.1,
            'l2_lambda': 0.0,
            'loss': 'squared_error',
            'seed': 42
        }

    Returns:
        JSON with network_id, sizes and status
    """
    data = request.get_json(silent=True) or {}
    config = NetworkConfig.from_dict(data)
    net = config.build()

    network_id = str(uuid.uuid4())
    active_networks[network_id] = {'network': net, 'trained': False, 'loss': None}
    logger.info(f"Created network {network_id} with sizes {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'sizes': net.sizes,
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List networks in memory and networks saved to the model store."""
    in_memory = [_describe(nid, info) for nid, info in active_networks.items()]
    saved = list_saved_networks(app.config['MODEL_DIR'])
    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved)} saved")
    return jsonify({'active': in_memory, 'saved': saved}), 200


@app.route('/api/networks/<network_id>', methods=['GET'])
def get_network(network_id: str):
    info = active_networks.get(network_id)
    if info is None:
        return _error('Network not found', 404)
    return jsonify(_describe(network_id, info)), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Run one input vector through a network.

    Request body:
        {'input': [0.2, 0.7]}
    """
    net = _get_active(network_id)
    if net is None:
        logger.warning(f"Prediction requested for non-existent network: {network_id}")
        return _error('Network not found', 404)

    data = request.get_json(silent=True) or {}
    if 'input' not in data:
        return _error("Request body must contain 'input'", 400)

    output = net.predict(data['input'])
    return jsonify({
        'network_id': network_id,
        'output': output.flatten(),
        'class': output.argmax()
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Train a network synchronously with per-sample SGD.

    Request body:
        {
            'inputs': [[0.2], [0.6]],
            'targets': [[1, 0], [0, 1]],
            'epochs': 100,          # optional, default 1
            'learning_rate': 0.1    # optional, network default
        }

    Returns:
        JSON with the loss of every epoch
    """
    info = active_networks.get(network_id)
    if info is None:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return _error('Network not found', 404)

    data = request.get_json(silent=True) or {}
    inputs = data.get('inputs')
    targets = data.get('targets')
    epochs = data.get('epochs', 1)
    learning_rate = data.get('learning_rate')

    if not isinstance(inputs, list) or not isinstance(targets, list):
        return _error("'inputs' and 'targets' must be lists", 400)
    if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
        return _error('epochs must be a positive integer', 400)
    if learning_rate is not None and (
        isinstance(learning_rate, bool)
        or not isinstance(learning_rate, (int, float))
        or learning_rate <= 0
    ):
        return _error('learning_rate must be a positive number', 400)

    logger.info(
        f"Training network {network_id}: {len(inputs)} samples, "
        f"epochs={epochs}, lr={learning_rate}"
    )
    history = info['network'].fit(inputs, targets, epochs, learning_rate)

    info['trained'] = True
    info['loss'] = history.losses[-1]
    logger.info(f"Training completed for network {network_id}: loss {info['loss']:.6f}")

    return jsonify({
        'network_id': network_id,
        'losses': history.losses,
        'status': 'trained'
    }), 200


@app.route('/api/networks/<network_id>/save', methods=['POST'])
def save_network_endpoint(network_id: str):
    info = active_networks.get(network_id)
    if info is None:
        return _error('Network not found', 404)

    save_network(
        info['network'],
        network_id,
        model_dir=app.config['MODEL_DIR'],
        trained=info['trained'],
        loss=info['loss']
    )
    return jsonify({'network_id': network_id, 'status': 'saved'}), 200


@app.route('/api/networks/<network_id>/load', methods=['POST'])
def load_network_endpoint(network_id: str):
    """Load a saved network into memory, replacing any in-memory copy."""
    net = load_network(network_id, app.config['MODEL_DIR'])
    if net is None:
        return _error('Network not found', 404)

    active_networks[network_id] = {'network': net, 'trained': True, 'loss': None}
    return jsonify({
        'network_id': network_id,
        'sizes': net.sizes,
        'status': 'loaded'
    }), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory and from the model store."""
    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id, app.config['MODEL_DIR'])

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return _error('Network not found', 404)

    logger.info(
        f"Deleted network {network_id}: memory={deleted_from_memory}, "
        f"disk={deleted_from_disk}"
    )
    return jsonify({'network_id': network_id, 'status': 'deleted'}), 200


def reload_saved_networks() -> None:
    """Load every saved network into memory (called at startup)."""
    loaded_count = 0
    for net_info in list_saved_networks(app.config['MODEL_DIR']):
        network_id = net_info['network_id']
        try:
            net = load_network(network_id, app.config['MODEL_DIR'])
        except NetworkError as e:
            logger.error(f"Skipping network {network_id}: {e}")
            continue
        if net is not None:
            active_networks[network_id] = {
                'network': net,
                'trained': net_info['trained'],
                'loss': net_info['loss']
            }
            loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))
    is_production = os.getenv('FLASK_ENV') == 'production'

    reload_saved_networks()
    logger.info(f"Starting server at http://localhost:{port}/")
    app.run(host='0.0.0.0', port=port, debug=not is_production, use_reloader=False)
