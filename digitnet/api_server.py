"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for digit-recognition
networks.

This module provides endpoints for:
- Creating and managing networks
- Training networks in the background with progress over WebSockets
- Classifying images and browsing right/wrong test examples
- Persisting networks to/from the SQLite model store

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for background training tasks
- matplotlib (Agg backend) to render digit images
"""

import os
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Any, Dict, List, Optional

import gevent
import numpy as np
from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from digitnet import config, mnist_loader, trainer
from digitnet.logging_setup import configure_logging
from digitnet.network import Network, ShapeMismatchError, argmax_with_ties
from digitnet.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__, static_folder='static')
CORS(app, resources={r"/*": {"origins": "*"}})

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not config.IS_PRODUCTION,
    engineio_logger=not config.IS_PRODUCTION,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# MNIST splits, loaded once at startup
training_data: Optional[mnist_loader.Dataset] = None
test_data: Optional[mnist_loader.Dataset] = None

ACTIVE_JOB_STATUSES = ('pending', 'training')


# ============================================================================
# STARTUP
# ============================================================================

def load_mnist_data(data_dir: str = config.DATA_DIR) -> None:
    """Load the training and test splits into module globals."""
    global training_data, test_data

    logger.info(f"Loading MNIST data from {data_dir}...")
    training_data, test_data = mnist_loader.load_data_wrapper(data_dir)
    logger.info(
        f"Data loaded: {len(training_data)} training, {len(test_data)} test"
    )


def reload_saved_networks() -> None:
    """Bring every network saved in the store back into memory."""
    loaded_count = 0
    for net_info in list_saved_networks():
        network_id = net_info['network_id']
        net = load_network(network_id)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'trained': net_info['trained'],
            'accuracy': net_info['accuracy']
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


def cleanup_finished_training_jobs() -> None:
    """Forget completed and failed jobs so the job table stays small."""
    finished = [job_id for job_id, job in training_jobs.items()
                if job.get('status') in ('completed', 'failed')]
    for job_id in finished:
        del training_jobs[job_id]
    if finished:
        logger.info(f"Cleaned up {len(finished)} finished training job(s)")


def cleanup_old_networks_task(days: int = 2) -> None:
    """Delete stale networks from the store once a day."""
    while True:
        deleted_count = delete_old_networks(days=days)
        if deleted_count > 0:
            saved_ids = {net['network_id'] for net in list_saved_networks()}
            for network_id in [nid for nid in active_networks
                               if nid not in saved_ids]:
                del active_networks[network_id]
            logger.info(f"Cleanup deleted {deleted_count} network(s)")
        elif deleted_count < 0:
            logger.error("Cleanup of old networks failed")
        cleanup_finished_training_jobs()
        gevent.sleep(86400)


def startup() -> None:
    """Load data and saved networks, and start the cleanup task."""
    load_mnist_data()
    reload_saved_networks()
    gevent.spawn(cleanup_old_networks_task)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(values) -> List[float]:
    """Convert a vector to plain floats (for JSON serialization)."""
    return [float(val) for val in values]


def is_busy(network_id: str) -> bool:
    """True if the network has a pending or running training job."""
    return any(
        job['network_id'] == network_id and job['status'] in ACTIVE_JOB_STATUSES
        for job in training_jobs.values()
    )


def create_digit_image(image_data, predicted: List[int], actual: int) -> str:
    """
    Render a digit as a base64-encoded PNG.

    Args:
        image_data: Flat square image with pixel values in [0, 1]
        predicted: Digit(s) tied for the highest network output
        actual: The correct digit

    Returns:
        Base64-encoded PNG image string
    """
    pixels = np.asarray(image_data, dtype=float)
    side = int(round(np.sqrt(pixels.size)))

    plt.figure(figsize=(3, 3))
    plt.imshow(pixels.reshape(side, side), cmap='gray')
    plt.title(f"Predicted: {', '.join(map(str, predicted))} | Actual: {actual}")
    plt.axis('off')

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and counts of networks and running jobs."""
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ACTIVE_JOB_STATUSES
    )
    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'data_loaded': training_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new randomly initialized network.

    Request body (optional):
        {'layer_sizes': [784, 30, 10], 'learning_rate': 0.1, 'seed': 42}
    """
    data = request.get_json(silent=True) or {}
    layer_sizes = data.get('layer_sizes', config.DEFAULT_LAYER_SIZES)
    learning_rate = data.get('learning_rate', config.DEFAULT_LEARNING_RATE)
    seed = data.get('seed')

    if not isinstance(layer_sizes, list) or len(layer_sizes) < 2:
        logger.warning(f"Invalid architecture requested: {layer_sizes}")
        return jsonify({
            'error': 'Invalid architecture. Must have at least 2 layers.'
        }), 400
    if (isinstance(learning_rate, bool)
            or not isinstance(learning_rate, (int, float)) or learning_rate <= 0):
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        return jsonify({'error': 'seed must be an integer'}), 400

    try:
        net = Network(layer_sizes, learning_rate, rng=np.random.default_rng(seed))
    except ValueError as e:
        logger.warning(f"Rejected architecture {layer_sizes}: {e}")
        return jsonify({'error': str(e)}), 400

    network_id = str(uuid.uuid4())
    active_networks[network_id] = {
        'network': net,
        'architecture': net.layer_widths,
        'trained': False,
        'accuracy': None
    }
    logger.info(f"Created network {network_id} with architecture {layer_sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.layer_widths,
        'learning_rate': float(learning_rate),
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {'epochs': 1, 'learning_rate': 0.1, 'limit': 1000}
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404
    if training_data is None:
        return jsonify({'error': 'Training data not available'}), 503
    if is_busy(network_id):
        return jsonify({'error': 'Network is already training'}), 409

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', config.DEFAULT_EPOCHS)
    learning_rate = data.get('learning_rate')
    limit = data.get('limit')

    if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if learning_rate is not None and (
            isinstance(learning_rate, bool)
            or not isinstance(learning_rate, (int, float)) or learning_rate <= 0):
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if limit is not None and (
            isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        return jsonify({'error': 'limit must be a positive integer'}), 400

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }
    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, lr={learning_rate}, limit={limit}"
    )

    socketio.start_background_task(
        train_network_task, network_id, job_id, epochs, learning_rate, limit
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    epochs: int,
    learning_rate: Optional[float] = None,
    limit: Optional[int] = None
) -> None:
    """
    Background task that trains a network and reports over WebSockets.
    """
    net = active_networks[network_id]['network']
    if learning_rate is not None:
        for layer in net.layers:
            layer.learning_rate = float(learning_rate)

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        progress = (data['epoch'] / data['total_epochs']) * 100
        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'accuracy': data['accuracy'],
            'cost': data['cost'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress,
            'correct': data['correct'],
            'total': data['total']
        })
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        training_jobs[job_id]['status'] = 'training'

        result = trainer.train(
            net,
            training_data.subset(limit),
            epochs,
            test_data=test_data,
            callback=on_epoch_complete,
            yield_func=lambda: gevent.sleep(0)
        )
        accuracy = result.accuracy if result is not None else None

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['accuracy'] = accuracy
        training_jobs[job_id].update(
            status='completed', accuracy=accuracy, progress=100
        )

        save_network(net, network_id, trained=True, accuracy=accuracy)
        logger.info(f"Training completed for job {job_id}: accuracy {accuracy}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': accuracy,
            'progress': 100
        })

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")
        training_jobs[job_id].update(status='failed', error=str(e))

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })

    gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Current status of a training job."""
    if job_id not in training_jobs:
        logger.warning(f"Status requested for non-existent job: {job_id}")
        return jsonify({'error': 'Training job not found'}), 404
    return jsonify(training_jobs[job_id]), 200


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all networks, in memory first, then saved-only ones."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    saved_only = []
    for net in list_saved_networks():
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    if is_busy(network_id):
        return jsonify({'error': 'Network is training'}), 409

    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(
        f"Deleted network {network_id}: memory={deleted_from_memory}, "
        f"disk={deleted_from_disk}"
    )
    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete every idle network from both memory and disk."""
    saved_ids = [net['network_id'] for net in list_saved_networks()]
    all_ids = [nid for nid in set(active_networks) | set(saved_ids)
               if not is_busy(nid)]

    deleted_from_memory = 0
    deleted_from_disk = 0
    for network_id in all_ids:
        if active_networks.pop(network_id, None) is not None:
            deleted_from_memory += 1
        if delete_network(network_id):
            deleted_from_disk += 1

    logger.info(
        f"Deleted all networks: {len(all_ids)} total, "
        f"{deleted_from_memory} from memory, {deleted_from_disk} from disk"
    )
    return jsonify({
        'deleted_count': len(all_ids),
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Classify one image.

    Request body:
        {'image': [0.0, 0.5, ...]}  # input_width pixel values in [0, 1]
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    image = data.get('image')
    if not isinstance(image, list) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in image):
        return jsonify({'error': 'image must be a list of numbers'}), 400

    net = active_networks[network_id]['network']
    try:
        output = net.predict(image)
    except ShapeMismatchError as e:
        return jsonify({'error': str(e)}), 400

    confidence, positions = argmax_with_ties(output)
    return jsonify({
        'network_id': network_id,
        'predicted_digits': positions,
        'confidence': confidence,
        'network_output': array_to_float_list(output)
    }), 200


def _find_example(network_id: str, want_correct: bool, max_attempts: int):
    """Return a random test example classified right (or wrong)."""
    if network_id not in active_networks:
        logger.warning(f"Example requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404
    if test_data is None or len(test_data) == 0:
        logger.error("Test data not loaded")
        return jsonify({'error': 'Test data not available'}), 500

    net = active_networks[network_id]['network']
    for attempt in range(max_attempts):
        index = int(np.random.randint(0, len(test_data)))
        image, target = test_data[index]
        output = net.predict(image)

        if trainer.is_correct(output, target) != want_correct:
            continue

        logger.debug(f"Found example on attempt {attempt + 1}")
        _, predicted = argmax_with_ties(output)
        actual = test_data.label_of(index)
        return jsonify({
            'network_id': network_id,
            'example_index': index,
            'predicted_digits': predicted,
            'actual_digit': actual,
            'image_data': create_digit_image(image, predicted, actual),
            'output_weights': [node.weights for node in net.layers[-1].nodes],
            'network_output': array_to_float_list(output)
        }), 200

    kind = 'successful' if want_correct else 'unsuccessful'
    logger.warning(f"No {kind} example found after {max_attempts} attempts")
    return jsonify({
        'error': f'No {kind} example found after {max_attempts} attempts'
    }), 404


@app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
def get_successful_example(network_id: str):
    """A random test example the network classifies correctly."""
    return _find_example(network_id, want_correct=True, max_attempts=100)


@app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(network_id: str):
    """A random test example the network gets wrong."""
    return _find_example(network_id, want_correct=False, max_attempts=200)


# ============================================================================
# STATIC FILE SERVING
# ============================================================================

@app.route('/')
def index():
    return send_from_directory(app.static_folder, 'index.html')


@app.route('/<path:path>')
def serve_static(path: str):
    return send_from_directory(app.static_folder, path)


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    configure_logging()

    static_dir = os.path.join(os.path.dirname(__file__), 'static')
    if not os.path.exists(static_dir):
        os.makedirs(static_dir)
        logger.info(f"Created static directory: {static_dir}")

    startup()
    logger.info(f"Starting server at http://localhost:{config.PORT}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=config.PORT,
            debug=not config.IS_PRODUCTION,
            use_reloader=False
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {config.PORT} is already in use.")
            sys.exit(1)
        raise
