import gc
import logging
import random

import numpy as np

logger = logging.getLogger(__name__)

_TF_CONFIGURED = False
_CLEAN_COUNTER = 0

# gc.collect() after this many transient allocations
CLEAN_MEMORY_FREQUENCY = 50


def configure_tensorflow() -> bool:
    """Configure TensorFlow to use GPU if available."""
    global _TF_CONFIGURED
    if _TF_CONFIGURED:
        return False

    import tensorflow as tf

    try:
        gpus = tf.config.list_physical_devices("GPU")
    except RuntimeError as exc:
        logger.info("TensorFlow GPU detection failed; using CPU: %s", exc)
        _TF_CONFIGURED = True
        return False

    _TF_CONFIGURED = True
    if not gpus:
        logger.info("TensorFlow GPU not available; using CPU.")
        return False

    for gpu in gpus:
        try:
            tf.config.experimental.set_memory_growth(gpu, True)
        except RuntimeError as exc:
            # Memory growth must be set before GPUs are initialized
            logger.warning("Could not enable memory growth on %s: %s", gpu.name, exc)
    logger.info("TensorFlow GPU(s) available: %s", [gpu.name for gpu in gpus])
    return True


def set_seeds(seed: int):
    """Seed python, numpy and TensorFlow RNGs (weight initialization included)."""
    random.seed(seed)
    np.random.seed(seed)
    import tensorflow as tf
    tf.random.set_seed(seed)


def clean_memory(force: bool = False) -> bool:
    """Run garbage collection every CLEAN_MEMORY_FREQUENCY calls, or now when forced."""
    global _CLEAN_COUNTER
    _CLEAN_COUNTER += 1
    if not force and _CLEAN_COUNTER < CLEAN_MEMORY_FREQUENCY:
        return False
    gc.collect()
    _CLEAN_COUNTER = 0
    logger.debug("Memory cleanup performed")
    return True
