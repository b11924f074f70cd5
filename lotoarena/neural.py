import tensorflow as tf
from tensorflow.keras.models import Sequential, model_from_json
from tensorflow.keras.layers import Input, Dense, Dropout, LSTM, Flatten
from tensorflow.keras.callbacks import EarlyStopping
from tensorflow.keras.optimizers import Adam
from tensorflow.keras.regularizers import l2
import numpy as np
import logging
from typing import Dict, List, Optional, Tuple
from .agent import ModelHandle
from .acceleration import set_seeds
from .config import MODEL_PARAMS, N_NUMBERS, FEATURES_PER_STEP, SIMULATION_CONFIG
from .errors import DeserializationError, ShapeMismatchError

logger = logging.getLogger(__name__)


class KerasModelHandle(ModelHandle):
    """Keras-backed model; subclasses only differ in the network they build."""

    family = "keras"

    def __init__(self, model: tf.keras.Model, learning_rate: float = MODEL_PARAMS['learning_rate']):
        self.model = model
        self.learning_rate = learning_rate
        self._compile()

    def _compile(self):
        self.model.compile(optimizer=Adam(learning_rate=self.learning_rate), loss='binary_crossentropy')

    @classmethod
    def build(cls, window: int, input_dim: int = FEATURES_PER_STEP, params: Optional[Dict] = None,
              seed: Optional[int] = None) -> "KerasModelHandle":
        params = {**MODEL_PARAMS, **(params or {})}
        if seed is not None:
            set_seeds(seed)
        model = cls._create_model(window, input_dim, params)
        return cls(model, learning_rate=params['learning_rate'])

    @staticmethod
    def _create_model(window: int, input_dim: int, params: Dict) -> tf.keras.Model:
        raise NotImplementedError

    @property
    def input_shape(self) -> Tuple[int, int]:
        return tuple(self.model.input_shape[1:])

    def _as_batch(self, features: np.ndarray) -> np.ndarray:
        x = np.asarray(features, dtype=np.float32)
        if x.ndim == 2:
            x = x[np.newaxis, ...]
        if tuple(x.shape[1:]) != self.input_shape:
            raise ValueError(f"Input shape {tuple(x.shape[1:])} does not match model input {self.input_shape}")
        return x

    def predict(self, features: np.ndarray) -> np.ndarray:
        x = self._as_batch(features)
        outputs = self.model(x, training=False)
        try:
            return np.array(outputs.numpy()[0], dtype=np.float32)
        finally:
            del outputs, x

    def fit_step(self, features: np.ndarray, target: np.ndarray) -> float:
        x = self._as_batch(features)
        y = np.asarray(target, dtype=np.float32).reshape(1, -1)
        try:
            loss = self.model.train_on_batch(x, y)
            return float(np.ravel(loss)[0])
        finally:
            del x, y

    def fit(self, features: np.ndarray, targets: np.ndarray, epochs: int, batch_size: int,
            validation_split: float = 0.2, patience: int = 10, validation_data=None):
        """Multi-epoch supervised fit used for offline pretraining."""
        callbacks = [EarlyStopping(monitor='val_loss', patience=patience, restore_best_weights=True)]
        return self.model.fit(
            np.asarray(features, dtype=np.float32), np.asarray(targets, dtype=np.float32),
            epochs=epochs,
            batch_size=batch_size,
            validation_split=0.0 if validation_data is not None else validation_split,
            validation_data=validation_data,
            callbacks=callbacks,
            verbose=0
        )

    def evaluate(self, features: np.ndarray, targets: np.ndarray) -> float:
        loss = self.model.evaluate(np.asarray(features, dtype=np.float32),
                                   np.asarray(targets, dtype=np.float32), verbose=0)
        return float(np.ravel(loss)[0])

    def get_weights(self) -> List[np.ndarray]:
        return [np.array(w, copy=True) for w in self.model.get_weights()]

    def set_weights(self, weights: List[np.ndarray]) -> None:
        current = self.model.get_weights()
        if len(weights) != len(current):
            raise ShapeMismatchError(f"Expected {len(current)} weight arrays, got {len(weights)}")
        arrays = []
        for i, (new, old) in enumerate(zip(weights, current)):
            arr = np.asarray(new, dtype=old.dtype)
            if arr.shape != old.shape:
                raise ShapeMismatchError(f"Weight array {i}: expected shape {old.shape}, got {arr.shape}")
            arrays.append(arr)
        self.model.set_weights(arrays)

    def serialize(self) -> Dict:
        return {
            'family': self.family,
            'architecture': self.model.to_json(),
            'weights': [w.tolist() for w in self.get_weights()],
            'learning_rate': self.learning_rate,
        }

    @classmethod
    def deserialize(cls, payload: Dict) -> "KerasModelHandle":
        architecture = payload.get('architecture')
        if not architecture:
            raise DeserializationError("Payload lacks a model definition")
        try:
            model = model_from_json(architecture)
        except (ValueError, TypeError, KeyError) as e:
            raise DeserializationError(f"Could not rebuild model architecture: {e}") from e
        handle = cls(model, learning_rate=payload.get('learning_rate', MODEL_PARAMS['learning_rate']))
        weights = payload.get('weights')
        if weights is not None:
            handle.set_weights([np.asarray(w, dtype=np.float32) for w in weights])
        return handle

    def clone(self) -> "KerasModelHandle":
        model = tf.keras.models.clone_model(self.model)
        model.set_weights(self.model.get_weights())
        return type(self)(model, learning_rate=self.learning_rate)


class LSTMSequenceModel(KerasModelHandle):
    """Stacked LSTM over the recent-draw window."""

    family = "lstm"

    @staticmethod
    def _create_model(window: int, input_dim: int, params: Dict) -> tf.keras.Model:
        first_units, second_units = params['lstm_units']
        dropout_rate = params['dropout']
        return Sequential([
            Input(shape=(window, input_dim)),
            LSTM(first_units, return_sequences=True),
            Dropout(dropout_rate),
            LSTM(second_units),
            Dropout(dropout_rate),
            Dense(params['dense_units'], activation='relu', kernel_regularizer=l2(params['l2'])),
            Dropout(dropout_rate),
            Dense(N_NUMBERS, activation='sigmoid'),
        ], name='lstm_predictor')


class DenseModel(KerasModelHandle):
    """Feed-forward network over the flattened window."""

    family = "dense"

    @staticmethod
    def _create_model(window: int, input_dim: int, params: Dict) -> tf.keras.Model:
        return Sequential([
            Input(shape=(window, input_dim)),
            Flatten(),
            Dense(params['dense_units'], activation='relu', kernel_regularizer=l2(params['l2'])),
            Dropout(params['dropout']),
            Dense(max(1, params['dense_units'] // 2), activation='relu'),
            Dense(N_NUMBERS, activation='sigmoid'),
        ], name='dense_predictor')


MODEL_FAMILIES = {
    LSTMSequenceModel.family: LSTMSequenceModel,
    DenseModel.family: DenseModel,
}


def build_model(family: str = None, window: int = None, input_dim: int = FEATURES_PER_STEP,
                params: Optional[Dict] = None, seed: Optional[int] = None) -> KerasModelHandle:
    """Build a fresh, randomly initialized model of the given family."""
    family = family or SIMULATION_CONFIG.get('model_family', 'lstm')
    window = window or SIMULATION_CONFIG.get('window', 10)
    if family not in MODEL_FAMILIES:
        raise ValueError(f"Unknown model family '{family}'. Choose from {sorted(MODEL_FAMILIES)}")
    return MODEL_FAMILIES[family].build(window, input_dim, params=params, seed=seed)


def load_model_handle(payload: Dict) -> KerasModelHandle:
    """Rebuild a model from a serialized payload, dispatching on its family."""
    family = payload.get('family', LSTMSequenceModel.family)
    if family not in MODEL_FAMILIES:
        raise DeserializationError(f"Unknown model family '{family}'")
    return MODEL_FAMILIES[family].deserialize(payload)
