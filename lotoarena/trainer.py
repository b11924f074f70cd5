import time
import logging
from typing import Callable, Dict, Optional, Sequence
import numpy as np
from sklearn.model_selection import KFold
from .acceleration import clean_memory
from .agent import ModelHandle, PredictorAgent
from .config import PRETRAIN_PARAMS, SIMULATION_CONFIG
from .data import Draw, build_training_sequences, encode_target
from .errors import TrainingError

logger = logging.getLogger(__name__)


class OnlineTrainer:
    """One fit step per agent per tick, against the realized draw (or the agent's own ticket)."""

    def __init__(self, train_target: str = None):
        self.train_target = train_target or SIMULATION_CONFIG.get('train_target', 'draw')
        if self.train_target not in ('draw', 'prediction'):
            raise ValueError(f"train_target must be 'draw' or 'prediction', got '{self.train_target}'")

    def train_step(self, agent: PredictorAgent, features: np.ndarray, board_numbers: Sequence[int],
                   prediction: Sequence[int], tick_index: Optional[int] = None) -> float:
        """
        Fit the agent's model once. Either the new weights fully replace the old
        ones or the old ones are restored and TrainingError is raised.
        """
        source = prediction if self.train_target == 'prediction' else board_numbers
        target = encode_target(source)
        previous = agent.model.get_weights()
        try:
            loss = agent.model.fit_step(features, target)
            if not np.isfinite(loss):
                raise FloatingPointError(f"non-finite loss {loss}")
            if not all(np.all(np.isfinite(w)) for w in agent.model.get_weights()):
                raise FloatingPointError("non-finite weights after fit")
            return loss
        except Exception as e:
            agent.model.set_weights(previous)
            raise TrainingError(f"Fit step failed: {e}", agent_id=agent.id, tick_index=tick_index) from e
        finally:
            del previous, target
            clean_memory()


class Pretrainer:
    """Offline supervised training of an initial model on the whole draw history."""

    def __init__(self, window: int = None, ma_window: int = None, params: Optional[Dict] = None,
                 clock: Callable[[], float] = time.time):
        self.window = window or SIMULATION_CONFIG.get('window', 10)
        self.ma_window = ma_window or SIMULATION_CONFIG.get('moving_average_window', 6)
        self.params = {**PRETRAIN_PARAMS, **(params or {})}
        self.clock = clock

    def prepare(self, draws: Sequence[Draw]):
        return build_training_sequences(draws, self.window, self.clock(), self.ma_window)

    def train(self, model: ModelHandle, draws: Sequence[Draw]) -> Dict:
        """Fit with early stopping; returns the Keras history dict."""
        logger.info("Preparing pretraining sequences...")
        sequences, targets = self.prepare(draws)
        if len(sequences) < 2:
            raise ValueError("Not enough draws to pretrain a model.")

        logger.info(f"Pretraining on {len(sequences)} sequences...")
        history = model.fit(
            sequences, targets,
            epochs=self.params['epochs'],
            batch_size=self.params['batch_size'],
            validation_split=self.params['validation_split'],
            patience=self.params['patience'],
        )
        losses = history.history.get('loss', [])
        final_loss = losses[-1] if losses else float('nan')
        logger.info(f"Pretraining complete. Final loss: {final_loss:.4f}")
        clean_memory(force=True)
        return history.history

    def cross_validate(self, model_factory: Callable[[], ModelHandle], draws: Sequence[Draw],
                       folds: int = None) -> float:
        """Mean validation loss over K contiguous folds, one fresh model per fold."""
        folds = folds or self.params['cv_folds']
        sequences, targets = self.prepare(draws)
        if len(sequences) < folds:
            raise ValueError(f"Need at least {folds} sequences for {folds}-fold validation.")

        losses = []
        for fold, (train_idx, val_idx) in enumerate(KFold(n_splits=folds).split(sequences), 1):
            model = model_factory()
            model.fit(
                sequences[train_idx], targets[train_idx],
                epochs=self.params['epochs'],
                batch_size=self.params['batch_size'],
                patience=self.params['patience'],
                validation_data=(sequences[val_idx], targets[val_idx]),
            )
            loss = model.evaluate(sequences[val_idx], targets[val_idx])
            logger.info(f"Fold {fold}/{folds} - Validation loss: {loss:.4f}")
            losses.append(loss)
            del model
            clean_memory(force=True)

        return float(np.mean(losses))
