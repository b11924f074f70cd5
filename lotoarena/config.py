from pathlib import Path

# Lotofacil Rules
NUMBER_RANGE = 25
N_NUMBERS = 15

# File Paths
PROJECT_ROOT = Path(__file__).parent.parent.absolute()
DATA_DIR = PROJECT_ROOT / "lottery_data"
DATA_FILE = DATA_DIR / "lotofacil.csv"
MODELS_DIR = PROJECT_ROOT / "models"
LOGS_DIR = PROJECT_ROOT / "logs"
SNAPSHOTS_DIR = PROJECT_ROOT / "snapshots"

# Ensure directories exist
for directory in [MODELS_DIR, LOGS_DIR, SNAPSHOTS_DIR]:
    directory.mkdir(exist_ok=True)

# Per-step input: 15 numbers + 15 moving averages + contest index + timestamp
FEATURES_PER_STEP = N_NUMBERS * 2 + 2

# Model Configuration
MODEL_PARAMS = {
    "family": "lstm",
    "lstm_units": (64, 32),
    "dense_units": 64,
    "dropout": 0.2,
    "l2": 0.01,
    "learning_rate": 0.001,
}

# Offline pretraining (initial model before the arena starts)
PRETRAIN_PARAMS = {
    "epochs": 100,
    "batch_size": 32,
    "validation_split": 0.2,
    "patience": 10,
    "cv_folds": 5,
}

# Engine-facing configuration
SIMULATION_CONFIG = {
    "population_size": 10,
    "window": 10,               # recent draws fed to each model
    "hot_count": 5,             # K hot numbers
    "model_budget": 10,         # slots filled from model output before hot numbers
    "moving_average_window": 6,
    "reward_policy": "strict",  # strict | exponential | penalized
    "hot_bonus": False,
    "infinite_mode": False,     # keep running across generation rollover
    "clone_inherits_score": False,
    "train_target": "draw",     # draw | prediction
    "model_family": "lstm",     # lstm | dense
    "seed": 42,
    "tick_interval": 1.0,       # seconds between scheduled ticks
    "random_fill_attempts": 1000,
}

# Snapshot format
SNAPSHOT_FORMAT_VERSION = 1
