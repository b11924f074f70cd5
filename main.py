import argparse
import logging
import json
import sys
import time
from pathlib import Path
from lotoarena.config import LOGS_DIR, DATA_FILE, SNAPSHOTS_DIR, SIMULATION_CONFIG
from lotoarena.data import DrawFeed
from lotoarena.errors import ArenaError
from lotoarena.population import PopulationManager

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "arena.log"),
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Lotofacil Agent Arena")
    parser.add_argument("--data", type=str, default=str(DATA_FILE), help="CSV of past contests")
    parser.add_argument("--ticks", type=int, default=None, help="Number of ticks to run (default: one full pass)")
    parser.add_argument("--population", type=int, default=SIMULATION_CONFIG['population_size'], help="Number of agents")
    parser.add_argument("--window", type=int, default=SIMULATION_CONFIG['window'], help="Recent draws fed to each model")
    parser.add_argument("--model-family", choices=["lstm", "dense"], default=SIMULATION_CONFIG['model_family'])
    parser.add_argument("--reward-policy", choices=["strict", "exponential", "penalized"], default=SIMULATION_CONFIG['reward_policy'])
    parser.add_argument("--hot-bonus", action="store_true", help="Add the hot-number bonus to every reward")
    parser.add_argument("--infinite", action="store_true", help="Keep running after each generation rollover")
    parser.add_argument("--clone-inherits-score", action="store_true", help="Clones start with the best agent's score")
    parser.add_argument("--pretrain", action="store_true", help="Pretrain an initial model and clone it into the population")
    parser.add_argument("--cross-validate", action="store_true", help="Report K-fold validation loss before pretraining")
    parser.add_argument("--load-snapshot", type=str, default=None, help="Restore state from a snapshot file")
    parser.add_argument("--save-snapshot", type=str, default=None, help="Write a snapshot at the end (default: snapshots/arena.json)")
    parser.add_argument("--clone-best", action="store_true", help="Clone the best agent into a new population after the run")
    parser.add_argument("--seed", type=int, default=SIMULATION_CONFIG['seed'], help="Seed for weights and random fill")
    parser.add_argument("--interval", type=float, default=0.0, help="Seconds between ticks; 0 runs ticks back to back")
    args = parser.parse_args()

    try:
        logger.info("=== Starting Lotofacil Agent Arena ===")

        # 1. Load Data
        logger.info("Loading draws...")
        feed = DrawFeed.from_csv(args.data)

        # 2. Initial model
        from lotoarena.acceleration import configure_tensorflow
        from lotoarena.neural import build_model
        configure_tensorflow()

        initial_model = None
        if args.pretrain or args.cross_validate:
            from lotoarena.trainer import Pretrainer
            pretrainer = Pretrainer(window=args.window)
            draws = list(feed)
            if args.cross_validate:
                cv_loss = pretrainer.cross_validate(
                    lambda: build_model(args.model_family, args.window, seed=args.seed), draws)
                logger.info(f"Cross-validation loss: {cv_loss:.4f}")
            if args.pretrain:
                initial_model = build_model(args.model_family, args.window, seed=args.seed)
                pretrainer.train(initial_model, draws)

        # 3. Population
        manager = PopulationManager(
            feed,
            initial_model=initial_model,
            population_size=args.population,
            window=args.window,
            reward_policy=args.reward_policy,
            hot_bonus=args.hot_bonus,
            infinite_mode=args.infinite,
            clone_inherits_score=args.clone_inherits_score,
            model_family=args.model_family,
            seed=args.seed,
        )
        if args.load_snapshot:
            manager.load_snapshot(Path(args.load_snapshot))

        # 4. Run
        ticks = args.ticks if args.ticks is not None else len(feed)
        if args.interval > 0:
            from lotoarena.scheduler import TickScheduler
            scheduler = TickScheduler(manager, interval=args.interval)
            scheduler.start()
            try:
                while scheduler.alive and scheduler.ticks < ticks and manager.is_running:
                    time.sleep(args.interval)
            finally:
                scheduler.stop()
            if scheduler.error is not None:
                raise scheduler.error
        else:
            manager.start()
            manager.run(max_ticks=ticks)

        # 5. Results
        summary = manager.report()
        best = manager.best_agent()
        print("\n=== Arena Summary ===")
        print(f"Generation: {manager.state.generation} | Next tick: {manager.state.tick_index}")
        print(f"Best agent: {best.id} (Score: {best.score:.2f})")
        print(f"Last ticket: {sorted(best.last_prediction)}")
        if not summary.empty:
            print(summary.to_string(index=False))

        if args.clone_best:
            manager.clone_best()

        snapshot_path = Path(args.save_snapshot) if args.save_snapshot else SNAPSHOTS_DIR / "arena.json"
        manager.save_snapshot(snapshot_path)
        print(json.dumps(manager.describe(), indent=2))
        logger.info("=== Execution Complete ===")

    except ArenaError as e:
        logger.error(f"Arena error: {str(e)}", exc_info=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

# python3 main.py --data lottery_data/lotofacil.csv --pretrain --ticks 500
# python3 main.py --load-snapshot snapshots/arena.json --infinite --interval 1
