#!/usr/bin/env python
"""
iRF-LOOP Predictive Network Builder - Main Entry Point
Builds a directed, weighted predictive network from a feature matrix using
iterative Random Forests, or runs a single iRF model for one response column.
"""
import sys
import logging
import argparse
import traceback
from pathlib import Path

import numpy as np
import pandas as pd

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from modules.config_manager import ConfigurationManager
from modules.logging_config import LoggingConfigurator
from modules.data_manager import DataManager
from modules.forest_engine import WeightedForestEngine
from modules.network_engine import NetworkEngine
from modules.reweighting_engine import ReweightingEngine
from utils import constants
from utils.exceptions import IRFLoopException, InvalidInputError
from utils.file_io import save_dataframe


def parse_arguments(argv=None):
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="iRF-LOOP - predictive networks from iterative Random Forests",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--config", type=str, default="config/config.json",
                        help="Path to the configuration JSON file")
    parser.add_argument("--schema", type=str, default="config/schema.json",
                        help="Path to the configuration JSON schema")
    parser.add_argument("--data", type=str, default=None,
                        help="Override data.file_path")
    parser.add_argument("--run-id", type=str, default=None,
                        help="Optional run identifier appended to the results directory")
    parser.add_argument("--first", type=int, default=None,
                        help="First (1-based) feature to use as response")
    parser.add_argument("--last", type=int, default=None,
                        help="Last (1-based) feature to use as response")
    parser.add_argument("--iterations", type=int, default=None,
                        help="Override network.iterations")
    parser.add_argument("--n-jobs", type=int, default=None,
                        help="Override execution.n_jobs")
    parser.add_argument("--use-pvalues", action="store_true",
                        help="Cull features by FDR-corrected permutation p-values (much slower)")
    parser.add_argument("--skip-failed", action="store_true",
                        help="Skip features whose iRF run fails instead of aborting")
    parser.add_argument("--response", type=str, default=None,
                        help="Run a single iRF model predicting this column and save every round")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose (DEBUG) logging and per-round iRF output")
    parser.add_argument("--dry-run", action="store_true",
                        help="Validate configuration and data without building the network")

    return parser.parse_args(argv)


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Fold CLI overrides into the validated configuration."""
    network = config.setdefault('network', {})
    if args.data:
        config['data']['file_path'] = args.data
    if args.first is not None:
        network['first'] = args.first
    if args.last is not None:
        network['last'] = args.last
    if args.iterations is not None:
        network['iterations'] = args.iterations
    if args.n_jobs is not None:
        config.setdefault('execution', {})['n_jobs'] = args.n_jobs
    if args.use_pvalues:
        network['use_pvalues'] = True
    if args.skip_failed:
        network['on_error'] = constants.ON_ERROR_SKIP
    if args.verbose:
        config.setdefault('logging', {})['level'] = 'DEBUG'
        network['verbose'] = True
    if args.run_id:
        config['outputs']['base_results_dir'] = f"{config['outputs']['base_results_dir']}_{args.run_id}"
    return config


def run_single_irf(config: dict, matrix: pd.DataFrame, response_col: str, logger: logging.Logger) -> Path:
    """
    Standalone iRF: predict one column from all others and save each round's importances.
    """
    if response_col not in matrix.columns:
        raise InvalidInputError(f"Response column '{response_col}' not found in the feature matrix")

    network = config.get('network', {})
    forest_cfg = {k: v for k, v in config.get('forest', {}).items() if k != 'importance'}
    seed = config.get('_internal_seeds', {}).get('forest')
    engine_options = {'random_state': seed} if seed is not None else None

    reweighter = ReweightingEngine(WeightedForestEngine(logger=logger, **forest_cfg), config, logger)
    history = reweighter.run(
        matrix.drop(columns=[response_col]),
        matrix[response_col],
        max_rounds=network.get('iterations', constants.DEFAULT_IRF_ITERATIONS),
        mtry=network.get('mtry'),
        classification=network.get('classification', False),
        use_pvalues=network.get('use_pvalues', False),
        engine_options=engine_options,
        save_all=True,
    )

    rounds = pd.DataFrame({f"round_{r.round_index}": r.importances for r in history})
    fits = pd.DataFrame({
        'round': [r.round_index for r in history],
        'mtry': [r.mtry for r in history],
        'fit_quality': history.fit_qualities,
        'prediction_error': [r.prediction_error for r in history],
        'n_active': [r.n_active for r in history],
    })
    best = history.best()
    logger.info(f"iRF stopped: {history.stop_reason}. Best round {best.round_index} (fit {best.fit_quality:.4f})")
    logger.info("Top predictors:\n" + best.importances.sort_values(ascending=False).head(10).to_string())

    out_dir = Path(config['outputs']['base_results_dir']) / constants.NETWORK_DIR / f"irf_{response_col}"
    csv_copy = config['outputs'].get('save_csv_copy', False)
    rounds.index = rounds.index.astype(str)
    save_dataframe(rounds, out_dir / "importances_by_round.parquet", csv_copy=csv_copy, index=True)
    save_dataframe(fits, out_dir / "rounds.parquet", csv_copy=csv_copy, index=False)
    return out_dir


def main(argv=None):
    """
    Main orchestration function.

    Returns:
        int: Exit code (0 for success, 1 for errors, 130 when interrupted)
    """
    logger = None

    try:
        args = parse_arguments(argv)

        config_manager = ConfigurationManager(config_path=args.config, schema_path=args.schema)
        config = apply_overrides(config_manager.load_and_validate(), args)
        config_manager.revalidate()

        logging_configurator = LoggingConfigurator(config)
        logging_configurator.setup()
        logger = logging_configurator.get_logger('irf_loop')

        logger.info(f"Configuration loaded from: {args.config}")

        run_dir = Path(config['outputs']['base_results_dir']).absolute()
        run_dir.mkdir(parents=True, exist_ok=True)
        config['outputs']['base_results_dir'] = str(run_dir)
        config_manager.run_id = run_dir.name
        config_manager.save_artifacts(str(run_dir))

        seed = config.get('execution', {}).get('seed')
        if seed is not None:
            np.random.seed(seed)
            logger.info(f"Global seed: {seed}")

        matrix = DataManager(config, logger).execute()

        if args.dry_run:
            logger.info("Dry run mode: validation complete. Exiting without building the network.")
            return 0

        if args.response:
            out_dir = run_single_irf(config, matrix, args.response, logger)
            logger.info(f"iRF results saved to: {out_dir}")
            return 0

        edges = NetworkEngine(config, logger).execute(matrix)
        logger.info(f"Predictive network with {len(edges)} edges saved under: {run_dir}")
        return 0

    except IRFLoopException as e:
        msg = f"iRF-LOOP Error: {str(e)}"
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            print(f"\n[ERROR] {msg}")
            traceback.print_exc()
        return 1

    except KeyboardInterrupt:
        if logger:
            logger.warning("Run interrupted by user (Ctrl+C)")
        else:
            print("\n[INTERRUPTED] Run interrupted by user.")
        return 130

    except Exception as e:
        msg = f"Unexpected Error: {str(e)}"
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            print(f"\n[CRITICAL] {msg}")
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
