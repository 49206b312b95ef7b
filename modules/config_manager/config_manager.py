import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from utils.exceptions import ConfigurationError
from utils import constants

class ConfigurationManager:
    """
    Manages system configuration loading, validation, and access.
    Acts as the single source of truth for the network build.
    """

    def __init__(self, config_path: str = "config/config.json",
                 schema_path: str = "config/schema.json"):
        """
        Initialize the ConfigurationManager.

        Args:
            config_path (str): Path to the user configuration JSON.
            schema_path (str): Path to the JSON schema definition.
        """
        self.config_path = config_path
        self.schema_path = schema_path
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Main entry point. Loads config, validates schema/logic/resources,
        and propagates seeds.

        Returns:
            Dict[str, Any]: The fully validated configuration.

        Raises:
            ConfigurationError: If any validation step fails.
        """
        self.config = self._load_json(self.config_path)
        self.schema = self._load_json(self.schema_path)

        self._validate_schema()
        self._validate_logic()
        self._validate_resources()
        self._propagate_seeds()

        return self.config

    def revalidate(self) -> Dict[str, Any]:
        """
        Re-run schema and logical validation after the loaded config was
        modified in place (e.g. by command-line overrides).
        """
        self._validate_schema()
        self._validate_logic()
        return self.config

    def generate_run_id(self) -> str:
        """
        Generate or retrieve a unique run identifier based on timestamp.
        """
        if not self.run_id:
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def save_artifacts(self, output_dir: str) -> None:
        """
        Save configuration artifacts to the run directory.

        Saves:
        1. config_used.json: The exact config object in memory.
        2. config_hash.txt: SHA256 hash for versioning.
        3. run_metadata.json: Environment details.
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        with open(config_dir / "config_used.json", 'w') as f:
            json.dump(self.config, f, indent=2)

        config_str = json.dumps(self.config, sort_keys=True)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()

        with open(config_dir / "config_hash.txt", 'w') as f:
            f.write(config_hash)

        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }

        with open(config_dir / "run_metadata.json", 'w') as f:
            json.dump(metadata, f, indent=2)

    def _load_json(self, path: str) -> Dict[str, Any]:
        """Safely load a JSON file."""
        if not os.path.exists(path):
            raise ConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        """Validate config structure against JSON schema."""
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Schema validation failed: {e.message}")

    def _validate_logic(self) -> None:
        """Logical validation the schema cannot express."""
        # --- Data Section ---
        if not self.config.get('data', {}).get('file_path'):
            raise ConfigurationError("Data 'file_path' must be specified and non-empty.")

        # --- Network Section ---
        network = self.config.get('network', {})
        iterations = network.get('iterations', constants.DEFAULT_ITERATIONS)
        if not isinstance(iterations, int) or iterations < 1:
            raise ConfigurationError(f"network.iterations must be an integer >= 1, got {iterations}.")

        first, last = network.get('first'), network.get('last')
        if first is not None and first < 1:
            raise ConfigurationError(f"network.first must be >= 1, got {first}.")
        if last is not None and last < 1:
            raise ConfigurationError(f"network.last must be >= 1, got {last}.")
        if first is not None and last is not None and first > last:
            raise ConfigurationError(f"network.first ({first}) must be <= network.last ({last}).")

        mtry = network.get('mtry')
        if mtry is not None and mtry <= 0:
            raise ConfigurationError(f"network.mtry must be > 0 when provided, got {mtry}.")

        if network.get('num_permutations', constants.DEFAULT_NUM_PERMUTATIONS) < 1:
            raise ConfigurationError("network.num_permutations must be >= 1.")
        fdr = network.get('fdr_threshold', constants.DEFAULT_FDR_THRESHOLD)
        if not (0 < fdr <= 1):
            raise ConfigurationError(f"network.fdr_threshold must be in (0, 1], got {fdr}.")

        on_error = network.get('on_error', constants.ON_ERROR_ABORT)
        if on_error not in constants.ON_ERROR_POLICIES:
            raise ConfigurationError(
                f"network.on_error must be one of {list(constants.ON_ERROR_POLICIES)}, got '{on_error}'."
            )

        # --- Forest Section ---
        forest = self.config.get('forest', {})
        if forest.get('num_trees', constants.DEFAULT_NUM_TREES) < 1:
            raise ConfigurationError("forest.num_trees must be >= 1.")
        importance = forest.get('importance', constants.DEFAULT_IMPORTANCE_MODE)
        if importance not in constants.IMPORTANCE_MODES:
            raise ConfigurationError(
                f"forest.importance must be one of {list(constants.IMPORTANCE_MODES)}, got '{importance}'."
            )

        # --- Execution Section ---
        execution = self.config.get('execution', {})
        if 'n_jobs' in execution:
            n_jobs = execution['n_jobs']
            if n_jobs == 0 or n_jobs < -1:
                raise ConfigurationError(f"execution.n_jobs must be -1 (all cores) or a positive integer, got {n_jobs}")
        if execution.get('seed') is not None and execution['seed'] < 0:
            raise ConfigurationError("execution.seed must be non-negative.")

    def _validate_resources(self) -> None:
        """
        Warn when the configured worker count oversubscribes the host.
        Forest-level and feature-level parallelism multiply.
        """
        cpu_count = psutil.cpu_count(logical=True) or 1
        n_jobs = self.config.get('execution', {}).get('n_jobs', 1)
        tree_jobs = self.config.get('forest', {}).get('n_jobs', 1)

        workers = cpu_count if n_jobs == -1 else n_jobs
        threads = cpu_count if tree_jobs == -1 else tree_jobs
        if workers * threads > cpu_count:
            logging.warning(
                f"execution.n_jobs ({n_jobs}) x forest.n_jobs ({tree_jobs}) exceeds available CPUs ({cpu_count}). "
                "This may slow the run down."
            )

    def _propagate_seeds(self) -> None:
        """
        Propagate master seed to internal components for reproducibility.
        """
        master_seed = self.config.get('execution', {}).get('seed')
        if master_seed is None:
            self.config['_internal_seeds'] = {}
            return

        self.config['_internal_seeds'] = {
            'forest': master_seed,
        }
        logging.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
