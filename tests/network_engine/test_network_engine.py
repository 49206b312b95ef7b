import json

import numpy as np
import pandas as pd
import pytest

from modules.network_engine import Edge, NetworkEngine, edges_to_frame
from utils import constants
from utils.exceptions import FeatureTaskError, InvalidInputError, InvalidRangeError

# --- Fixtures ---

@pytest.fixture
def network_config(tmp_path):
    return {
        'outputs': {'base_results_dir': str(tmp_path)},
        'network': {'iterations': 3},
        'execution': {'n_jobs': 1},
    }


def _engine(config, logger, forest_engine):
    return NetworkEngine(config, logger, forest_engine=forest_engine)

# --- Tests ---

class TestNetworkEngine:

    def test_output_directory_created(self, network_config, mock_logger, scripted_engine, tmp_path):
        engine = _engine(network_config, mock_logger, scripted_engine())
        assert engine.output_dir == tmp_path / constants.NETWORK_DIR
        assert engine.output_dir.is_dir()

    def test_every_feature_becomes_a_response(self, network_config, mock_logger, scripted_engine, linear_matrix):
        forest = scripted_engine()
        edges = _engine(network_config, mock_logger, forest).build_network(linear_matrix)

        assert [c['response'] for c in forest.calls] == list(linear_matrix.columns)
        assert {e.target for e in edges} == set(linear_matrix.columns)
        for call in forest.calls:
            assert call['response'] not in call['columns']
            assert len(call['columns']) == 4

    def test_feature_range_restricts_targets(self, network_config, mock_logger, scripted_engine, linear_matrix):
        edges = _engine(network_config, mock_logger, scripted_engine()).build_network(
            linear_matrix, feature_range=(2, 3))

        assert edges
        assert {e.target for e in edges} <= {'f2', 'f3'}
        assert {'f1', 'f4', 'f5'}.isdisjoint({e.target for e in edges})

    def test_range_from_config(self, network_config, mock_logger, scripted_engine, linear_matrix):
        network_config['network'].update({'first': 4, 'last': 5})
        forest = scripted_engine()
        _engine(network_config, mock_logger, forest).build_network(linear_matrix)
        assert [c['response'] for c in forest.calls] == ['f4', 'f5']

    def test_no_self_loops_and_only_positive_importance(self, network_config, mock_logger, scripted_engine,
                                                         linear_matrix):
        def signed(predictors, response, weights, i):
            # alternate signs so some predictors are clamped to zero
            return np.array([1.0, -1.0, 2.0, -0.5])[:predictors.shape[1]]

        edges = _engine(network_config, mock_logger, scripted_engine(importance_fn=signed)).build_network(
            linear_matrix)

        assert edges
        assert all(e.source != e.target for e in edges)
        assert all(e.importance > 0 for e in edges)
        assert len(edges) == 2 * 5

    def test_canonical_order(self, network_config, mock_logger, scripted_engine, linear_matrix):
        edges = _engine(network_config, mock_logger, scripted_engine()).build_network(linear_matrix)
        columns = list(linear_matrix.columns)

        keys = [(columns.index(e.target), columns.index(e.source)) for e in edges]
        assert keys == sorted(keys)

    def test_edges_carry_normalized_importance_and_fit(self, network_config, mock_logger, scripted_engine,
                                                       linear_matrix):
        forest = scripted_engine(fits=[0.42])
        edges = _engine(network_config, mock_logger, forest).build_network(linear_matrix, feature_range=(1, 1))

        assert all(isinstance(e, Edge) for e in edges)
        assert sum(e.importance for e in edges) == pytest.approx(1.0)
        assert all(e.fit_quality == 0.42 for e in edges)
        # f1 = 2 * f2 + noise
        assert max(edges, key=lambda e: e.importance).source == 'f2'

    def test_invalid_ranges(self, network_config, mock_logger, scripted_engine, linear_matrix):
        forest = scripted_engine()
        engine = _engine(network_config, mock_logger, forest)
        for bad in [(0, 2), (3, 2), (1, 6)]:
            with pytest.raises(InvalidRangeError):
                engine.build_network(linear_matrix, feature_range=bad)
        assert forest.calls == []

    def test_invalid_matrices(self, network_config, mock_logger, scripted_engine, linear_matrix):
        engine = _engine(network_config, mock_logger, scripted_engine())
        with pytest.raises(InvalidInputError):
            engine.build_network(linear_matrix[['f1']])
        dup = linear_matrix.copy()
        dup.columns = ['f1', 'f1', 'f3', 'f4', 'f5']
        with pytest.raises(InvalidInputError):
            engine.build_network(dup)

    def test_abort_policy_names_failing_feature(self, network_config, mock_logger, scripted_engine,
                                                linear_matrix):
        engine = _engine(network_config, mock_logger, scripted_engine(fail_for={'f3'}))
        with pytest.raises(FeatureTaskError) as excinfo:
            engine.build_network(linear_matrix)

        assert excinfo.value.feature_index == 3
        assert excinfo.value.feature_name == 'f3'
        assert 'f3' in str(excinfo.value)

    def test_skip_policy_continues(self, network_config, mock_logger, scripted_engine, linear_matrix):
        network_config['network']['on_error'] = 'skip'
        engine = _engine(network_config, mock_logger, scripted_engine(fail_for={'f3'}))
        edges = engine.build_network(linear_matrix)

        assert 'f3' not in {e.target for e in edges}
        assert {e.target for e in edges} == {'f1', 'f2', 'f4', 'f5'}
        assert engine.failed_features[0]['index'] == 3
        assert engine.failed_features[0]['name'] == 'f3'
        assert 'EngineFailureError' in engine.failed_features[0]['error']
        mock_logger.warning.assert_called()

    @pytest.mark.parametrize('on_error', ['abort', 'skip'])
    def test_bad_round_bound_rejected_before_any_feature_runs(self, network_config, mock_logger, scripted_engine,
                                                              linear_matrix, on_error):
        network_config['network']['on_error'] = on_error
        forest = scripted_engine()
        engine = _engine(network_config, mock_logger, forest)
        with pytest.raises(InvalidInputError):
            engine.build_network(linear_matrix, max_rounds=0)
        assert forest.calls == []
        assert engine.failed_features == []

    @pytest.mark.parametrize('on_error', ['abort', 'skip'])
    def test_bad_mtry_rejected_before_any_feature_runs(self, network_config, mock_logger, scripted_engine,
                                                       linear_matrix, on_error):
        network_config['network'].update({'on_error': on_error, 'mtry': -2})
        forest = scripted_engine()
        with pytest.raises(InvalidInputError):
            _engine(network_config, mock_logger, forest).build_network(linear_matrix)
        assert forest.calls == []

    def test_progress_bar_over_threaded_pool(self, network_config, mock_logger, scripted_engine, linear_matrix):
        network_config['network']['show_progress'] = True
        network_config['execution'].update({'n_jobs': 2, 'backend': 'threading'})
        edges = _engine(network_config, mock_logger, scripted_engine()).build_network(linear_matrix)
        assert {e.target for e in edges} == set(linear_matrix.columns)

    def test_unknown_failure_policy_rejected(self, network_config, mock_logger, scripted_engine):
        network_config['network']['on_error'] = 'retry'
        with pytest.raises(InvalidInputError):
            _engine(network_config, mock_logger, scripted_engine())

    def test_per_feature_seeds(self, network_config, mock_logger, scripted_engine, linear_matrix):
        network_config['execution']['seed'] = 100
        forest = scripted_engine()
        _engine(network_config, mock_logger, forest).build_network(linear_matrix, feature_range=(2, 3))
        assert [c['options']['random_state'] for c in forest.calls] == [102, 103]

    def test_threaded_pool_matches_sequential(self, network_config, mock_logger, scripted_engine, linear_matrix):
        sequential = _engine(network_config, mock_logger, scripted_engine()).build_network(linear_matrix)

        network_config['execution'].update({'n_jobs': 3, 'backend': 'threading'})
        threaded = _engine(network_config, mock_logger, scripted_engine()).build_network(linear_matrix)

        assert threaded == sequential

    def test_execute_persists_edge_list(self, network_config, mock_logger, scripted_engine, linear_matrix,
                                        tmp_path):
        network_config['outputs']['save_csv_copy'] = True
        engine = _engine(network_config, mock_logger, scripted_engine())
        edge_df = engine.execute(linear_matrix)

        assert list(edge_df.columns) == ['featX', 'featY', 'imp', 'R2']
        out_dir = tmp_path / constants.NETWORK_DIR
        saved = pd.read_parquet(out_dir / constants.EDGE_LIST_FILENAME)
        pd.testing.assert_frame_equal(saved, edge_df, check_dtype=False)
        assert (out_dir / "edge_list.csv").exists()

        with open(out_dir / constants.NETWORK_SUMMARY_FILENAME) as f:
            summary = json.load(f)
        assert summary['n_edges'] == len(edge_df)
        assert summary['features_processed'] == 5
        assert summary['failed_features'] == []


def test_edges_to_frame_empty():
    df = edges_to_frame([])
    assert list(df.columns) == constants.EDGE_COLUMNS
    assert df.empty
