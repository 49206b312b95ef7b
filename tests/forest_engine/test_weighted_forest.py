import numpy as np
import pandas as pd
import pytest

from modules.forest_engine import ForestResult, WeightedForestEngine
from utils.exceptions import EngineFailureError, InvalidInputError

# --- Fixtures ---

@pytest.fixture
def regression_data():
    rng = np.random.default_rng(3)
    X = pd.DataFrame(rng.uniform(size=(60, 4)), columns=['signal', 'noise_a', 'noise_b', 'noise_c'])
    y = 3 * X['signal'] + rng.normal(scale=0.05, size=60)
    return X, y


@pytest.fixture
def classification_data():
    rng = np.random.default_rng(4)
    X = pd.DataFrame(rng.uniform(size=(80, 3)), columns=['a', 'b', 'c'])
    y = np.where(X['a'] > 0.5, 'high', 'low')
    return X, y


@pytest.fixture
def engine():
    return WeightedForestEngine(num_trees=40, min_samples_leaf=2, random_state=0)

# --- Tests ---

class TestWeightedForestEngine:

    def test_regression_result_shape(self, engine, regression_data):
        X, y = regression_data
        result = engine.train(X, y, np.full(4, 0.25), mtry=2)

        assert isinstance(result, ForestResult)
        assert list(result.importances.index) == list(X.columns)
        assert result.oob_predictions.shape == (60,)
        assert result.mtry == 2
        assert result.confusion is None
        assert result.prediction_error >= 0

    def test_signal_dominates_importance(self, engine, regression_data):
        X, y = regression_data
        result = engine.train(X, y, np.full(4, 0.25), mtry=2)

        assert result.importances.idxmax() == 'signal'
        assert result.fit_quality > 0.5

    def test_zero_weight_predictor_is_never_used(self, engine, regression_data):
        X, y = regression_data
        result = engine.train(X, y, np.array([0.0, 0.4, 0.3, 0.3]), mtry=1)
        assert result.importances['signal'] == 0.0

    def test_plain_impurity_is_non_negative(self, engine, regression_data):
        X, y = regression_data
        result = engine.train(X, y, np.full(4, 0.25), mtry=2, importance_mode='impurity')
        assert (result.importances >= 0).all()

    def test_same_seed_same_result(self, regression_data):
        X, y = regression_data
        a = WeightedForestEngine(num_trees=20, random_state=11).train(X, y, np.full(4, 0.25), mtry=2)
        b = WeightedForestEngine(num_trees=20, random_state=11).train(X, y, np.full(4, 0.25), mtry=2)
        pd.testing.assert_series_equal(a.importances, b.importances)
        np.testing.assert_array_equal(a.oob_predictions, b.oob_predictions)

    def test_call_options_override_constructor(self, engine, regression_data):
        X, y = regression_data
        result = engine.train(X, y, np.full(4, 0.25), mtry=2, options={'num_trees': 5})
        assert result.settings.options['num_trees'] == 5
        assert engine.options['num_trees'] == 40

    def test_classification_reports_confusion(self, engine, classification_data):
        X, y = classification_data
        result = engine.train(X, y, np.full(3, 1 / 3), mtry=1, classification=True)

        assert set(result.confusion.index) == {'high', 'low'}
        assert 0.0 <= result.fit_quality <= 1.0
        assert result.fit_quality == pytest.approx(1.0 - result.prediction_error)
        assert result.importances.idxmax() == 'a'

    def test_mtry_above_active_count_fails(self, engine, regression_data):
        X, y = regression_data
        with pytest.raises(EngineFailureError):
            engine.train(X, y, np.array([0.5, 0.5, 0.0, 0.0]), mtry=3)

    def test_too_few_samples_fails(self, engine, regression_data):
        X, y = regression_data
        with pytest.raises(EngineFailureError):
            engine.train(X.iloc[:1], y.iloc[:1], np.full(4, 0.25), mtry=2)

    def test_unknown_option_rejected(self, regression_data):
        with pytest.raises(InvalidInputError):
            WeightedForestEngine(num_tree=10)

    def test_unknown_importance_mode_rejected(self, engine, regression_data):
        X, y = regression_data
        with pytest.raises(InvalidInputError):
            engine.train(X, y, np.full(4, 0.25), mtry=2, importance_mode='permutation')

    def test_pvalues_are_valid_probabilities(self, regression_data):
        X, y = regression_data
        engine = WeightedForestEngine(num_trees=15, random_state=5)
        result = engine.train(X, y, np.full(4, 0.25), mtry=2)
        pvals = engine.importance_pvalues(result, X, y, num_permutations=9)

        assert list(pvals.columns) == ['importance', 'pvalue']
        assert list(pvals.index) == list(X.columns)
        assert ((pvals['pvalue'] > 0) & (pvals['pvalue'] <= 1)).all()
        # smallest attainable p-value with 9 permutations
        assert pvals.loc['signal', 'pvalue'] == pytest.approx(0.1)
