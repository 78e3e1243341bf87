"""
unit tests for services/features/app.py and services/features/validate_features.py

quarter restriction, z-scores, wide pivot, first differences, labels
"""

import pytest
import pandas as pd
import numpy as np
from pathlib import Path
import sys

#add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from services.ingest.app import build_enriched
from services.features.app import (
    FeatureBuildError,
    restrict_months,
    standardize_changes,
    pivot_wide,
    diff_matrix,
    quarter_direction,
    label_features,
    build_feature_sets,
    write_feature_sets,
    load_feature_sets,
)
from services.features.validate_features import (
    FeatureValidationError,
    validate_feature_table,
    validate_feature_sets,
)


def long_frame(rows):
    """long format rows of (symbol, date, value) with a direction"""
    df = pd.DataFrame(rows, columns=['symbol', 'date', 'percent_change'])
    df['date'] = pd.to_datetime(df['date'])
    df['direction'] = np.where(df['percent_change'] >= 0, 'up', 'down')
    return df


class TestRestrictMonths:
    """tests for restrict_months()"""

    def test_keeps_only_requested_months(self):
        df = pd.DataFrame({'month': [6, 7, 8, 9, 10], 'x': range(5)})

        result = restrict_months(df, (7, 8, 9))

        assert result['month'].tolist() == [7, 8, 9]
        assert result.index.tolist() == [0, 1, 2]

    def test_accepts_list(self):
        df = pd.DataFrame({'month': [1, 2, 3]})

        assert restrict_months(df, [2])['month'].tolist() == [2]


class TestStandardizeChanges:
    """tests for standardize_changes()"""

    def test_z_change_has_zero_mean_unit_sd(self, sample_market_data):
        """per symbol z_change is centred and scaled with the sample sd"""
        enriched = build_enriched(sample_market_data, 2016)
        quarter = restrict_months(enriched, (7, 8, 9))

        result = standardize_changes(quarter)

        for symbol, group in result.groupby('symbol'):
            assert group['z_change'].mean() == pytest.approx(0.0, abs=1e-9)
            assert group['z_change'].std(ddof=1) == pytest.approx(1.0, rel=1e-9)

    def test_known_values(self):
        df = long_frame([
            ('AAA', '2016-07-01', 1.0),
            ('AAA', '2016-07-05', 3.0),
            ('AAA', '2016-07-06', 5.0),
        ])

        result = standardize_changes(df)

        assert result['mean_change'].tolist() == pytest.approx([3.0, 3.0, 3.0])
        assert result['sd_change'].tolist() == pytest.approx([2.0, 2.0, 2.0])
        assert result['z_change'].tolist() == pytest.approx([-1.0, 0.0, 1.0])

    def test_groups_by_symbol(self):
        """one symbol's values never shift another's z-scores"""
        df = long_frame([
            ('AAA', '2016-07-01', 1.0),
            ('AAA', '2016-07-05', 3.0),
            ('BBB', '2016-07-01', 100.0),
            ('BBB', '2016-07-05', 300.0),
        ])

        result = standardize_changes(df)

        assert result['z_change'].tolist() == pytest.approx([-0.7071068, 0.7071068, -0.7071068, 0.7071068])

    def test_single_observation_is_nan(self):
        """sd of one value is undefined and propagates"""
        df = long_frame([('AAA', '2016-07-01', 2.0)])

        result = standardize_changes(df)

        assert np.isnan(result['sd_change'].iloc[0])
        assert np.isnan(result['z_change'].iloc[0])

    def test_constant_change_is_nan(self):
        """zero sd gives 0/0, left as nan rather than zero filled"""
        df = long_frame([
            ('AAA', '2016-07-01', 0.0),
            ('AAA', '2016-07-05', 0.0),
            ('AAA', '2016-07-06', 0.0),
        ])

        result = standardize_changes(df)

        assert (result['sd_change'] == 0.0).all()
        assert result['z_change'].isna().all()


class TestPivotWide:
    """tests for pivot_wide()"""

    def test_symbol_by_date(self):
        df = long_frame([
            ('BBB', '2016-07-05', 4.0),
            ('AAA', '2016-07-01', 1.0),
            ('AAA', '2016-07-05', 2.0),
            ('BBB', '2016-07-01', 3.0),
        ])

        wide = pivot_wide(df, 'percent_change')

        assert wide.index.tolist() == ['AAA', 'BBB']
        assert list(wide.columns) == [pd.Timestamp('2016-07-01'), pd.Timestamp('2016-07-05')]
        assert wide.loc['AAA'].tolist() == [1.0, 2.0]
        assert wide.loc['BBB'].tolist() == [3.0, 4.0]

    def test_missing_cells_stay_nan(self):
        """a symbol without a date gets nan, not 0"""
        df = long_frame([
            ('AAA', '2016-07-01', 1.0),
            ('AAA', '2016-07-05', 2.0),
            ('BBB', '2016-07-01', 3.0),
        ])

        wide = pivot_wide(df, 'percent_change')

        assert np.isnan(wide.loc['BBB', pd.Timestamp('2016-07-05')])

    def test_duplicate_symbol_date_raises(self):
        df = long_frame([
            ('AAA', '2016-07-01', 1.0),
            ('AAA', '2016-07-01', 2.0),
        ])

        with pytest.raises(FeatureBuildError, match="duplicate"):
            pivot_wide(df, 'percent_change')


class TestDiffMatrix:
    """tests for diff_matrix()"""

    def _wide(self, rows, dates=('2016-07-01', '2016-07-05', '2016-07-06')):
        return pd.DataFrame(
            rows,
            index=pd.Index([f"S{i}" for i in range(len(rows))], name='symbol'),
            columns=pd.to_datetime(list(dates)),
        )

    def test_example_row(self):
        """[1.0, 3.0, 0.5] -> [2.0, -2.5]"""
        result = diff_matrix(self._wide([[1.0, 3.0, 0.5]]))

        assert result.iloc[0].tolist() == pytest.approx([2.0, -2.5])

    def test_one_column_less(self):
        wide = self._wide([[1.0, 2.0, 4.0], [0.0, 0.0, 1.0]])

        result = diff_matrix(wide)

        assert result.shape == (2, wide.shape[1] - 1)
        for j in range(result.shape[1]):
            np.testing.assert_allclose(result.iloc[:, j], wide.iloc[:, j + 1] - wide.iloc[:, j])

    def test_columns_named_after_later_date(self):
        result = diff_matrix(self._wide([[1.0, 2.0, 4.0]]))

        assert list(result.columns) == ['diff_20160705', 'diff_20160706']

    def test_missing_propagates(self):
        """nan on either side of a difference gives nan"""
        result = diff_matrix(self._wide([[1.0, np.nan, 4.0]]))

        assert result.iloc[0].isna().all()

    def test_needs_two_dates(self):
        with pytest.raises(FeatureBuildError, match="at least 2"):
            diff_matrix(self._wide([[1.0]], dates=('2016-07-01',)))


class TestLabels:
    """tests for quarter_direction() and label_features()"""

    def test_first_record_in_date_order_wins(self):
        df = long_frame([
            ('AAA', '2016-07-05', 1.0),
            ('AAA', '2016-07-01', -1.0),
            ('BBB', '2016-07-01', 2.0),
            ('BBB', '2016-07-05', -2.0),
        ])

        labels = quarter_direction(df)

        assert labels.to_dict() == {'AAA': 'down', 'BBB': 'up'}

    def test_join_is_by_symbol_not_position(self):
        diffs = pd.DataFrame(
            {'diff_20160705': [1.0, 2.0]},
            index=pd.Index(['AAA', 'BBB'], name='symbol'),
        )
        labels = pd.Series(['down', 'up'], index=pd.Index(['BBB', 'AAA'], name='symbol'), name='direction')

        table = label_features(diffs, labels)

        assert table.loc['AAA', 'direction'] == 'up'
        assert table.loc['BBB', 'direction'] == 'down'
        assert table.index.name == 'symbol'
        assert 'symbol' not in table.columns

    def test_symbols_without_label_are_dropped(self):
        diffs = pd.DataFrame({'diff_20160705': [1.0, 2.0]}, index=['AAA', 'CCC'])
        labels = pd.Series(['up'], index=['AAA'])

        table = label_features(diffs, labels)

        assert table.index.tolist() == ['AAA']


class TestBuildFeatureSets:
    """tests for build_feature_sets()"""

    def test_builds_norm_and_std(self, sample_market_data):
        enriched = build_enriched(sample_market_data, 2016)
        n_dates = enriched.loc[enriched['month'].isin([7, 8, 9]), 'date'].nunique()

        sets = build_feature_sets(enriched, (7, 8, 9))

        assert set(sets) == {'norm', 'std'}
        for table in sets.values():
            assert len(table) == 40
            assert table.shape[1] - 1 == n_dates - 1
            assert table['direction'].value_counts().to_dict() == {'up': 20, 'down': 20}
        assert sets['norm'].index.equals(sets['std'].index)

    def test_norm_features_are_raw_change_diffs(self, sample_market_data):
        enriched = build_enriched(sample_market_data, 2016)

        sets = build_feature_sets(enriched, (7, 8, 9))

        quarter = enriched[enriched['month'].isin([7, 8, 9])]
        s00 = quarter[quarter['symbol'] == 'S00']['percent_change'].to_numpy()
        features = sets['norm'].loc['S00'].drop('direction').to_numpy(dtype=float)
        np.testing.assert_allclose(features, np.diff(s00))

    def test_empty_window_raises(self, sample_market_data):
        enriched = build_enriched(sample_market_data, 2016)

        with pytest.raises(FeatureBuildError, match="No rows"):
            build_feature_sets(enriched, (11, 12))

    def test_write_and_load_round_trip(self, tmp_path, sample_market_data):
        sets = build_feature_sets(build_enriched(sample_market_data, 2016), (7, 8, 9))

        write_feature_sets(sets, tmp_path)
        loaded = load_feature_sets(tmp_path)

        pd.testing.assert_frame_equal(loaded['std'], sets['std'])

    def test_load_missing_feature_sets(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="features service"):
            load_feature_sets(tmp_path)


class TestValidateFeatures:
    """tests for validate_feature_table() and validate_feature_sets()"""

    def test_valid_table(self, separable_feature_table):
        validate_feature_table(separable_feature_table, n_dates=4)

    def test_wrong_feature_count(self, separable_feature_table):
        with pytest.raises(FeatureValidationError, match="Expected 9 feature columns"):
            validate_feature_table(separable_feature_table, n_dates=10)

    def test_symbol_column_rejected(self, separable_feature_table):
        df = separable_feature_table.reset_index()

        with pytest.raises(FeatureValidationError, match="symbol"):
            validate_feature_table(df)

    def test_bad_label_rejected(self, separable_feature_table):
        df = separable_feature_table.copy()
        df.iloc[0, df.columns.get_loc('direction')] = 'flat'

        with pytest.raises(FeatureValidationError, match="Unexpected labels"):
            validate_feature_table(df)

    def test_missing_label_column(self, separable_feature_table):
        with pytest.raises(FeatureValidationError, match="Missing label column"):
            validate_feature_table(separable_feature_table.drop(columns='direction'))

    def test_sets_with_different_symbols(self, separable_feature_table):
        sets = {
            'norm': separable_feature_table,
            'std': separable_feature_table.iloc[1:],
        }

        is_valid, errors = validate_feature_sets(sets)

        assert not is_valid
        assert any("Symbol mismatch" in e for e in errors)

    def test_sets_with_different_labels(self, separable_feature_table):
        flipped = separable_feature_table.copy()
        flipped['direction'] = flipped['direction'].map({'up': 'down', 'down': 'up'})

        is_valid, errors = validate_feature_sets({'norm': separable_feature_table, 'std': flipped})

        assert not is_valid
        assert any("Labels differ" in e for e in errors)

    def test_sets_missing_variant(self, separable_feature_table):
        is_valid, errors = validate_feature_sets({'norm': separable_feature_table})

        assert not is_valid
        assert "Missing feature sets" in errors[0]
