"""Tests for lipms.normalization module."""

import numpy as np
import pandas as pd
import pytest

from lipms import as_experiment, norm_lip, summarize_lip
from lipms.errors import InvalidValueError, MissingStandardError
from lipms.normalization import normalize_istd, normalize_pqn, pqn_factors


def _small_experiment(values, groups=None, molecules=None):
    """Experiment from a features x samples array with default config."""
    values = np.asarray(values, dtype=float)
    table = pd.DataFrame({'Molecule': molecules or [f'PC {30 + i}:0' for i in range(values.shape[0])]})
    for j in range(values.shape[1]):
        table[f'S{j + 1}'] = values[:, j]
    data = as_experiment(table)
    if groups is not None:
        data['samples']['Group'] = groups
    return data


class TestPqnFactors:
    def test_sample_equal_to_reference_has_quotient_one(self):
        assay = pd.DataFrame({'S1': [1.0, 2.0, 3.0], 'S2': [2.0, 4.0, 6.0], 'S3': [4.0, 8.0, 12.0]})
        factors, reference = pqn_factors(assay)

        # The median sample is the reference profile
        assert factors['S2'] == pytest.approx(1.0)
        assert factors['S1'] == pytest.approx(0.5)
        assert factors['S3'] == pytest.approx(2.0)

    def test_reference_restricted_to_samples(self):
        assay = pd.DataFrame({'S1': [1.0, 2.0], 'S2': [10.0, 20.0]})
        factors, reference = pqn_factors(assay, reference_samples=['S1'])
        assert factors['S1'] == pytest.approx(1.0)
        assert factors['S2'] == pytest.approx(10.0)

    def test_zero_reference_features_skipped(self):
        assay = pd.DataFrame({'S1': [0.0, 2.0, 3.0], 'S2': [0.0, 4.0, 6.0]})
        factors, _ = pqn_factors(assay)
        assert np.isfinite(factors).all()


class TestNormalizePqn:
    def test_removes_dilution(self):
        profile = np.array([100.0, 200.0, 300.0, 400.0])
        data = _small_experiment(np.column_stack([profile, profile * 2, profile * 0.5]))

        result = normalize_pqn(data, log=False)
        assay = result['assays']['Area']

        np.testing.assert_allclose(assay['S1'], assay['S2'])
        np.testing.assert_allclose(assay['S1'], assay['S3'])

    def test_excluded_samples_still_normalized(self):
        profile = np.array([100.0, 200.0, 300.0])
        data = _small_experiment(np.column_stack([profile, profile, profile * 0.01]),
                                 groups=['WT', 'WT', 'Blank'])

        result = normalize_pqn(data, exclude='blank', log=False)
        record = result['normalization']

        assert record['excluded_samples'] == ['S3']
        assert record['factors']['S1'] == pytest.approx(1.0)
        np.testing.assert_allclose(result['assays']['Area']['S3'], profile)

    def test_exclusion_matches_sample_id(self):
        table = pd.DataFrame({'Molecule': ['PC 32:0', 'PC 34:1'], 'WT_1': [1.0, 2.0],
                              'WT_2': [1.0, 2.0], 'blank_01': [0.1, 0.1]})
        result = normalize_pqn(as_experiment(table), exclude='blank', log=False)
        assert result['normalization']['excluded_samples'] == ['blank_01']

    def test_exclusion_of_every_sample_raises(self):
        data = _small_experiment([[1.0, 2.0], [3.0, 4.0]], groups=['Blank', 'Blank'])
        with pytest.raises(InvalidValueError, match='blank'):
            normalize_pqn(data, exclude='blank', log=False)

    def test_log_transform(self):
        data = _small_experiment([[1.0, np.e], [np.e, 1.0]])
        result = normalize_pqn(data, log=True)
        assert result['normalization']['log'] is True
        assert np.isfinite(result['assays']['Area'].to_numpy()).all()

    def test_log2(self):
        data = _small_experiment([[2.0, 2.0], [8.0, 8.0]])
        result = normalize_pqn(data, log=True, log_base=2)
        # Quotients are 1; log2 of the raw values
        np.testing.assert_allclose(result['assays']['Area']['S1'], [1.0, 3.0])

    def test_zero_value_cannot_be_logged(self):
        data = _small_experiment([[0.0, 5.0, 6.0], [3.0, 4.0, 5.0], [7.0, 8.0, 9.0]])
        with pytest.raises(InvalidValueError, match='S1'):
            normalize_pqn(data, log=True)

    def test_missing_values_pass_through(self):
        data = _small_experiment([[np.nan, 5.0, 6.0], [3.0, 4.0, 5.0], [7.0, 8.0, 9.0]])
        result = normalize_pqn(data, log=True)
        assay = result['assays']['Area']
        assert np.isnan(assay.loc[0, 'S1'])
        assert assay.drop(index=0).notna().all().all()


class TestNormalizeIstd:
    def test_divides_by_class_standard(self):
        data = _small_experiment(
            [[10.0, 20.0], [100.0, 100.0], [2.0, 4.0]],
            molecules=['PC 34:1', 'PE 36:2', 'PC 15:0-18:1(d7)'],
        )
        result = normalize_istd(data, log=False)
        assay = result['assays']['Area']

        # PC scaled by the PC standard
        np.testing.assert_allclose(assay.loc[0], [5.0, 5.0])
        # PE has no standard of its own: mean of all standards
        np.testing.assert_allclose(assay.loc[1], [50.0, 25.0])
        # Standards are left unscaled
        np.testing.assert_allclose(assay.loc[2], [2.0, 4.0])

    def test_named_standards(self):
        data = _small_experiment([[10.0, 20.0], [5.0, 10.0]], molecules=['PC 34:1', 'PC 36:2'])
        result = normalize_istd(data, log=False, standards=['PC 36:2'])
        np.testing.assert_allclose(result['assays']['Area'].loc[0], [2.0, 2.0])
        assert result['normalization']['standards'] == ['PC 36:2']

    def test_no_standard_raises(self):
        data = _small_experiment([[10.0, 20.0], [5.0, 10.0]])
        with pytest.raises(MissingStandardError):
            normalize_istd(data)


class TestNormLip:
    def test_pqn_default(self, experiment):
        result = norm_lip(summarize_lip(experiment))
        assert result['normalization']['method'] == 'pqn'
        assert result['normalization']['log'] is True
        assert 'Blank_1' in result['normalization']['excluded_samples']

    def test_istd_dispatch(self, experiment):
        result = norm_lip(summarize_lip(experiment), method='istd')
        assert result['normalization']['method'] == 'istd'
        assert result['normalization']['standards'] == ['PC 15:0-18:1(d7)']

    def test_keeps_all_features_and_samples(self, experiment):
        data = summarize_lip(experiment)
        result = norm_lip(data)
        assert result['assays']['Area'].shape == data['assays']['Area'].shape

    def test_provenance(self, experiment):
        result = norm_lip(summarize_lip(experiment))
        assert result['provenance'][-1]['step'] == 'normalize'
        assert result['provenance'][-1]['method'] == 'pqn'

    def test_unknown_method_raises(self, experiment):
        with pytest.raises(ValueError):
            norm_lip(experiment, method='quantile')

    def test_does_not_mutate_input(self, experiment):
        data = summarize_lip(experiment)
        before = data['assays']['Area'].copy()

        norm_lip(data)

        assert data['assays']['Area'].equals(before)
        assert 'normalization' not in data
