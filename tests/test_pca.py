import unittest

import numpy as np
from sklearn.decomposition import PCA

from snpdapc import GenotypeData, project
from snpdapc.analysis.pca import impute_mean
from snpdapc.utils.custom_exceptions import InsufficientDataError


class TestPCAProjection(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        rng = np.random.default_rng(123)
        cls.X = rng.integers(0, 3, size=(30, 80)).astype(float)

    def test_deterministic(self):
        a = project(self.X, 5)
        b = project(self.X, 5)
        np.testing.assert_array_equal(a.scores, b.scores)
        np.testing.assert_array_equal(a.loadings, b.loadings)

    def test_eigenvalues_non_increasing(self):
        pca = project(self.X, 10)
        self.assertTrue(np.all(np.diff(pca.eigenvalues) <= 1e-12))
        self.assertTrue(np.all(pca.eigenvalues > 0))

    def test_matches_scikit_learn_up_to_sign(self):
        pca = project(self.X, 4)
        ref = PCA(n_components=4, svd_solver="full").fit_transform(self.X)
        np.testing.assert_allclose(np.abs(pca.scores), np.abs(ref), atol=1e-8)

    def test_component_count_is_clamped(self):
        X = self.X[:5]
        pca = project(X, 50)
        self.assertLessEqual(pca.n_components, 4)

        X = self.X[:, :3]
        pca = project(X, 50)
        self.assertLessEqual(pca.n_components, 2)

    def test_rank_deficient_input(self):
        # Three distinct rows repeated: centered rank is 2.
        base = np.array([[0, 0, 2, 2, 1], [2, 2, 0, 0, 1], [0, 2, 0, 2, 0]], float)
        X = np.repeat(base, 10, axis=0)
        pca = project(X, 10)
        self.assertEqual(pca.n_components, 2)

    def test_largest_loading_is_positive(self):
        pca = project(self.X, 6)
        idx = np.argmax(np.abs(pca.loadings), axis=0)
        self.assertTrue(np.all(pca.loadings[idx, np.arange(6)] > 0))

    def test_truncate_matches_fewer_components(self):
        full = project(self.X, 8)
        small = project(self.X, 3)
        trunc = full.truncate(3)
        np.testing.assert_allclose(trunc.scores, small.scores, atol=1e-10)
        np.testing.assert_allclose(trunc.eigenvalues, small.eigenvalues)

    def test_transform_reproduces_training_scores(self):
        pca = project(self.X, 5)
        np.testing.assert_allclose(pca.transform(self.X), pca.scores, atol=1e-8)

    def test_missing_values_mean_imputed(self):
        X = self.X.copy()
        X[0, 0] = np.nan
        X[3, 7] = np.nan
        pca = project(X, 5)
        self.assertTrue(np.all(np.isfinite(pca.scores)))

        X_imp, means = impute_mean(X)
        self.assertAlmostEqual(X_imp[0, 0], np.nanmean(X[:, 0]))
        self.assertAlmostEqual(means[7], np.nanmean(X[:, 7]))

    def test_accepts_genotype_data(self):
        gd = GenotypeData(self.X, verbose=False)
        a = project(gd, 4)
        b = project(self.X, 4)
        np.testing.assert_allclose(a.scores, b.scores)

    def test_scaling(self):
        pca = project(self.X, 4, scale=True)
        np.testing.assert_allclose(pca.scales, self.X.std(axis=0))
        np.testing.assert_allclose(pca.transform(self.X), pca.scores, atol=1e-8)

    def test_explained_variance_ratio(self):
        pca = project(self.X, 100)
        self.assertAlmostEqual(float(pca.explained_variance_ratio.sum()), 1.0)

    def test_insufficient_data_raises(self):
        with self.assertRaises(InsufficientDataError):
            project(self.X[:1], 2)
        with self.assertRaises(ValueError):
            project(self.X, 0)


if __name__ == "__main__":
    unittest.main()
