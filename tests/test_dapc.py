import unittest

import numpy as np

from snpdapc import DAPC, fit, project, simulate_structured_genotypes
from snpdapc.analysis.dapc import _scatter_matrices, fit_from_projection


class TestDAPC(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.gd, cls.truth = simulate_structured_genotypes(
            n_pops=3, n_per_pop=20, n_markers=300, divergence=0.2, seed=11, verbose=False
        )
        cls.model = fit(cls.gd, cls.truth, n_pca=10, n_da=2)

    def test_posterior_is_a_distribution(self):
        post = self.model.posterior
        self.assertEqual(post.shape, (60, 3))
        self.assertTrue(np.all(post >= 0.0))
        self.assertTrue(np.all(post <= 1.0))
        np.testing.assert_allclose(post.sum(axis=1), 1.0, atol=1e-12)

    def test_assignment_is_argmax(self):
        expected = self.model.groups[np.argmax(self.model.posterior, axis=1)]
        np.testing.assert_array_equal(self.model.assignment, expected)

    def test_recovers_true_groups(self):
        np.testing.assert_array_equal(self.model.assignment, self.truth)

    def test_shapes(self):
        m = self.model
        self.assertEqual(m.n_pca, 10)
        self.assertEqual(m.n_da, 2)
        self.assertEqual(m.axes.shape, (10, 2))
        self.assertEqual(m.coordinates.shape, (60, 2))
        self.assertEqual(m.centroids.shape, (3, 2))
        np.testing.assert_allclose(m.priors, [1 / 3, 1 / 3, 1 / 3])
        self.assertEqual(m.samples, self.gd.samples)
        self.assertFalse(m.regularized)

    def test_n_da_clamped_to_groups_minus_one(self):
        model = fit(self.gd, self.truth, n_pca=10, n_da=5)
        self.assertEqual(model.n_da, 2)

    def test_eigenvalues_sorted_and_proportions(self):
        ev = self.model.eigenvalues
        self.assertGreaterEqual(ev[0], ev[1])
        self.assertAlmostEqual(float(self.model.axis_proportions.sum()), 1.0)
        self.assertGreater(self.model.var_retained, 0.0)
        self.assertLessEqual(self.model.var_retained, 1.0)

    def test_axes_whiten_within_group_covariance(self):
        pca = project(self.gd, 10)
        sw, _, _ = _scatter_matrices(pca.scores, self.truth, np.unique(self.truth))
        whitened = self.model.axes.T @ sw @ self.model.axes
        np.testing.assert_allclose(whitened, np.eye(2), atol=1e-8)

    def test_predict_reproduces_training_coordinates(self):
        coords, post, assigned = self.model.predict(self.gd)
        np.testing.assert_allclose(coords, self.model.coordinates, atol=1e-8)
        np.testing.assert_allclose(post, self.model.posterior, atol=1e-8)
        np.testing.assert_array_equal(assigned, self.model.assignment)

    def test_predict_with_missing_calls(self):
        X = self.gd.to_float()[:5]
        X[:, :20] = np.nan
        _, post, _ = self.model.predict(X)
        np.testing.assert_allclose(post.sum(axis=1), 1.0, atol=1e-12)

    def test_posterior_frame(self):
        df = self.model.posterior_frame()
        self.assertEqual(list(df.columns), ["1", "2", "3"])
        self.assertEqual(list(df.index), self.gd.samples)

    def test_degenerate_groups_are_regularized(self):
        # Identical genotypes within each group: zero within-group scatter.
        patterns = np.array([[0, 0, 2, 2, 1, 0], [2, 2, 0, 0, 1, 2], [0, 2, 0, 2, 0, 1]], float)
        labels = np.repeat([1, 2, 3], 10)
        X = patterns[labels - 1]

        with self.assertLogs("snpdapc.analysis.dapc", level="WARNING") as cm:
            model = DAPC(verbose=False).fit(X, labels, n_pca=5, n_da=2)

        self.assertTrue(model.regularized)
        self.assertTrue(any("Regularizing" in msg for msg in cm.output))
        np.testing.assert_array_equal(model.assignment, labels)
        np.testing.assert_allclose(model.posterior.sum(axis=1), 1.0, atol=1e-12)

    def test_more_pcs_than_within_group_dof_are_regularized(self):
        # 59 PCs but only 60 - 3 = 57 within-group degrees of freedom.
        pca = project(self.gd, 59)
        self.assertEqual(pca.n_components, 59)

        with self.assertLogs("snpdapc.analysis.dapc", level="WARNING") as cm:
            model = fit_from_projection(pca, self.truth, 59, 2)

        self.assertTrue(model.regularized)
        self.assertTrue(any("Singular within-group covariance at 59 PCs" in msg for msg in cm.output))
        self.assertFalse(any("leading minor" in msg for msg in cm.output))
        self.assertTrue(np.all(np.isfinite(model.eigenvalues)))
        self.assertTrue(np.all(model.eigenvalues < 1e12))
        np.testing.assert_allclose(model.posterior.sum(axis=1), 1.0, atol=1e-9)

    def test_full_rank_within_group_covariance_is_not_regularized(self):
        self.assertFalse(self.model.regularized)

    def test_single_group(self):
        labels = np.ones(self.gd.n_individuals, dtype=int)
        model = fit(self.gd, labels, n_pca=5, n_da=3)
        self.assertEqual(model.n_da, 0)
        np.testing.assert_allclose(model.posterior, 1.0)
        np.testing.assert_array_equal(model.assignment, labels)

    def test_string_group_labels(self):
        labels = np.array([f"pop{g}" for g in self.truth])
        model = fit(self.gd, labels, n_pca=10, n_da=2)
        np.testing.assert_array_equal(model.assignment, labels)

    def test_label_count_mismatch_raises(self):
        pca = project(self.gd, 5)
        with self.assertRaises(ValueError):
            fit_from_projection(pca, self.truth[:-1], 5, 2)


if __name__ == "__main__":
    unittest.main()
