import unittest

import numpy as np

from snpdapc import ClusterSelector, GenotypeData, select_k
from snpdapc.analysis.clustering import choose_k, compute_statistic
from snpdapc.utils.custom_exceptions import ClusteringError


def noise_free_clusters(n_per_group: int = 20, n_markers: int = 30) -> np.ndarray:
    """Three groups of identical genotypes, interleaved."""
    rng = np.random.default_rng(7)
    patterns = rng.integers(0, 3, size=(3, n_markers))
    patterns[0, :10] = 0
    patterns[1, :10] = 2
    patterns[2, 10:20] = 2
    labels = np.tile(np.arange(3), n_per_group)
    return patterns[labels].astype(float), labels


class TestClusterSelector(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.X, cls.truth = noise_free_clusters()
        cls.gd = GenotypeData(cls.X, verbose=False)

    def test_max_k_one_returns_single_group(self):
        res = select_k(self.gd, max_k=1, n_pca=5)
        self.assertEqual(res.k, 1)
        np.testing.assert_array_equal(res.labels, np.ones(60, dtype=int))

    def test_three_noise_free_clusters(self):
        res = select_k(self.gd, max_k=7, n_pca=20, seed=999)
        self.assertEqual(res.k, 3)
        self.assertEqual(res.k_min_stat, 3)

        # Labels agree with truth up to renaming.
        for g in np.unique(self.truth):
            self.assertEqual(len(np.unique(res.labels[self.truth == g])), 1)
        self.assertEqual(len(np.unique(res.labels)), 3)

    def test_labels_numbered_by_first_appearance(self):
        res = select_k(self.gd, max_k=5, n_pca=10)
        np.testing.assert_array_equal(res.labels[:3], [1, 2, 3])

    def test_unusable_k_reported_as_nan(self):
        # Only three distinct points exist, so K >= 4 leaves empty clusters.
        res = select_k(self.gd, max_k=5, n_pca=10)
        table = res.stat_table()
        self.assertTrue(table.loc[table["K"] <= 3, "Usable"].all())
        self.assertFalse(table.loc[table["K"] > 3, "Usable"].any())

    def test_reproducible(self):
        a = select_k(self.gd, max_k=4, n_pca=10, seed=5)
        b = select_k(self.gd, max_k=4, n_pca=10, seed=5)
        np.testing.assert_array_equal(a.labels, b.labels)
        np.testing.assert_array_equal(a.stats, b.stats)

    def test_max_k_clamped_to_individuals(self):
        X = self.X[:4]
        res = select_k(X, max_k=10, n_pca=2, selection_rule="min")
        self.assertEqual(res.k_values.max(), 4)

    def test_all_k_unusable_raises(self):
        # Identical individuals: every K > 1 leaves empty clusters.
        X = np.ones((10, 5))
        X[:, 0] = 2
        with self.assertRaises(ClusteringError):
            select_k(X, max_k=3, n_pca=2)

    def test_invalid_arguments(self):
        selector = ClusterSelector(verbose=False)
        with self.assertRaises(ValueError):
            selector.select_k(self.gd, max_k=0, n_pca=5)
        with self.assertRaises(ValueError):
            selector.select_k(self.gd, max_k=3, n_pca=5, criterion="XYZ")
        with self.assertRaises(ValueError):
            selector.select_k(self.gd, max_k=3, n_pca=5, selection_rule="best")


class TestSelectionRules(unittest.TestCase):

    def setUp(self):
        self.k = np.arange(1, 7)
        self.stats = np.array([100.0, 60.0, 20.0, 19.0, 18.5, 18.2])

    def test_min(self):
        self.assertEqual(choose_k(self.k, self.stats, "min"), 6)

    def test_diff_n_group(self):
        self.assertEqual(choose_k(self.k, self.stats, "diffNgroup"), 3)

    def test_diminishing(self):
        self.assertEqual(choose_k(self.k, self.stats, "diminishing"), 3)

    def test_goesup(self):
        stats = np.array([10.0, 5.0, 3.0, 4.0, 2.0, 1.0])
        self.assertEqual(choose_k(self.k, stats, "goesup"), 3)
        self.assertEqual(choose_k(self.k, self.stats, "goesup"), 6)

    def test_smooth_n_goesup(self):
        # Smoothed curve: 10, 6.33, 4.33, 4, 5, 6.
        stats = np.array([10.0, 6.0, 3.0, 4.0, 5.0, 6.0])
        self.assertEqual(choose_k(self.k, stats, "goesup"), 3)
        self.assertEqual(choose_k(self.k, stats, "smoothNgoesup"), 4)

    def test_goodfit(self):
        # Range is 81.8; within 10% of the minimum means <= 26.38.
        self.assertEqual(choose_k(self.k, self.stats, "goodfit"), 3)

    def test_unusable_k_skipped(self):
        stats = self.stats.copy()
        stats[2] = np.nan
        self.assertEqual(choose_k(self.k, stats, "min"), 6)
        self.assertEqual(choose_k(np.array([1, 2]), np.array([5.0, np.nan]), "diffNgroup"), 1)

    def test_compute_statistic(self):
        wss = np.array([100.0, 50.0, np.nan])
        k = np.array([1, 2, 3])
        n = 20

        bic = compute_statistic(wss, k, n, "BIC")
        np.testing.assert_allclose(bic[:2], n * np.log(wss[:2] / n) + k[:2] * np.log(n))
        self.assertTrue(np.isnan(bic[2]))

        aic = compute_statistic(wss, k, n, "AIC")
        np.testing.assert_allclose(aic[:2], n * np.log(wss[:2] / n) + 2 * k[:2])

        np.testing.assert_array_equal(compute_statistic(wss, k, n, "WSS")[:2], wss[:2])

    def test_zero_wss_is_finite(self):
        bic = compute_statistic(np.array([100.0, 0.0]), np.array([1, 2]), 10, "BIC")
        self.assertTrue(np.all(np.isfinite(bic)))
        self.assertLess(bic[1], bic[0])


if __name__ == "__main__":
    unittest.main()
