import unittest

import numpy as np

from snpdapc import CrossValidator, cross_validate, simulate_structured_genotypes
from snpdapc.analysis.cross_validation import default_pc_candidates, stratified_split
from snpdapc.utils.custom_exceptions import (
    InsufficientSamplesError,
    InvalidThresholdError,
)


class TestCrossValidator(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.gd, cls.truth = simulate_structured_genotypes(
            n_pops=3, n_per_pop=20, n_markers=300, divergence=0.2, seed=3, verbose=False
        )
        cls.res = cross_validate(
            cls.gd, cls.truth, n_replicates=10, seed=999, n_pca_max=300
        )

    def test_success_rates_in_unit_interval(self):
        msa = self.res.mean_success
        self.assertTrue(np.all((msa >= 0.0) & (msa <= 1.0)))
        succ = self.res.replicates["success"].dropna()
        self.assertTrue(((succ >= 0.0) & (succ <= 1.0)).all())

    def test_mse_and_rmse(self):
        reps = self.res.replicates
        for i, n_pca in enumerate(self.res.n_pca_values):
            s = reps.loc[reps["n_pca"] == n_pca, "success"].to_numpy()
            self.assertAlmostEqual(self.res.mse[i], np.mean((1.0 - s) ** 2))
            self.assertAlmostEqual(self.res.rmse[i], np.sqrt(self.res.mse[i]))
            self.assertAlmostEqual(self.res.mean_success[i], np.mean(s))

    def test_optimum_is_global_min_mse(self):
        best = self.res.best_n_pca
        self.assertIn(best, self.res.n_pca_values)
        idx = int(np.flatnonzero(self.res.n_pca_values == best)[0])
        self.assertEqual(self.res.mse[idx], np.nanmin(self.res.mse))
        # Ties go to the fewest PCs.
        self.assertEqual(idx, int(np.flatnonzero(self.res.mse == np.nanmin(self.res.mse))[0]))

    def test_well_separated_groups_are_recovered(self):
        self.assertGreaterEqual(self.res.msa_at_optimum, 0.9)

    def test_default_candidates(self):
        # 60 individuals -> 54 in training; PCA rank 59 -> max 53 PCs.
        np.testing.assert_array_equal(
            self.res.n_pca_values, [5, 10, 15, 20, 25, 30, 35, 40, 45, 50]
        )
        np.testing.assert_array_equal(default_pc_candidates(300, 500), [50, 100, 150, 200, 250, 300])
        np.testing.assert_array_equal(default_pc_candidates(2, 10), [1, 2])

    def test_replicate_table(self):
        reps = self.res.replicates
        self.assertEqual(len(reps), 10 * len(self.res.n_pca_values))
        self.assertEqual(set(reps["replicate"]), set(range(10)))
        self.assertEqual(list(self.res.table().columns), ["n_pca", "mean_successful_assignment", "mse", "rmse"])

    def test_reproducible(self):
        again = cross_validate(self.gd, self.truth, n_replicates=10, seed=999)
        np.testing.assert_array_equal(again.mse, self.res.mse)
        self.assertEqual(again.best_n_pca, self.res.best_n_pca)

    def test_stable_under_more_replicates(self):
        more = cross_validate(self.gd, self.truth, n_replicates=30, seed=999)
        cands = list(self.res.n_pca_values)
        step = abs(cands.index(more.best_n_pca) - cands.index(self.res.best_n_pca))
        self.assertLessEqual(step, 1)

    def test_explicit_candidates_and_overall_result(self):
        res = cross_validate(
            self.gd, self.truth, pc_candidates=[2, 4, 8], n_replicates=5, result="overall"
        )
        np.testing.assert_array_equal(res.n_pca_values, [2, 4, 8])
        self.assertEqual(res.result, "overall")
        self.assertEqual(res.n_da, 2)

    def test_candidates_above_training_rank_are_dropped(self):
        # 54 training individuals support at most 53 PCs.
        with self.assertLogs("snpdapc.analysis.cross_validation", level="WARNING") as cm:
            res = cross_validate(
                self.gd, self.truth, pc_candidates=[5, 50, 53, 100, 200], n_replicates=3
            )

        np.testing.assert_array_equal(res.n_pca_values, [5, 50, 53])
        self.assertEqual(set(res.replicates["n_pca"]), {5, 50, 53})
        self.assertTrue(any("Dropping PC counts [100, 200]" in msg for msg in cm.output))

    def test_no_usable_candidates_raises(self):
        with self.assertRaises(ValueError):
            cross_validate(self.gd, self.truth, pc_candidates=[100, 200], n_replicates=2)

    def test_parallel_matches_serial(self):
        serial = cross_validate(self.gd, self.truth, pc_candidates=[3, 6], n_replicates=4, n_jobs=1)
        parallel = cross_validate(self.gd, self.truth, pc_candidates=[3, 6], n_replicates=4, n_jobs=2)
        np.testing.assert_array_equal(serial.mse, parallel.mse)
        np.testing.assert_array_equal(
            serial.replicates["success"].to_numpy(), parallel.replicates["success"].to_numpy()
        )

    def test_group_too_small_raises(self):
        labels = self.truth.copy()
        labels[0] = 99
        with self.assertRaises(InsufficientSamplesError) as cm:
            cross_validate(self.gd, labels, n_replicates=2)
        self.assertEqual(cm.exception.size, 1)

    def test_invalid_arguments(self):
        with self.assertRaises(InvalidThresholdError):
            CrossValidator(training_fraction=1.0, verbose=False)
        with self.assertRaises(ValueError):
            CrossValidator(n_replicates=0, verbose=False)
        with self.assertRaises(ValueError):
            CrossValidator(result="median", verbose=False)


class TestStratifiedSplit(unittest.TestCase):

    def test_every_group_in_both_sets(self):
        labels = np.array([1] * 2 + [2] * 5 + [3] * 20)
        rng = np.random.default_rng(0)
        train, test = stratified_split(labels, 0.9, rng)

        self.assertEqual(len(np.intersect1d(train, test)), 0)
        self.assertEqual(len(train) + len(test), len(labels))
        for g in (1, 2, 3):
            self.assertGreater(np.sum(labels[train] == g), 0)
            self.assertGreater(np.sum(labels[test] == g), 0)

        # round(0.9 * 20) = 18 training individuals for group 3.
        self.assertEqual(np.sum(labels[train] == 3), 18)

    def test_split_depends_only_on_seed(self):
        labels = np.repeat([1, 2], 10)
        a = stratified_split(labels, 0.8, np.random.default_rng(5))
        b = stratified_split(labels, 0.8, np.random.default_rng(5))
        np.testing.assert_array_equal(a[0], b[0])


if __name__ == "__main__":
    unittest.main()
