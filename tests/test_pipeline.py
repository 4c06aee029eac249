import unittest

import numpy as np
from sklearn.metrics import adjusted_rand_score

from snpdapc import DAPCConfig, DAPCPipeline, GenotypeData, run_dapc, simulate_structured_genotypes
from snpdapc.utils.custom_exceptions import InsufficientDataError, InvalidThresholdError


class TestDAPCPipeline(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.gd, cls.truth = simulate_structured_genotypes(
            n_pops=3, n_per_pop=20, n_markers=500, divergence=0.2, seed=999, verbose=False
        )
        cls.config = DAPCConfig(seed=999, verbose=False)
        cls.result = run_dapc(cls.gd, cls.config)

    def test_selects_three_clusters(self):
        self.assertEqual(self.result.clusters.k, 3)
        self.assertEqual(adjusted_rand_score(self.truth, self.result.clusters.labels), 1.0)

    def test_default_derived_parameters(self):
        # N = 60: max K = min(10, floor(sqrt(60))) = 7 and floor(60 / 3) = 20 PCs.
        self.assertEqual(self.result.clusters.k_values.max(), 7)
        self.assertEqual(self.result.clusters.n_pca, 20)
        self.assertEqual(self.result.model.n_da, 2)

    def test_optimal_pcs_within_search_range(self):
        xval = self.result.xval
        self.assertIn(xval.best_n_pca, xval.n_pca_values)
        self.assertEqual(self.result.model.n_pca, xval.best_n_pca)
        self.assertGreaterEqual(xval.msa_at_optimum, 0.9)

    def test_results_table(self):
        table = self.result.results_table()
        self.assertEqual(len(table), 60)
        self.assertEqual(
            list(table.columns),
            ["Sample", "Assigned_Cluster", "Posterior_1", "Posterior_2", "Posterior_3"],
        )
        post = table[["Posterior_1", "Posterior_2", "Posterior_3"]].to_numpy()
        self.assertTrue(np.all((post >= 0) & (post <= 1)))
        np.testing.assert_allclose(post.sum(axis=1), 1.0, atol=1e-12)
        self.assertEqual(table["Sample"].tolist(), self.result.genotype_data.samples)

    def test_summary(self):
        s = self.result.summary()
        self.assertEqual(s["n_individuals"], 60)
        self.assertEqual(s["n_markers"], self.result.genotype_data.n_markers)
        self.assertEqual(s["k_selected"], 3)
        self.assertEqual(s["n_da"], 2)
        self.assertEqual(s["seed"], 999)
        self.assertGreaterEqual(s["mean_successful_assignment"], 0.9)

    def test_diagnostic_tables(self):
        bic = self.result.bic_table()
        self.assertEqual(bic["K"].tolist(), list(range(1, 8)))
        self.assertIn("BIC", bic.columns)

        xval = self.result.xval_table()
        self.assertEqual(len(xval), len(self.result.xval.n_pca_values))

    def test_qc_removed_low_maf_markers(self):
        self.assertLessEqual(self.result.genotype_data.n_markers, 500)
        self.assertTrue(np.all(self.result.genotype_data.minor_allele_frequencies() > 0.05))
        self.assertEqual(len(self.result.kept_markers), self.result.genotype_data.n_markers)
        self.assertEqual(self.result.qc_report["Step"].tolist(), ["filter_missing_sample", "filter_missing", "filter_maf"])

    def test_idempotent(self):
        again = run_dapc(self.gd, self.config)
        np.testing.assert_array_equal(again.clusters.labels, self.result.clusters.labels)
        np.testing.assert_array_equal(again.clusters.stats, self.result.clusters.stats)
        np.testing.assert_array_equal(again.model.coordinates, self.result.model.coordinates)
        np.testing.assert_array_equal(again.model.posterior, self.result.model.posterior)
        self.assertEqual(again.xval.best_n_pca, self.result.xval.best_n_pca)

    def test_stage_failure_is_logged_and_reraised(self):
        gd = GenotypeData([[0, 1, 2], [-9, -9, -9], [1, 1, 0]], verbose=False)
        pipe = DAPCPipeline(DAPCConfig(min_maf=0.5, verbose=False))

        with self.assertLogs("snpdapc.analysis.pipeline", level="ERROR") as cm:
            with self.assertRaises(InsufficientDataError):
                pipe.run(gd)

        self.assertTrue(any("Stage 'qc' failed" in msg for msg in cm.output))

    def test_invalid_config(self):
        with self.assertRaises(InvalidThresholdError):
            DAPCConfig(max_locus_missing=1.2)
        with self.assertRaises(InvalidThresholdError):
            DAPCConfig(training_fraction=0.0)
        with self.assertRaises(ValueError):
            DAPCConfig(selection_rule="elbow")
        with self.assertRaises(ValueError):
            DAPCConfig(n_jobs=0)

    def test_config_to_dict(self):
        d = self.config.to_dict()
        self.assertEqual(d["seed"], 999)
        self.assertEqual(d["n_replicates"], 30)
        self.assertIsNone(d["max_k"])


if __name__ == "__main__":
    unittest.main()
