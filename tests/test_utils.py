import logging
import tempfile
import unittest
from pathlib import Path

import numpy as np

from snpdapc import simulate_structured_genotypes
from snpdapc.run_dapc import main
from snpdapc.utils.custom_exceptions import (
    ClusteringError,
    DegenerateGroupError,
    InsufficientSamplesError,
    SNPDAPCError,
)
from snpdapc.utils.logging import LoggerManager
from snpdapc.utils.misc import (
    derive_seed,
    pretty_breaks,
    relabel_by_first_appearance,
    resolve_n_jobs,
)


class TestMisc(unittest.TestCase):

    def test_derive_seed(self):
        self.assertEqual(derive_seed(999, 3, 1), derive_seed(999, 3, 1))
        self.assertNotEqual(derive_seed(999, 3, 1), derive_seed(999, 3, 2))
        self.assertNotEqual(derive_seed(999, 3, 1), derive_seed(998, 3, 1))
        self.assertLess(derive_seed(999, 0), 2**32)

    def test_pretty_breaks(self):
        np.testing.assert_array_equal(pretty_breaks(300), np.arange(0, 301, 50))
        np.testing.assert_array_equal(pretty_breaks(53), np.arange(0, 56, 5))
        np.testing.assert_array_equal(pretty_breaks(20), np.arange(0, 21, 2))

    def test_relabel_by_first_appearance(self):
        labels, order = relabel_by_first_appearance([7, 7, 2, 9, 2])
        np.testing.assert_array_equal(labels, [1, 1, 2, 3, 2])
        self.assertEqual(order, [7, 2, 9])

    def test_resolve_n_jobs(self):
        self.assertEqual(resolve_n_jobs(3), 3)
        self.assertGreaterEqual(resolve_n_jobs(-1), 1)
        with self.assertRaises(ValueError):
            resolve_n_jobs(0)
        with self.assertRaises(ValueError):
            resolve_n_jobs(-2)


class TestExceptions(unittest.TestCase):

    def test_hierarchy_and_attributes(self):
        err = ClusteringError([2, 3])
        self.assertIsInstance(err, SNPDAPCError)
        self.assertEqual(err.k_values, [2, 3])
        self.assertIn("2, 3", str(err))

        err = InsufficientSamplesError("pop1", 1)
        self.assertEqual((err.group, err.size), ("pop1", 1))

        err = DegenerateGroupError([1, 2], "custom")
        self.assertEqual(str(err), "custom")
        self.assertEqual(repr(err), "DegenerateGroupError('custom')")


class TestLoggerManager(unittest.TestCase):

    def test_handlers_attached_once(self):
        a = LoggerManager("snpdapc.tests.once", verbose=False).get_logger()
        b = LoggerManager("snpdapc.tests.once", verbose=False).get_logger()
        self.assertIs(a, b)
        self.assertEqual(len(a.handlers), 1)
        self.assertFalse(a.propagate)

    def test_debug_level(self):
        logger = LoggerManager("snpdapc.tests.debug", debug=True).get_logger()
        self.assertEqual(logger.level, logging.DEBUG)

    def test_set_level(self):
        logman = LoggerManager("snpdapc.tests.level", verbose=False)
        logman.set_level("INFO")
        self.assertEqual(logman.get_logger().level, logging.ERROR)
        with self.assertRaises(ValueError):
            logman.set_level("LOUD")

    def test_file_handler(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = Path(tmp) / "logs" / "run.log"
            logger = LoggerManager(
                "snpdapc.tests.file", log_file=log_file, to_file=True, to_console=False
            ).get_logger()
            logger.info("hello")
            for h in logger.handlers:
                h.flush()
            self.assertIn("hello", log_file.read_text())
            for h in list(logger.handlers):
                h.close()
                logger.removeHandler(h)


class TestSimulator(unittest.TestCase):

    def test_shapes_and_labels(self):
        gd, labels = simulate_structured_genotypes(
            n_pops=4, n_per_pop=5, n_markers=50, seed=1, verbose=False
        )
        self.assertEqual(gd.shape, (20, 50))
        np.testing.assert_array_equal(np.bincount(labels)[1:], [5, 5, 5, 5])
        self.assertEqual(gd.samples[0], "Pop1_1")
        self.assertEqual(gd.samples[-1], "Pop4_5")
        self.assertTrue(set(np.unique(gd.snp_data)) <= {0, 1, 2})

    def test_missing_rate(self):
        gd, _ = simulate_structured_genotypes(
            n_pops=2, n_per_pop=50, n_markers=200, missing_rate=0.1, seed=2, verbose=False
        )
        self.assertAlmostEqual(float(gd.missing_mask.mean()), 0.1, delta=0.02)

    def test_seeded(self):
        a, _ = simulate_structured_genotypes(seed=5, n_markers=20, verbose=False)
        b, _ = simulate_structured_genotypes(seed=5, n_markers=20, verbose=False)
        np.testing.assert_array_equal(a.snp_data, b.snp_data)

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            simulate_structured_genotypes(divergence=1.0)
        with self.assertRaises(ValueError):
            simulate_structured_genotypes(missing_rate=1.0)
        with self.assertRaises(ValueError):
            simulate_structured_genotypes(n_pops=0)


class TestCommandLine(unittest.TestCase):

    def test_simulated_run_writes_outputs(self):
        with tempfile.TemporaryDirectory() as tmp:
            code = main(
                [
                    "--simulate",
                    "--outdir",
                    tmp,
                    "--n-replicates",
                    "3",
                    "--quiet",
                ]
            )
            self.assertEqual(code, 0)
            self.assertTrue((Path(tmp) / "analysis" / "DAPC_results.csv").is_file())
            self.assertTrue((Path(tmp) / "analysis" / "DAPC_summary.json").is_file())

    def test_table_input_and_failure_exit_code(self):
        with tempfile.TemporaryDirectory() as tmp:
            f = Path(tmp) / "tiny.csv"
            f.write_text("sample,m1,m2\nA,0,0\nB,0,0\nC,0,0\n")
            # Every marker is monomorphic, so QC leaves nothing.
            code = main(["--input", str(f), "--outdir", tmp, "--quiet"])
            self.assertEqual(code, 1)
            self.assertFalse((Path(tmp) / "analysis").exists())

    def test_invalid_config_exit_code(self):
        self.assertEqual(main(["--simulate", "--min-maf", "2", "--quiet"]), 2)


if __name__ == "__main__":
    unittest.main()
