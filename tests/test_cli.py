import unittest
from unittest import mock

from aggregator import cli


class CliTests(unittest.TestCase):
    def test_reclassify_unknown_source_exits_2(self):
        with mock.patch("aggregator.pipeline.reclassify.batch_reclassify") as batch:
            self.assertEqual(cli.main(["reclassify", "--source", "monster"]), 2)
        batch.assert_not_called()

    def test_classify_prints_verdict(self):
        with mock.patch("aggregator.cli._print") as out:
            code = cli.main(["classify", "--title", "Engineer", "--description", "H1B sponsorship available"])
        self.assertEqual(code, 0)
        self.assertTrue(out.call_args[0][0]["h1b"])


if __name__ == "__main__":
    unittest.main()
