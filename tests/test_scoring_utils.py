import unittest
from scoring.metrics import fallback_score
from scoring.utils import DEFAULT_THRESHOLDS, bucket_score, clamp_score, compute_total, default_thresholds_path, load_thresholds


class TestScoringUtils(unittest.TestCase):
    def test_bucket_boundaries_are_inclusive(self):
        buckets = DEFAULT_THRESHOLDS['code_volume']['buckets']
        self.assertEqual(bucket_score(0, buckets, 10), 0)
        self.assertEqual(bucket_score(1, buckets, 10), 2)
        self.assertEqual(bucket_score(500, buckets, 10), 2)
        self.assertEqual(bucket_score(501, buckets, 10), 4)
        self.assertEqual(bucket_score(10000, buckets, 10), 8)
        self.assertEqual(bucket_score(10001, buckets, 10), 10)

    def test_compute_total_ignores_other_keys(self):
        scores = {'code_volume': 2, 'complexity': 3, 'technical_depth': 4, 'scope': 1, 'review_contribution': 0, 'total': 49}
        self.assertEqual(compute_total(scores), 10)
        self.assertEqual(compute_total({'scope': 3}), 3)

    def test_clamp_score(self):
        self.assertEqual(clamp_score(7), (7, False))
        self.assertEqual(clamp_score(12), (10, True))
        self.assertEqual(clamp_score(-1), (0, True))
        self.assertEqual(clamp_score(6.6), (7, False))

    def test_load_thresholds_defaults(self):
        # the shipped YAML mirrors the built-in defaults
        self.assertTrue(default_thresholds_path().endswith('scoring.yaml'))
        self.assertEqual(load_thresholds(path=None), DEFAULT_THRESHOLDS)

    def test_missing_file_uses_defaults(self):
        self.assertEqual(load_thresholds(path='/nonexistent/scoring.yaml'), DEFAULT_THRESHOLDS)


def test_yaml_overrides_are_merged(tmp_path):
    path = tmp_path / 'scoring.yaml'
    path.write_text(
        "code_volume:\n"
        "  buckets: [[0, 0], [100, 5]]\n"
        "  above: 9\n"
        "scope:\n"
        "  above: 7\n"
    )
    thresholds = load_thresholds(str(path))
    assert thresholds['code_volume'] == {'buckets': [[0, 0], [100, 5]], 'above': 9}
    assert thresholds['scope']['above'] == 7
    assert thresholds['scope']['buckets'] == DEFAULT_THRESHOLDS['scope']['buckets']
    assert thresholds['complexity'] == DEFAULT_THRESHOLDS['complexity']


def test_invalid_buckets_are_ignored(tmp_path, caplog):
    path = tmp_path / 'scoring.yaml'
    path.write_text("code_volume:\n  buckets: [[500, 2], [0, 0]]\nscope: [1, 2]\n")
    with caplog.at_level('WARNING', logger='scoring.utils'):
        thresholds = load_thresholds(str(path))
    assert thresholds == DEFAULT_THRESHOLDS
    assert any('Ignoring' in r.message for r in caplog.records)


def test_out_of_scale_above_is_ignored(tmp_path, caplog):
    path = tmp_path / 'scoring.yaml'
    path.write_text("code_volume:\n  above: 50\ncomplexity:\n  repository_bonus: -2\n  repository_bonus_cap: 4\n")
    with caplog.at_level('WARNING', logger='scoring.utils'):
        thresholds = load_thresholds(str(path))
    assert thresholds['code_volume'] == DEFAULT_THRESHOLDS['code_volume']
    assert thresholds['complexity']['repository_bonus'] == 1
    assert thresholds['complexity']['repository_bonus_cap'] == 4
    assert any('outside 0-10' in r.message for r in caplog.records)
    assert fallback_score(50000, 1, 1, 0, thresholds).code_volume == 10


def test_malformed_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / 'scoring.yaml'
    path.write_text("code_volume: [unclosed\n")
    assert load_thresholds(str(path)) == DEFAULT_THRESHOLDS


if __name__ == '__main__':
    unittest.main()
