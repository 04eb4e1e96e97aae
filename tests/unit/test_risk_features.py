import unittest

from services.risk_features import due_before_issue, score_flags


class TestDueBeforeIssue(unittest.TestCase):
    def test_fires_only_when_due_is_earlier(self):
        self.assertIs(due_before_issue("15.01.2026", "14.01.2026"), True)
        self.assertIs(due_before_issue("15.01.2026", "15.01.2026"), False)
        self.assertIs(due_before_issue("15.01.2026", "14.02.2026"), False)

    def test_not_evaluated_when_a_date_is_absent(self):
        self.assertIsNone(due_before_issue(None, "14.01.2026"))
        self.assertIsNone(due_before_issue("15.01.2026", None))
        self.assertIsNone(due_before_issue("15.01.2026", "soon"))


class TestScoreFlags(unittest.TestCase):
    def test_points_by_severity(self):
        flags = [{"severity": "high"}, {"severity": "medium"}, {"severity": "low"}]
        self.assertEqual(score_flags(flags), 50.0)

    def test_capped_at_100(self):
        self.assertEqual(score_flags([{"severity": "high"}] * 5), 100.0)

    def test_no_flags(self):
        self.assertEqual(score_flags([]), 0.0)


if __name__ == "__main__":
    unittest.main()
