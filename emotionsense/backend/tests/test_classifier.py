import random
import unittest

from emotionsense.backend.app import classifier
from emotionsense.backend.app.risk_engine import EMOTIONS


class ClassifierTests(unittest.TestCase):
    def test_text_length_picks_label(self):
        rng = random.Random(1)
        for text in ["a", "ab", "abc", "abcd", "abcde", "I had a long and tiring day at work."]:
            result = classifier.simulate_classification(text, rng)
            self.assertEqual(result.label, EMOTIONS[len(text) % len(EMOTIONS)])
            self.assertGreater(result.confidence, 45.0)

    def test_probabilities_cover_all_emotions(self):
        result = classifier.simulate_classification("Today was fine.", random.Random(3))
        self.assertEqual([item["emotion"] for item in result.probabilities], EMOTIONS)
        self.assertAlmostEqual(sum(item["probability"] for item in result.probabilities), 100.0, delta=0.05)

    def test_same_seed_same_result(self):
        first = classifier.simulate_classification("same text", random.Random(9))
        second = classifier.simulate_classification("same text", random.Random(9))
        self.assertEqual(first, second)

    def test_demo_probabilities_favour_emotion(self):
        result = classifier.build_demo_probabilities("Fear", random.Random(5))
        self.assertEqual(result.label, "Fear")
        top = max(result.probabilities, key=lambda item: item["probability"])
        self.assertEqual(top["emotion"], "Fear")
        self.assertEqual(result.confidence, top["probability"])

    def test_demo_probabilities_reject_unknown_emotion(self):
        with self.assertRaises(ValueError):
            classifier.build_demo_probabilities("Bored")


if __name__ == "__main__":
    unittest.main()
