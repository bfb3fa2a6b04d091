"""
Unit tests for style_checker.py.
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from style_checker import (
    DOCUMENTARY_RULESET,
    WAR_ROOM_RULESET,
    StyleRuleset,
    check_style_compliance,
)

# Six of the ten War Room mandatory terms, no prohibited words, only contractions
SIX_TERM_TEXT = (
    "The meta shifted when the debuff hit. The kill ratio showed the disparity. "
    "Then came the collision, and Rome's spawn point was gone."
)


class TestCheckStyleCompliance(unittest.TestCase):

    def test_prohibited_term_is_case_insensitive(self):
        violations = check_style_compliance("An EPIC battle unfolds.", DOCUMENTARY_RULESET)
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].kind, "prohibited_term")
        self.assertEqual(violations[0].term, "epic")
        self.assertIn('"epic"', str(violations[0]))

    def test_enough_mandatory_terms_no_low_usage(self):
        violations = check_style_compliance(SIX_TERM_TEXT, WAR_ROOM_RULESET)
        self.assertEqual(violations, [])

    def test_low_mandatory_usage_is_single_aggregate(self):
        violations = check_style_compliance("Only the meta mattered.", WAR_ROOM_RULESET)
        low = [v for v in violations if v.kind == "low_mandatory_usage"]
        self.assertEqual(len(low), 1)
        self.assertEqual(str(low[0]), "Low mandatory terminology usage: 1/10 terms found (recommend 5+)")

    def test_order_prohibited_then_low_usage_then_expansions(self):
        text = "It is a heroic legend. They do not retreat."
        violations = check_style_compliance(text, WAR_ROOM_RULESET)
        self.assertEqual(
            [(v.kind, v.term) for v in violations],
            [
                ("prohibited_term", "heroic"),
                ("prohibited_term", "legend"),
                ("low_mandatory_usage", None),
                ("discouraged_expansion", "it is"),
                ("discouraged_expansion", "do not"),
            ],
        )

    def test_none_text_does_not_raise(self):
        ruleset = StyleRuleset(prohibited_terms=("epic",), mandatory_terms=("flank",), minimum_mandatory_hits=1)
        violations = check_style_compliance(None, ruleset)
        self.assertEqual([v.kind for v in violations], ["low_mandatory_usage"])

    def test_empty_ruleset(self):
        self.assertEqual(check_style_compliance("Anything at all, it is fine.", StyleRuleset()), [])

    def test_input_not_mutated(self):
        text = "An EPIC tale."
        check_style_compliance(text, DOCUMENTARY_RULESET)
        self.assertEqual(text, "An EPIC tale.")


if __name__ == "__main__":
    unittest.main()
