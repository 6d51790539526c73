"""
Tests for the step registry.
"""
import dataclasses
import unittest

from card_application.core.steps import (
    FIRST_STEP,
    LAST_STEP,
    TOTAL_STEPS,
    StepId,
    list_steps,
    required_steps,
    resolve_step,
    step_at,
    step_by_id,
)


class TestStepRegistry(unittest.TestCase):

    def test_thirteen_steps_numbered_in_order(self):
        steps = list_steps()
        self.assertEqual(TOTAL_STEPS, 13)
        self.assertEqual([s.number for s in steps], list(range(13)))
        self.assertEqual(FIRST_STEP, 0)
        self.assertEqual(LAST_STEP, 12)

    def test_optional_steps(self):
        optional = {s.number for s in list_steps() if s.is_optional}
        self.assertEqual(optional, {5, 6, 8})
        self.assertEqual(len(required_steps()), 10)

    def test_ids_are_unique(self):
        ids = [s.id for s in list_steps()]
        self.assertEqual(len(ids), len(set(ids)))

    def test_step_at_bounds(self):
        self.assertEqual(step_at(0).id, StepId.PRE_APPLICATION)
        self.assertEqual(step_at(12).id, StepId.MID)
        self.assertIsNone(step_at(13))
        self.assertIsNone(step_at(-1))

    def test_lookup_by_id_string(self):
        self.assertEqual(step_by_id("supplementary").number, 8)
        self.assertEqual(step_by_id(StepId.AUTO_DEBIT).number, 11)
        self.assertIsNone(step_by_id("unknown"))

    def test_resolve_accepts_number_id_and_definition(self):
        definition = step_at(4)
        self.assertIs(resolve_step(4), definition)
        self.assertIs(resolve_step("monthly-income"), definition)
        self.assertIs(resolve_step(definition), definition)

    def test_resolve_rejects_booleans(self):
        self.assertIsNone(resolve_step(True))

    def test_definitions_are_immutable(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            step_at(1).is_optional = True

    def test_name_is_wire_step_name(self):
        self.assertEqual(step_at(10).name, "documents")


if __name__ == "__main__":
    unittest.main()
