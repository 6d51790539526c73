"""
Tests for the wizard controller: navigation gates, step saves, submission
and resume.
"""
import os
import tempfile
import unittest
from datetime import timedelta

from card_application.core.autosave import LocalAutosaveStore
from card_application.core.controller import WizardController, WizardPhase
from card_application.core.draft import new_draft, step_payload, utcnow
from card_application.core.errors import SessionExpiredError, SubmissionRejectedError, WizardError
from card_application.core.forms import ApplicationMode, ApplicationStatus, DraftVersion
from card_application.core.sync import SaveStatus
from card_application.schemas.schemas import SessionState
from tests.factories import (
    BANK_ACCOUNT,
    CARD_SELECTION,
    PRE_APPLICATION,
    SUPPLEMENTARY_CARD,
    TODAY,
    filled_draft,
)
from tests.fakes import OTP_CODE, FakeRemoteDraftService


def _clock():
    return TODAY


class _ControllerTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.store = LocalAutosaveStore(f"sqlite:///{os.path.join(tmp.name, 'drafts.db')}")
        self.addCleanup(self.store.dispose)
        self.remote = FakeRemoteDraftService()

    def controller(self, draft=None, **kwargs) -> WizardController:
        kwargs.setdefault("store", self.store)
        kwargs.setdefault("remote", self.remote)
        kwargs.setdefault("session_id", "S-1")
        controller = WizardController(draft or new_draft(), clock=_clock, **kwargs)
        self.addCleanup(controller.close)
        return controller


class TestOtpGate(_ControllerTestCase):

    async def test_valid_pre_application_waits_for_otp(self):
        """Valid step 0 data alone does not open step 1."""
        wizard = self.controller()
        self.assertTrue(wizard.save_step_data(0, PRE_APPLICATION).ok)

        self.assertFalse(await wizard.advance())
        self.assertEqual(wizard.current_step, 0)
        self.assertIn("otp", wizard.field_errors)

        wizard.mark_otp_verified()
        self.assertTrue(await wizard.advance())
        self.assertEqual(wizard.current_step, 1)
        self.assertEqual(self.remote.complete[0], True)
        self.assertEqual(self.remote.data[0]["otpVerified"], True)

    async def test_invalid_pre_application_reports_fields(self):
        wizard = self.controller()
        wizard.mark_otp_verified()
        wizard.save_step_data(0, {**PRE_APPLICATION, "email": "not-an-email"})
        self.assertFalse(await wizard.advance())
        self.assertEqual(set(wizard.field_errors), {"email"})


class TestOtpFlow(_ControllerTestCase):

    def otp_wizard(self) -> WizardController:
        wizard = self.controller()
        wizard.save_step_data(0, PRE_APPLICATION)
        return wizard

    async def test_request_then_verify_opens_step_one(self):
        wizard = self.otp_wizard()

        self.assertTrue(await wizard.request_otp())
        self.assertEqual(wizard.draft.status, ApplicationStatus.PENDING_OTP)
        self.assertEqual(self.remote.otp_requests, [("01712345678", False)])
        self.assertEqual(wizard.otp_attempt_state.remaining_attempts, 5)

        self.assertTrue(await wizard.verify_otp(OTP_CODE))
        self.assertTrue(wizard.draft.otp_verified)
        self.assertEqual(wizard.draft.status, ApplicationStatus.DRAFT)
        self.assertTrue(await wizard.advance())
        self.assertEqual(wizard.current_step, 1)

    async def test_wrong_code_reports_remaining_attempts(self):
        wizard = self.otp_wizard()
        await wizard.request_otp()

        self.assertFalse(await wizard.verify_otp("000000"))
        self.assertEqual(wizard.field_errors["otp"], "Invalid OTP. 4 attempts remaining.")
        self.assertEqual(wizard.otp_attempt_state.remaining_attempts, 4)
        self.assertEqual(wizard.draft.status, ApplicationStatus.PENDING_OTP)

    async def test_locked_challenge_is_not_sent_again(self):
        wizard = self.otp_wizard()
        await wizard.request_otp()
        for _ in range(5):
            self.assertFalse(await wizard.verify_otp("000000"))
        self.assertTrue(wizard.otp_attempt_state.is_locked)

        decision = wizard.otp_decision()
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.retry_after_seconds, 30)

        self.assertFalse(await wizard.verify_otp(OTP_CODE))
        self.assertEqual(len(self.remote.otp_verifications), 5)

    async def test_rate_limited_request_holds_further_requests(self):
        wizard = self.otp_wizard()
        self.remote.otp_rate_limited = True

        self.assertFalse(await wizard.request_otp())
        self.assertIn("otp", wizard.field_errors)
        self.assertFalse(await wizard.request_otp(resend=True))
        self.assertEqual(len(self.remote.otp_requests), 1)
        self.assertEqual(wizard.draft.status, ApplicationStatus.DRAFT)

    async def test_verify_before_request_is_refused_locally(self):
        wizard = self.otp_wizard()
        self.assertFalse(await wizard.verify_otp(OTP_CODE))
        self.assertEqual(self.remote.otp_verifications, [])

    async def test_malformed_code_is_not_sent(self):
        wizard = self.otp_wizard()
        await wizard.request_otp()
        self.assertFalse(await wizard.verify_otp("12ab"))
        self.assertEqual(self.remote.otp_verifications, [])

    async def test_invalid_mobile_number_blocks_request(self):
        wizard = self.controller()
        wizard.save_step_data(0, {**PRE_APPLICATION, "mobile_number": "12345"})
        self.assertFalse(await wizard.request_otp())
        self.assertIn("mobile_number", wizard.field_errors)
        self.assertEqual(self.remote.otp_requests, [])

    async def test_assisted_wizard_needs_no_otp(self):
        wizard = self.controller(new_draft(ApplicationMode.ASSISTED))
        self.assertTrue(await wizard.request_otp())
        self.assertEqual(self.remote.otp_requests, [])
        self.assertEqual(wizard.draft.status, ApplicationStatus.DRAFT)

    async def test_expired_session_during_request(self):
        wizard = self.otp_wizard()
        self.remote.expired = True
        self.assertFalse(await wizard.request_otp())
        self.assertIsInstance(wizard.error, SessionExpiredError)
        self.assertTrue(wizard.session_expired)


class TestNavigation(_ControllerTestCase):

    async def test_invalid_required_step_blocks_advance(self):
        wizard = self.controller(new_draft(ApplicationMode.ASSISTED))
        wizard.save_step_data(1, {**CARD_SELECTION, "expected_credit_limit": "1000"})
        self.assertFalse(await wizard.advance())
        self.assertEqual(wizard.current_step, 1)
        self.assertIn("expected_credit_limit", wizard.field_errors)
        await wizard.sync.flush()
        self.assertEqual(self.remote.saves[-1][2], False)

    async def test_optional_steps_never_block(self):
        wizard = self.controller(filled_draft())
        self.assertTrue(wizard.jump_to(5))
        wizard.save_step_data(5, [{"id": "acc-x", "bank_name": ""}])
        self.assertTrue(await wizard.advance())
        self.assertEqual(wizard.current_step, 6)
        self.assertTrue(await wizard.advance())
        self.assertEqual(wizard.current_step, 7)

    async def test_advance_stops_at_last_step(self):
        wizard = self.controller(filled_draft())
        wizard.jump_to(12)
        self.assertTrue(await wizard.advance())
        self.assertEqual(wizard.current_step, 12)

    async def test_jump_is_bounded_by_first_incomplete_required_step(self):
        draft = filled_draft()
        draft.update_personal_info({"father_name": ""})
        wizard = self.controller(draft)
        self.assertEqual(wizard.highest_reachable_step, 2)
        self.assertTrue(wizard.jump_to(2))
        self.assertFalse(wizard.jump_to(3))
        self.assertEqual(wizard.current_step, 2)

    async def test_breaking_an_earlier_step_pulls_the_wizard_back(self):
        wizard = self.controller(filled_draft())
        self.assertTrue(wizard.jump_to(7))

        result = wizard.save_step_data(2, {"fatherName": ""})

        self.assertFalse(result.ok)
        self.assertEqual(wizard.highest_reachable_step, 2)
        self.assertEqual(wizard.current_step, 2)
        self.assertIn("father_name", wizard.field_errors)

    async def test_editing_an_earlier_step_validly_keeps_position(self):
        wizard = self.controller(filled_draft())
        wizard.jump_to(7)
        self.assertTrue(wizard.save_step_data(1, {"cardTier": "PLATINUM"}).ok)
        self.assertEqual(wizard.current_step, 7)

    async def test_fresh_wizard_cannot_jump_ahead(self):
        wizard = self.controller()
        self.assertFalse(wizard.jump_to(3))
        self.assertFalse(wizard.jump_to(99))

    async def test_assisted_wizard_never_returns_to_pre_application(self):
        wizard = self.controller(new_draft(ApplicationMode.ASSISTED))
        self.assertFalse(wizard.jump_to(0))
        self.assertTrue(wizard.retreat())
        self.assertEqual(wizard.current_step, 1)

    async def test_retreat_saves_the_step_being_left(self):
        wizard = self.controller(filled_draft())
        wizard.jump_to(4)
        wizard.retreat()
        await wizard.sync.flush()
        self.assertEqual(wizard.current_step, 3)
        self.assertEqual([step for step, _, _ in self.remote.saves], [4])

    async def test_step_statuses_and_completion(self):
        wizard = self.controller(filled_draft())
        statuses = wizard.step_statuses()
        self.assertEqual(len(statuses), 13)
        self.assertTrue(all(status.is_reachable for status in statuses))
        self.assertEqual(wizard.completion_percentage(), 100)


class TestStepData(_ControllerTestCase):

    async def test_initial_data_is_a_copy(self):
        wizard = self.controller(filled_draft())
        data = wizard.initial_data(1)
        data.card_tier = "WORLD"
        self.assertEqual(wizard.draft.card_selection.card_tier, "GOLD")

    async def test_rows_are_synced_by_id(self):
        wizard = self.controller(filled_draft())
        wizard.save_step_data(5, [BANK_ACCOUNT, {**BANK_ACCOUNT, "id": "acc-2", "bank_name": "BRAC Bank"}])
        wizard.save_step_data(5, [{**BANK_ACCOUNT, "id": "acc-2", "branch": "Uttara"}])
        self.assertEqual([row.id for row in wizard.draft.bank_accounts], ["acc-2"])
        self.assertEqual(wizard.draft.bank_accounts[0].branch, "Uttara")

    async def test_supplementary_card_toggle(self):
        wizard = self.controller(filled_draft())
        self.assertTrue(wizard.save_step_data(8, SUPPLEMENTARY_CARD).ok)
        self.assertTrue(wizard.draft.has_supplementary_card)
        wizard.save_step_data(8, None)
        self.assertFalse(wizard.draft.has_supplementary_card)
        self.assertIsNone(wizard.draft.supplementary_card)

    async def test_edits_are_autosaved_locally(self):
        wizard = self.controller()
        wizard.save_step_data(0, PRE_APPLICATION)
        wizard.close()
        self.assertEqual(self.store.load(ApplicationMode.SELF).pre_application.full_name, "Rahim Uddin")

    async def test_unknown_step_raises(self):
        wizard = self.controller()
        with self.assertRaises(KeyError):
            wizard.save_step_data(13, {})


class TestSubmission(_ControllerTestCase):

    async def test_successful_submission_retires_the_draft(self):
        wizard = self.controller(filled_draft())
        self.assertTrue(await wizard.submit())
        self.assertEqual(wizard.phase, WizardPhase.SUBMITTED)
        self.assertEqual(wizard.draft.reference_number, "MTB-CC-2026-00042")
        self.assertEqual(wizard.draft.status, ApplicationStatus.SUBMITTED)
        self.assertEqual(self.remote.submissions, [("S-1", True, True)])
        self.assertIsNone(self.store.load(ApplicationMode.SELF))

        with self.assertRaises(WizardError):
            wizard.save_step_data(1, CARD_SELECTION)

    async def test_incomplete_application_is_not_sent(self):
        draft = filled_draft()
        draft.set_terms_accepted(False)
        wizard = self.controller(draft)
        self.assertFalse(await wizard.submit())
        self.assertEqual(wizard.error.step_number, 12)
        self.assertIn("terms_accepted", wizard.field_errors)
        self.assertEqual(self.remote.submissions, [])

    async def test_rejection_returns_to_offending_step(self):
        self.remote.submit_error = SubmissionRejectedError(
            "NID does not match", step_number=2, field_errors={"nid_number": "NID does not match"},
        )
        wizard = self.controller(filled_draft())
        wizard.jump_to(12)
        self.assertFalse(await wizard.submit())
        self.assertEqual(wizard.phase, WizardPhase.EDITING)
        self.assertEqual(wizard.current_step, 2)
        self.assertEqual(wizard.field_errors, {"nid_number": "NID does not match"})
        self.assertEqual(wizard.error.message, "NID does not match")
        wizard.close()
        self.assertIsNotNone(self.store.load(ApplicationMode.SELF))

    async def test_rejection_at_pre_application(self):
        self.remote.submit_error = SubmissionRejectedError("Mobile number has not been verified", step_number=0)
        wizard = self.controller(filled_draft())
        wizard.jump_to(12)
        await wizard.submit()
        self.assertEqual(wizard.current_step, 0)

    async def test_session_expiry_during_submit(self):
        self.remote.submit_error = SessionExpiredError(session_id="S-1")
        wizard = self.controller(filled_draft())
        self.assertFalse(await wizard.submit())
        self.assertTrue(wizard.session_expired)
        self.assertEqual(wizard.save_status, SaveStatus.ERROR)
        self.assertEqual(wizard.phase, WizardPhase.EDITING)

    async def test_pending_saves_are_flushed_before_submit(self):
        wizard = self.controller(filled_draft())
        wizard.save_step_data(9, {"reference_1": wizard.draft.references.reference_1.model_dump()})
        self.assertTrue(await wizard.submit())
        self.assertEqual([step for step, _, _ in self.remote.saves], [9])

    async def test_discard_clears_local_draft(self):
        wizard = self.controller()
        wizard.save_step_data(0, PRE_APPLICATION)
        wizard.discard()
        self.assertEqual(wizard.phase, WizardPhase.ABANDONED)
        self.assertIsNone(self.store.load(ApplicationMode.SELF))


class TestResume(_ControllerTestCase):

    async def test_resume_from_local_draft(self):
        draft = filled_draft()
        draft.set_current_step(6)
        self.store.save(draft)

        wizard = await WizardController.resume(ApplicationMode.SELF, self.store, clock=_clock)
        self.addCleanup(wizard.close)
        self.assertEqual(wizard.current_step, 6)
        self.assertEqual(wizard.draft.personal_info.father_name, "Karim Uddin")

    async def test_resume_clamps_to_reachable_step(self):
        draft = filled_draft()
        draft.update_professional_info({"designation": ""})
        draft.set_current_step(9)
        self.store.save(draft)

        wizard = await WizardController.resume(ApplicationMode.SELF, self.store, clock=_clock)
        self.addCleanup(wizard.close)
        self.assertEqual(wizard.current_step, 3)

    async def test_resume_prefers_newer_remote_steps(self):
        local = filled_draft(otp_verified=False)
        local.record_step_version(
            DraftVersion(step_number=1, step_name="card-selection", version=1, saved_at=utcnow())
        )
        local.set_current_step(1)
        self.store.save(local)

        newer = filled_draft()
        newer.update_card_selection({"card_tier": "PLATINUM"})
        self.remote.otp_verified = True
        self.remote.versions[1] = 2
        self.remote.data[1] = step_payload(newer, 1)
        self.remote.current_step = 4

        wizard = await WizardController.resume(
            ApplicationMode.SELF, self.store, remote=self.remote, session_id="S-1", clock=_clock,
        )
        self.addCleanup(wizard.close)
        self.assertEqual(wizard.draft.card_selection.card_tier, "PLATINUM")
        self.assertEqual(wizard.draft.step_version(1), 2)
        self.assertTrue(wizard.draft.otp_verified)
        self.assertEqual(wizard.current_step, 4)

    async def test_resume_after_session_expiry_keeps_local_data(self):
        draft = filled_draft()
        draft.set_current_step(5)
        self.store.save(draft)
        self.remote.expired = True

        wizard = await WizardController.resume(
            ApplicationMode.SELF, self.store, remote=self.remote, session_id="S-1", clock=_clock,
        )
        self.addCleanup(wizard.close)
        self.assertTrue(wizard.session_expired)
        self.assertEqual(wizard.current_step, 5)
        self.assertEqual(wizard.draft.auto_debit.mtb_account_number, "1301000123456")

    async def test_observe_session_warns_then_expires(self):
        wizard = self.controller()
        now = utcnow()
        session = SessionState(
            session_id="S-1", mode=ApplicationMode.SELF, created_at=now - timedelta(minutes=29),
            expires_at=now + timedelta(seconds=60), ttl_seconds=60, is_active=True,
        )
        self.assertTrue(wizard.observe_session(session, now=now))
        self.assertFalse(wizard.session_expired)

        self.assertFalse(wizard.observe_session(session, now=now + timedelta(seconds=61)))
        self.assertTrue(wizard.session_expired)


if __name__ == "__main__":
    unittest.main()
