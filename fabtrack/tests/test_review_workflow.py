import sys
import unittest
from pathlib import Path


APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from schemas.records import BorrowedItemRecord, BorrowRequestRecord
from services.backend_client import BackendError, BackendUnauthorized
from services.review_workflow import (
    DraftValidationError,
    ItemsNotLoaded,
    ReviewState,
    SubmissionInProgress,
)


def _request(request_id, status="Pending"):
    return BorrowRequestRecord.model_validate({"id": request_id, "status": status, "userName": "Ama"})


def _item(item_id, name="Oscilloscope"):
    return BorrowedItemRecord.model_validate(
        {"id": item_id, "equipmentID": 100 + item_id, "equipmentName": name, "quantity": 1, "description": "lab"}
    )


class RecordingItemLoader:
    def __init__(self, items_by_request):
        self.items_by_request = items_by_request
        self.calls = []

    async def __call__(self, request_id):
        self.calls.append(request_id)
        return self.items_by_request[request_id]


class ReviewWorkflowTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.state = ReviewState()
        self.loader = RecordingItemLoader({42: [_item(1), _item(2)], 43: [_item(3)]})

        async def pending():
            return [_request(42), _request(43)]

        await self.state.refresh_pending(pending)

    async def test_first_expand_fetches_items_once(self):
        await self.state.expand(42, self.loader)
        self.state.collapse(42)
        await self.state.expand(42, self.loader)
        self.state.collapse(42)

        self.assertEqual(self.loader.calls, [42])
        self.assertFalse(self.state.is_expanded(42))
        self.assertEqual([item.id for item in self.state.item_cache[42]], [1, 2])

    async def test_failed_expand_is_retried(self):
        attempts = []

        async def flaky(request_id):
            attempts.append(request_id)
            if len(attempts) == 1:
                raise BackendError("Server busy", 503)
            return [_item(1)]

        with self.assertRaises(BackendError):
            await self.state.expand(42, flaky)
        self.assertNotIn(42, self.state.item_cache)

        await self.state.expand(42, flaky)
        self.assertEqual(attempts, [42, 42])
        self.assertTrue(self.state.is_expanded(42))

    async def test_toggle_only_touches_one_item(self):
        await self.state.expand(42, self.loader)
        await self.state.expand(43, self.loader)

        self.assertFalse(self.state.toggle_item(42, 1))

        self.assertFalse(self.state.drafts[42][1].approve)
        self.assertTrue(self.state.drafts[42][2].approve)
        self.assertTrue(self.state.drafts[43][3].approve)

    async def test_bulk_actions_apply_to_every_item_and_last_one_wins(self):
        await self.state.expand(42, self.loader)
        await self.state.expand(43, self.loader)

        self.state.set_all(42, False)
        self.assertEqual([d.approve for d in self.state.drafts[42].values()], [False, False])

        self.state.set_all(42, True)
        self.assertEqual([d.approve for d in self.state.drafts[42].values()], [True, True])

        self.state.set_all(42, False)
        self.assertEqual([d.approve for d in self.state.drafts[42].values()], [False, False])
        self.assertTrue(self.state.drafts[43][3].approve)

    async def test_toggle_before_items_load_is_refused(self):
        with self.assertRaises(ItemsNotLoaded):
            self.state.toggle_item(42, 1)

    async def test_validation_requires_approved_item_and_return_date(self):
        await self.state.expand(42, self.loader)

        self.assertEqual(self.state.validate(42, "2025-01-01T10:00"), [])
        self.assertEqual(self.state.validate(42, ""), ["Select a return date."])

        self.state.set_all(42, False)
        self.assertEqual(
            self.state.validate(42, "2025-01-01T10:00"),
            ["Select at least one item to approve."],
        )

    async def test_invalid_submission_never_calls_backend(self):
        await self.state.expand(42, self.loader)
        self.state.set_all(42, False)
        sent = []

        async def send(request_id, payload):
            sent.append(request_id)

        async def approved():
            return []

        with self.assertRaises(DraftValidationError) as ctx:
            await self.state.submit_approval(42, None, send, approved)
        self.assertEqual(len(ctx.exception.messages), 2)
        self.assertEqual(sent, [])

    async def test_submit_sends_body_and_drops_request_from_pending(self):
        items = {42: [_item(1)]}
        await self.state.expand(42, RecordingItemLoader(items))
        self.state.set_serial_number(42, 1, " SN1 ")
        sent = []
        reloads = []

        async def send(request_id, payload):
            sent.append((request_id, payload.model_dump()))
            return {"message": "ok"}

        async def approved():
            reloads.append(True)
            return [_request(42, "Approved")]

        await self.state.submit_approval(42, "2025-01-01T10:00", send, approved)

        self.assertEqual(
            sent,
            [
                (
                    42,
                    {
                        "returnDate": "2025-01-01T10:00",
                        "items": [{"borrowedItemID": 1, "allow": True, "serialNumber": "SN1", "description": "lab"}],
                    },
                )
            ],
        )
        self.assertEqual([record.id for record in self.state.pending.rows], [43])
        self.assertNotIn(42, self.state.drafts)
        self.assertEqual(reloads, [True])
        self.assertEqual(self.state.approved.rows[0].status, "Approved")

    async def test_failed_submit_keeps_draft_and_clears_submitting_flag(self):
        await self.state.expand(42, self.loader)

        async def send(request_id, payload):
            raise BackendError("Equipment no longer available", 409)

        async def approved():
            return []

        with self.assertRaises(BackendError):
            await self.state.submit_approval(42, "2025-01-01T10:00", send, approved)
        self.assertIn(42, self.state.drafts)
        self.assertNotIn(42, self.state.submitting)
        self.assertIn(42, [record.id for record in self.state.pending.rows])

    async def test_second_submit_while_in_flight_is_rejected(self):
        await self.state.expand(42, self.loader)
        self.state.submitting.add(42)

        async def send(request_id, payload):
            raise AssertionError("should not be sent")

        async def approved():
            return []

        with self.assertRaises(SubmissionInProgress):
            await self.state.submit_approval(42, "2025-01-01T10:00", send, approved)

    async def test_failed_refresh_keeps_last_known_list(self):
        async def failing():
            raise BackendError("Gateway timeout", 504)

        ok = await self.state.refresh_pending(failing)

        self.assertFalse(ok)
        self.assertEqual([record.id for record in self.state.pending.rows], [42, 43])
        self.assertTrue(self.state.pending.stale)
        self.assertEqual(self.state.pending.error, "Gateway timeout")

    async def test_first_failed_load_is_empty_with_error(self):
        async def failing():
            raise BackendError("", 500)

        ok = await self.state.refresh_approved(failing)

        self.assertFalse(ok)
        self.assertEqual(self.state.approved.rows, [])
        self.assertFalse(self.state.approved.stale)
        self.assertEqual(self.state.approved.error, "Failed to load approved requests.")

    async def test_unauthorized_refresh_propagates(self):
        async def unauthorized():
            raise BackendUnauthorized("Unauthorized", 401)

        with self.assertRaises(BackendUnauthorized):
            await self.state.refresh_pending(unauthorized)

    async def test_mark_returned_refetches_approved_list(self):
        async def first():
            return [_request(7, "Approved")]

        await self.state.refresh_approved(first)
        sent = []

        async def send(request_id):
            sent.append(request_id)

        async def reload():
            return [_request(7, "returned")]

        await self.state.mark_returned(7, send, reload)

        self.assertEqual(sent, [7])
        self.assertEqual(self.state.approved.rows[0].status, "Returned")
        self.assertFalse(self.state.approved.stale)

    async def test_mark_returned_patches_locally_when_refetch_fails(self):
        async def first():
            return [_request(7, "Approved"), _request(8, "Approved")]

        await self.state.refresh_approved(first)

        async def send(request_id):
            return None

        async def reload():
            raise BackendError("Server unavailable", 503)

        await self.state.mark_returned(7, send, reload)

        self.assertEqual([r.status for r in self.state.approved.rows], ["Returned", "Approved"])
        self.assertTrue(self.state.approved.stale)

    async def test_pending_refresh_forgets_requests_that_left_the_queue(self):
        await self.state.expand(42, self.loader)

        async def pending():
            return [_request(43)]

        await self.state.refresh_pending(pending)

        self.assertNotIn(42, self.state.item_cache)
        self.assertNotIn(42, self.state.drafts)


if __name__ == "__main__":
    unittest.main()
