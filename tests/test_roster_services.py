from __future__ import annotations

import socket
import threading
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leave_portal.models import Base, LeaveRequest, LeaveSource, LeaveStatus, Store, User, UserRole
from leave_portal.services.availability_service import load_bound_designer_ids, load_demand_overrides
from leave_portal.services.binding_service import (
    bound_assistant_ids,
    create_binding,
    deactivate_binding,
    list_bindings,
)
from leave_portal.services.notification_service import (
    LineClient,
    notify_leave_status,
    send_monthly_summary,
    send_no_leave_reminders,
    send_test_message,
)
from leave_portal.services.rookie_booking_service import (
    clear_demand_override,
    create_booking,
    delete_booking,
    list_bookings,
    set_demand_override,
)
from leave_portal.services.user_service import UserNotFound, bind_line_user, list_staff, update_user_params


class _RecordingClient:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, dict]] = []

    def post(self, path: str, payload: dict) -> None:
        self.calls.append((path, payload))
        if self.fail:
            raise RuntimeError('LINE API network error: timed out')


def _serve_one_hang_up(server: socket.socket) -> None:
    try:
        conn, _ = server.accept()
    except OSError:
        return
    with conn:
        conn.settimeout(5)
        try:
            conn.recv(65536)
        except OSError:
            pass


class RosterServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine('sqlite:///:memory:', connect_args={'check_same_thread': False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        self.db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()

        self.store = Store(name='Main', timezone='UTC')
        self.db.add(self.store)
        self.db.flush()
        self.designer = User(store_id=self.store.id, role=UserRole.DESIGNER, display_name='ray')
        self.assistant = User(
            store_id=self.store.id, role=UserRole.ASSISTANT, display_name='sung', line_user_id='U-sung'
        )
        self.rookie = User(store_id=self.store.id, role=UserRole.ROOKIE, display_name='rj')
        self.db.add_all([self.designer, self.assistant, self.rookie])
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_binding_lifecycle(self) -> None:
        binding = create_binding(
            self.db, store_id=self.store.id, assistant_id=self.assistant.id, designer_id=self.designer.id
        )
        self.db.commit()

        [listed] = list_bindings(self.db, store_id=self.store.id)
        self.assertEqual(listed['assistant']['display_name'], 'sung')
        self.assertEqual(listed['designer']['id'], self.designer.id)
        self.assertEqual(bound_assistant_ids(self.db, store_id=self.store.id, designer_id=self.designer.id), [self.assistant.id])
        self.assertEqual(load_bound_designer_ids(self.db, self.store.id, self.assistant.id), [self.designer.id])

        deactivate_binding(self.db, store_id=self.store.id, binding_id=binding.id)
        self.db.commit()
        self.assertEqual(list_bindings(self.db, store_id=self.store.id), [])
        self.assertEqual(load_bound_designer_ids(self.db, self.store.id, self.assistant.id), [])

    def test_binding_validates_roles(self) -> None:
        with self.assertRaisesRegex(ValueError, 'INVALID_ASSISTANT'):
            create_binding(self.db, store_id=self.store.id, assistant_id=self.rookie.id, designer_id=self.designer.id)
        with self.assertRaisesRegex(ValueError, 'INVALID_DESIGNER'):
            create_binding(
                self.db, store_id=self.store.id, assistant_id=self.assistant.id, designer_id=self.assistant.id
            )
        with self.assertRaisesRegex(ValueError, 'Binding not found'):
            deactivate_binding(self.db, store_id=self.store.id, binding_id=999)

    def test_rookie_bookings_are_scoped_and_validated(self) -> None:
        booking = create_booking(
            self.db,
            store_id=self.store.id,
            rookie_id=self.rookie.id,
            booking_date='2026-03-12',
            start_min=600,
            end_min=660,
        )
        create_booking(
            self.db,
            store_id=self.store.id,
            rookie_id=self.rookie.id,
            booking_date='2026-04-01',
            start_min=600,
            end_min=660,
        )
        self.db.commit()

        listed = list_bookings(self.db, store_id=self.store.id, rookie_id=self.rookie.id, month='2026-03')
        self.assertEqual([b.id for b in listed], [booking.id])

        for start_min, end_min in ((600, 600), (700, 600), (-1, 60), (60, 1441)):
            with self.assertRaisesRegex(ValueError, 'INVALID_RANGE'):
                create_booking(
                    self.db,
                    store_id=self.store.id,
                    rookie_id=self.rookie.id,
                    booking_date='2026-03-12',
                    start_min=start_min,
                    end_min=end_min,
                )
        with self.assertRaisesRegex(ValueError, 'INVALID_DATE'):
            create_booking(
                self.db, store_id=self.store.id, rookie_id=self.rookie.id, booking_date='03/12', start_min=0, end_min=1
            )

        self.assertEqual(
            delete_booking(self.db, store_id=self.store.id, rookie_id=self.assistant.id, booking_id=booking.id), 0
        )
        self.assertEqual(
            delete_booking(self.db, store_id=self.store.id, rookie_id=self.rookie.id, booking_id=booking.id), 1
        )

    def test_demand_override_upsert_and_clear(self) -> None:
        set_demand_override(
            self.db, store_id=self.store.id, designer_id=self.designer.id, override_date='2026-03-12', demand=0.5
        )
        set_demand_override(
            self.db, store_id=self.store.id, designer_id=self.designer.id, override_date='2026-03-12', demand=1.5
        )
        self.db.commit()
        self.assertEqual(load_demand_overrides(self.db, self.store.id, '2026-03'), {(self.designer.id, '2026-03-12'): 1.5})

        with self.assertRaisesRegex(ValueError, 'INVALID_DESIGNER'):
            set_demand_override(
                self.db, store_id=self.store.id, designer_id=self.rookie.id, override_date='2026-03-12', demand=1.0
            )

        removed = clear_demand_override(
            self.db, store_id=self.store.id, designer_id=self.designer.id, override_date='2026-03-12'
        )
        self.assertEqual(removed, 1)
        self.assertEqual(load_demand_overrides(self.db, self.store.id, '2026-03'), {})

    def test_notifications_are_best_effort(self) -> None:
        leave = LeaveRequest(
            store_id=self.store.id,
            user_id=self.assistant.id,
            date='2026-03-12',
            status=LeaveStatus.APPROVED,
            created_by_user_id=self.assistant.id,
        )
        silent = LeaveRequest(
            store_id=self.store.id,
            user_id=self.designer.id,
            date='2026-03-12',
            status=LeaveStatus.APPROVED,
            created_by_user_id=self.designer.id,
        )
        self.db.add_all([leave, silent])
        self.db.commit()

        client = _RecordingClient()
        sent = notify_leave_status(self.db, leave_request_ids=[leave.id, silent.id], client=client)
        self.assertEqual(sent, 1)
        [(path, payload)] = client.calls
        self.assertEqual(path, '/v2/bot/message/push')
        self.assertEqual(payload['to'], 'U-sung')
        self.assertIn('2026-03-12 was approved', payload['messages'][0]['text'])

        failing = _RecordingClient(fail=True)
        with self.assertLogs('leave_portal.services.notification_service', level='ERROR'):
            self.assertEqual(notify_leave_status(self.db, leave_request_ids=[leave.id], client=failing), 0)

    def test_notifications_disabled_without_token(self) -> None:
        self.assertEqual(notify_leave_status(self.db, leave_request_ids=[1]), 0)


    def test_hang_up_from_line_api_is_logged_not_raised(self) -> None:
        leave = LeaveRequest(
            store_id=self.store.id,
            user_id=self.assistant.id,
            date='2026-03-12',
            status=LeaveStatus.CANCELED,
            created_by_user_id=self.assistant.id,
        )
        self.db.add(leave)
        self.db.commit()

        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(('127.0.0.1', 0))
        server.listen(1)
        server.settimeout(5)
        self.addCleanup(server.close)
        thread = threading.Thread(target=_serve_one_hang_up, args=(server,), daemon=True)
        thread.start()

        client = LineClient(
            base_url=f'http://127.0.0.1:{server.getsockname()[1]}',
            headers={'Content-Type': 'application/json'},
            timeout_seconds=5,
        )
        with self.assertLogs('leave_portal.services.notification_service', level='ERROR') as logs:
            self.assertEqual(notify_leave_status(self.db, leave_request_ids=[leave.id], client=client), 0)
        thread.join(timeout=5)
        self.assertIn('LINE push to U-sung failed', logs.output[0])

    def test_client_errors_outside_runtime_error_are_contained(self) -> None:
        class _ResetClient:
            def post(self, path: str, payload: dict) -> None:
                raise ConnectionResetError('reset by peer')

        with self.assertLogs('leave_portal.services.notification_service', level='ERROR'):
            delivered = send_test_message(
                self.db, store_id=self.store.id, user_id=self.assistant.id, client=_ResetClient()
            )
        self.assertFalse(delivered)


class LineAdminMessageTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine('sqlite:///:memory:', connect_args={'check_same_thread': False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        self.db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()

        self.store = Store(name='Main', timezone='UTC')
        self.db.add(self.store)
        self.db.flush()
        self.manager = User(store_id=self.store.id, role=UserRole.MANAGER, display_name='boss', line_user_id='U-boss')
        self.designer = User(store_id=self.store.id, role=UserRole.DESIGNER, display_name='ray', line_user_id='U-ray')
        self.assistant = User(
            store_id=self.store.id, role=UserRole.ASSISTANT, display_name='sung', line_user_id='U-sung'
        )
        self.rookie = User(store_id=self.store.id, role=UserRole.ROOKIE, display_name='rj')
        self.db.add_all([self.manager, self.designer, self.assistant, self.rookie])
        self.db.flush()
        self.db.add_all(
            [
                LeaveRequest(
                    store_id=self.store.id,
                    user_id=self.assistant.id,
                    date='2026-03-12',
                    status=LeaveStatus.APPROVED,
                    source=LeaveSource.SELF,
                    created_by_user_id=self.assistant.id,
                ),
                LeaveRequest(
                    store_id=self.store.id,
                    user_id=self.assistant.id,
                    date='2026-03-02',
                    status=LeaveStatus.CANCELED,
                    source=LeaveSource.MANAGER,
                    created_by_user_id=self.manager.id,
                ),
                LeaveRequest(
                    store_id=self.store.id,
                    user_id=self.designer.id,
                    date='2026-04-01',
                    status=LeaveStatus.PENDING,
                    source=LeaveSource.SELF,
                    created_by_user_id=self.designer.id,
                ),
            ]
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_test_message_needs_a_bound_line_account(self) -> None:
        client = _RecordingClient()
        self.assertTrue(send_test_message(self.db, store_id=self.store.id, user_id=self.assistant.id, client=client))
        self.assertFalse(send_test_message(self.db, store_id=self.store.id, user_id=self.rookie.id, client=client))
        self.assertFalse(send_test_message(self.db, store_id=self.store.id + 1, user_id=self.assistant.id, client=client))
        [(_, payload)] = client.calls
        self.assertEqual(payload['to'], 'U-sung')
        self.assertIn('sung', payload['messages'][0]['text'])

    def test_monthly_summary_lists_every_request_of_the_month(self) -> None:
        client = _RecordingClient()
        self.assertTrue(
            send_monthly_summary(
                self.db, store_id=self.store.id, user_id=self.assistant.id, month='2026-03', client=client
            )
        )
        [(_, payload)] = client.calls
        self.assertEqual(
            payload['messages'][0]['text'],
            'sung, here is your leave summary for 2026-03:\n'
            '2026-03-02: canceled (scheduled by manager)\n'
            '2026-03-12: approved (self request)',
        )

        send_monthly_summary(self.db, store_id=self.store.id, user_id=self.designer.id, month='2026-03', client=client)
        self.assertEqual(
            client.calls[1][1]['messages'][0]['text'],
            'ray, here is your leave summary for 2026-03:\nNo leave requests recorded this month.',
        )

        with self.assertRaisesRegex(ValueError, 'INVALID_MONTH'):
            send_monthly_summary(self.db, store_id=self.store.id, user_id=self.assistant.id, month='2026-3', client=client)

    def test_no_leave_reminder_skips_managers_and_staff_with_requests(self) -> None:
        client = _RecordingClient()
        sent = send_no_leave_reminders(self.db, store_id=self.store.id, month='2026-03', client=client)
        self.assertEqual(sent, 1)
        self.assertEqual([payload['to'] for _, payload in client.calls], ['U-ray'])
        self.assertIn('2026-03', client.calls[0][1]['messages'][0]['text'])

        april = _RecordingClient()
        self.assertEqual(send_no_leave_reminders(self.db, store_id=self.store.id, month='2026-04', client=april), 1)
        self.assertEqual(april.calls[0][1]['to'], 'U-sung')

        with self.assertLogs('leave_portal.services.notification_service', level='ERROR'):
            failed = send_no_leave_reminders(
                self.db, store_id=self.store.id, month='2026-03', client=_RecordingClient(fail=True)
            )
        self.assertEqual(failed, 0)


class StaffAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine('sqlite:///:memory:', connect_args={'check_same_thread': False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        self.db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()

        self.store = Store(name='Main', timezone='UTC')
        self.other_store = Store(name='Branch', timezone='UTC')
        self.db.add_all([self.store, self.other_store])
        self.db.flush()
        self.designer = User(store_id=self.store.id, role=UserRole.DESIGNER, display_name='ray')
        self.assistant = User(
            store_id=self.store.id, role=UserRole.ASSISTANT, display_name='sung', line_user_id='U-sung'
        )
        self.retired = User(store_id=self.store.id, role=UserRole.ROOKIE, display_name='old', active=False)
        self.outsider = User(store_id=self.other_store.id, role=UserRole.DESIGNER, display_name='kai')
        self.db.add_all([self.designer, self.assistant, self.retired, self.outsider])
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_params_can_be_set_and_cleared(self) -> None:
        update_user_params(
            self.db, store_id=self.store.id, user_id=self.designer.id, base_demand=0.5, base_supply=None
        )
        self.db.commit()
        self.db.expire_all()
        self.assertEqual(self.db.get(User, self.designer.id).base_demand, 0.5)

        update_user_params(
            self.db, store_id=self.store.id, user_id=self.designer.id, base_demand=None, base_supply=None
        )
        self.db.commit()
        self.db.expire_all()
        self.assertIsNone(self.db.get(User, self.designer.id).base_demand)

        for user in (self.retired, self.outsider):
            with self.assertRaises(UserNotFound):
                update_user_params(self.db, store_id=self.store.id, user_id=user.id, base_demand=1.0, base_supply=None)

    def test_line_binding(self) -> None:
        user = bind_line_user(self.db, store_id=self.store.id, user_id=self.designer.id, line_user_id=' U-ray ')
        self.db.commit()
        self.assertEqual(user.line_user_id, 'U-ray')
        bind_line_user(self.db, store_id=self.store.id, user_id=self.designer.id, line_user_id='U-ray')

        with self.assertRaisesRegex(ValueError, 'LINE_USER_ID_TAKEN'):
            bind_line_user(self.db, store_id=self.store.id, user_id=self.designer.id, line_user_id='U-sung')
        with self.assertRaisesRegex(ValueError, 'INVALID_BODY'):
            bind_line_user(self.db, store_id=self.store.id, user_id=self.designer.id, line_user_id='  ')
        with self.assertRaises(UserNotFound):
            bind_line_user(self.db, store_id=self.store.id, user_id=self.outsider.id, line_user_id='U-kai')

        staff = {row['display_name']: row for row in list_staff(self.db, store_id=self.store.id)}
        self.assertEqual(set(staff), {'ray', 'sung'})
        self.assertTrue(staff['ray']['line_bound'])


if __name__ == '__main__':
    unittest.main()
