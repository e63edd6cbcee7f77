from datetime import timedelta
from unittest import mock

from circulation import issue_book
from conftest import SCHOOL, TODAY
from cyclic_events import run_daily_sweeps, start_scheduler
from definitions import BookReservation, BookTransaction
from reservations import create_reservation


def test_daily_sweep_expires_holds_and_flags_overdue_loans(app, db, make_book, make_member):
    held = create_reservation(db, SCHOOL, make_book().id, make_member().id, today=TODAY)
    loan = issue_book(db, SCHOOL, make_book(title='Second').id, make_member().id, due_date=TODAY, today=TODAY)

    Session = app.extensions['db_session_factory']
    assert run_daily_sweeps(Session, today=TODAY + timedelta(days=10)) == (1, 1)

    db.expire_all()
    assert db.get(BookReservation, held.id).status == 'expired'
    assert db.get(BookTransaction, loan.id).status == 'overdue'

    # nothing left to do on the next run
    assert run_daily_sweeps(Session, today=TODAY + timedelta(days=11)) == (0, 0)


def test_scheduler_runs_sweep_daily():
    with mock.patch('cyclic_events.BackgroundScheduler') as scheduler_class:
        scheduler = start_scheduler(mock.sentinel.session_factory, timezone='Africa/Nairobi', hour=1, minute=30)

    assert scheduler is scheduler_class.return_value
    args, kwargs = scheduler.add_job.call_args
    assert args == (run_daily_sweeps, 'cron')
    assert (kwargs['hour'], kwargs['minute']) == (1, 30)
    assert kwargs['args'] == [mock.sentinel.session_factory]
    assert str(kwargs['timezone']) == 'Africa/Nairobi'
    scheduler.start.assert_called_once_with()
