from datetime import date

import pytest

from app import create_app
from catalog import create_book, create_member

SCHOOL = 'school-1'
OTHER_SCHOOL = 'school-2'
TODAY = date(2026, 3, 2)


@pytest.fixture
def app():
    app = create_app('testing')
    yield app
    app.extensions['db_engine'].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    session = app.extensions['db_session_factory']()
    yield session
    session.close()


@pytest.fixture
def make_book(db):
    def _make_book(title='Things Fall Apart', author='Chinua Achebe', total_copies=1, school_id=SCHOOL, **details):
        return create_book(db, school_id, title, author, total_copies=total_copies, **details)
    return _make_book


@pytest.fixture
def make_member(db):
    counter = {'n': 0}

    def _make_member(member_type='student', school_id=SCHOOL, **kwargs):
        counter['n'] += 1
        code = kwargs.pop('member_code', f'LIB{counter["n"]:03d}')
        if member_type == 'student':
            kwargs.setdefault('student_id', f'stu-{counter["n"]}')
        else:
            kwargs.setdefault('staff_id', f'stf-{counter["n"]}')
        return create_member(db, school_id, code, member_type, **kwargs)
    return _make_member
