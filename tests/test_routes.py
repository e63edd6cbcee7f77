import pytest

from conftest import SCHOOL

BASE = f'/schools/{SCHOOL}/library'


@pytest.fixture
def book(client):
    response = client.post(f'{BASE}/books', json={
        'title': 'The River Between', 'author': 'Ngugi wa Thiong\'o', 'genre': 'Fiction', 'total_copies': 1,
    })
    assert response.status_code == 201
    return response.get_json()


@pytest.fixture
def member(client):
    response = client.post(f'{BASE}/members', json={
        'member_code': 'LIB001', 'member_type': 'student', 'student_id': 'stu-1',
    })
    assert response.status_code == 201
    return response.get_json()


def test_health(client):
    response = client.get('/')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'


def test_settings_default_then_update(client):
    data = client.get(f'{BASE}/settings').get_json()
    assert data['is_default'] is True
    assert data['teacher_borrowing_days'] == 30

    response = client.put(f'{BASE}/settings', json={'fine_per_day': 2, 'max_renewals': 1})
    assert response.status_code == 200

    data = client.get(f'{BASE}/settings').get_json()
    assert data['is_default'] is False
    assert (data['fine_per_day'], data['max_renewals']) == (2.0, 1)


def test_bad_settings_are_rejected(client):
    response = client.put(f'{BASE}/settings', json={'fine_per_day': -3})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'fine_per_day cannot be negative'}

    # the JSON parser lets NaN through
    response = client.put(f'{BASE}/settings', data='{"fine_per_day": NaN}', content_type='application/json')
    assert response.status_code == 400
    assert response.get_json() == {'error': 'fine_per_day must be a number'}
    assert client.get(f'{BASE}/settings').get_json()['is_default'] is True


def test_book_and_member_listing(client, book, member):
    assert book['available_copies'] == 1
    assert member['borrowing_limit'] == 3

    books = client.get(f'{BASE}/books', query_string={'search': 'river'}).get_json()['books']
    assert [b['id'] for b in books] == [book['id']]

    members = client.get(f'{BASE}/members').get_json()['members']
    assert [(m['member_code'], m['current_books']) for m in members] == [('LIB001', 0)]

    response = client.patch(f'{BASE}/books/{book["id"]}', json={'rack_location': 'B-2'})
    assert response.get_json()['rack_location'] == 'B-2'

    response = client.post(f'{BASE}/books/{book["id"]}/copies', json={'quantity_change': 2})
    assert (response.get_json()['total_copies'], response.get_json()['available_copies']) == (3, 3)


def test_missing_data(client):
    response = client.post(f'{BASE}/books', data='not json')
    assert response.status_code == 400
    assert response.get_json() == {'error': 'No data provided'}

    response = client.post(f'{BASE}/members', json={'member_code': 'LIB009', 'staff_id': 'stf-9'})
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Missing fields: member_type'}


def test_circulation_flow(client, book, member):
    response = client.post(f'{BASE}/transactions', json={
        'book_id': book['id'], 'member_id': member['id'], 'due_date': '2099-01-10',
    })
    assert response.status_code == 201
    transaction = response.get_json()
    assert (transaction['status'], transaction['due_date']) == ('issued', '2099-01-10')

    # the only copy is out
    other = client.post(f'{BASE}/members', json={
        'member_code': 'LIB002', 'member_type': 'teacher', 'staff_id': 'stf-2',
    }).get_json()
    response = client.post(f'{BASE}/transactions', json={'book_id': book['id'], 'member_id': other['id']})
    assert response.status_code == 409
    assert response.get_json() == {'error': 'Book is not available for issue.'}

    response = client.post(f'{BASE}/reservations', json={'book_id': book['id'], 'member_id': other['id']})
    assert response.status_code == 201
    reservation = response.get_json()
    assert reservation['status'] == 'pending'

    response = client.post(f'{BASE}/transactions/{transaction["id"]}/renew')
    assert response.status_code == 409
    assert response.get_json() == {'error': 'Book is reserved by another member and cannot be renewed'}

    response = client.post(f'{BASE}/transactions/{transaction["id"]}/return', json={'fine_amount': 0})
    assert response.status_code == 200
    assert response.get_json()['status'] == 'returned'

    reservations = client.get(f'{BASE}/reservations', query_string={'status': 'available'}).get_json()
    assert [r['id'] for r in reservations['reservations']] == [reservation['id']]

    response = client.post(f'{BASE}/reservations/{reservation["id"]}/status', json={'status': 'fulfilled'})
    assert response.status_code == 200
    assert response.get_json()['status'] == 'fulfilled'

    transactions = client.get(f'{BASE}/transactions', query_string={'member_id': other['id']}).get_json()
    assert [t['status'] for t in transactions['transactions']] == ['issued']

    stats = client.get(f'{BASE}/stats').get_json()
    assert (stats['books_issued'], stats['pending_reservations']) == (1, 0)


def test_fines_endpoint(client, book, member):
    transaction = client.post(f'{BASE}/transactions', json={
        'book_id': book['id'], 'member_id': member['id'],
    }).get_json()
    client.post(f'{BASE}/transactions/{transaction["id"]}/return', json={'fine_amount': 12.5})

    fines = client.get(f'{BASE}/members/{member["id"]}/fines').get_json()
    assert fines['total'] == 12.5

    response = client.post(f'{BASE}/transactions/{transaction["id"]}/pay-fine')
    assert response.status_code == 200
    assert response.get_json()['fine_paid'] is True
    assert client.get(f'{BASE}/members/{member["id"]}/fines').get_json() == {'fines': [], 'total': 0}


def test_unknown_records_are_404(client, book):
    assert client.get(f'{BASE}/books/999').status_code == 404
    response = client.get(f'/schools/school-2/library/books/{book["id"]}')
    assert response.status_code == 404
    assert response.get_json() == {'error': f'Book {book["id"]} not found'}


def test_delete_member_and_book(client, book, member):
    assert client.delete(f'{BASE}/members/{member["id"]}').status_code == 200
    assert client.delete(f'{BASE}/books/{book["id"]}').status_code == 200
    assert client.get(f'{BASE}/books').get_json() == {'books': []}


def test_allocation_endpoints(client):
    components = [
        {'id': 'comp-1', 'name': 'Tuition Fee', 'balance': 25000, 'priority': 1, 'status': 'due'},
        {'id': 'comp-2', 'name': 'Transport Fee', 'balance': 7000, 'priority': 5, 'status': 'overdue'},
    ]
    response = client.post('/fees/allocations/suggest', json={
        'components': components, 'amount': 10000, 'strategy': 'overdue_first',
    })
    assert response.status_code == 200
    plan = response.get_json()
    assert [(a['component_id'], a['amount']) for a in plan['allocations']] == [('comp-2', 7000.0), ('comp-1', 3000.0)]
    assert (plan['allocated'], plan['unallocated']) == (10000.0, 0.0)

    response = client.post('/fees/allocations/validate', json={
        'components': components, 'allocations': plan['allocations'],
    })
    result = response.get_json()
    assert result['is_valid'] is True
    assert [w['message'] for w in result['warnings']] == ['Transport Fee will be fully paid']

    response = client.post('/fees/allocations/suggest', json={
        'components': components, 'amount': 10000, 'strategy': 'lottery',
    })
    assert response.status_code == 400


def test_bulk_member_enrolment(client, member):
    response = client.post(f'{BASE}/members/bulk', json={'members': [
        {'member_type': 'teacher', 'staff_id': 'stf-1'},
        {'member_type': 'student', 'student_id': 'stu-1'},
        {'member_type': 'student', 'student_id': 'stu-2', 'borrowing_limit': 1},
    ]})
    assert response.status_code == 200
    report = response.get_json()

    assert (report['success'], report['failed'], report['total']) == (2, 1, 3)
    assert [r['status'] for r in report['results']] == ['success', 'error', 'success']
    assert report['results'][1]['error'] == 'Already a library member as LIB001'
    assert report['results'][0]['member_code'].startswith('TCH')

    members = client.get(f'{BASE}/members', query_string={'member_type': 'student'}).get_json()['members']
    assert sorted(m['borrowing_limit'] for m in members) == [1, 3]

    response = client.post(f'{BASE}/members/bulk', json={'members': 'everyone'})
    assert response.status_code == 400
