import logging

from flask import request, jsonify, Blueprint, g
from werkzeug.exceptions import HTTPException

import allocation
import catalog
import circulation
import reservations
from definitions import Book, LibraryMember
from errors import LibraryError, ValidationError
from helpers import get_member_unpaid_fines, get_or_404, parse_date, to_dict
from policy import DEFAULT_SETTINGS, get_settings, update_settings

logger = logging.getLogger(__name__)

routes_blueprint = Blueprint('routes', __name__)


@routes_blueprint.errorhandler(LibraryError)
def handle_library_error(error):
    logger.info("%s: %s", type(error).__name__, error.message)
    return jsonify({'error': error.message}), error.status_code


@routes_blueprint.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({'error': error.description}), error.code


def get_data():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('No data provided')
    return data


def editable(data):
    # keys carried by the URL
    return {k: v for k, v in data.items() if k not in ('id', 'school_id', 'book_id', 'member_id')}


def require(data, *names):
    missing = [name for name in names if data.get(name) in (None, '')]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}")


def int_arg(name):
    value = request.args.get(name)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


@routes_blueprint.route('/')
def health():
    return jsonify({'status': 'ok', 'message': 'School library service is running'})


# settings

@routes_blueprint.get('/schools/<school_id>/library/settings')
def read_settings(school_id):
    settings = get_settings(g.db, school_id)
    if settings is None:
        data = {k: float(v) if k in ('fine_per_day', 'max_fine_amount') else v
                for k, v in DEFAULT_SETTINGS.items()}
        data.update(school_id=school_id, is_default=True)
        return jsonify(data), 200
    return jsonify(dict(to_dict(settings), is_default=False)), 200


@routes_blueprint.put('/schools/<school_id>/library/settings')
def write_settings(school_id):
    settings = update_settings(g.db, school_id, **editable(get_data()))
    return jsonify(to_dict(settings)), 200


# books

@routes_blueprint.get('/schools/<school_id>/library/books')
def get_books(school_id):
    books = catalog.list_books(
        g.db, school_id,
        search=request.args.get('search'),
        genre=request.args.get('genre'),
        availability=request.args.get('availability', 'all'),
    )
    return jsonify({'books': [to_dict(book) for book in books]}), 200


@routes_blueprint.post('/schools/<school_id>/library/books')
def add_book(school_id):
    data = get_data()
    require(data, 'title', 'author')
    book = catalog.create_book(g.db, school_id, **editable(data))
    return jsonify(to_dict(book)), 201


@routes_blueprint.get('/schools/<school_id>/library/books/<int:book_id>')
def get_book(school_id, book_id):
    return jsonify(to_dict(get_or_404(g.db, Book, school_id, book_id))), 200


@routes_blueprint.patch('/schools/<school_id>/library/books/<int:book_id>')
def edit_book(school_id, book_id):
    book = catalog.update_book(g.db, school_id, book_id, **editable(get_data()))
    return jsonify(to_dict(book)), 200


@routes_blueprint.delete('/schools/<school_id>/library/books/<int:book_id>')
def delete_book(school_id, book_id):
    catalog.deactivate_book(g.db, school_id, book_id)
    return jsonify({'message': 'Book deleted successfully'}), 200


@routes_blueprint.post('/schools/<school_id>/library/books/<int:book_id>/copies')
def change_copies(school_id, book_id):
    data = get_data()
    require(data, 'quantity_change')
    book = catalog.adjust_copies(
        g.db, school_id, book_id,
        data['quantity_change'],
        action_type=data.get('action_type'),
        reason=data.get('reason'),
        performed_by=data.get('performed_by'),
    )
    return jsonify(to_dict(book)), 200


# members

@routes_blueprint.get('/schools/<school_id>/library/members')
def get_members(school_id):
    rows = catalog.list_members(g.db, school_id, member_type=request.args.get('member_type'))
    return jsonify({'members': [dict(to_dict(member), current_books=count) for member, count in rows]}), 200


@routes_blueprint.post('/schools/<school_id>/library/members')
def add_member(school_id):
    data = get_data()
    require(data, 'member_type')
    member = catalog.create_member(
        g.db, school_id,
        member_code=data.get('member_code'),
        member_type=data['member_type'],
        student_id=data.get('student_id'),
        staff_id=data.get('staff_id'),
        borrowing_limit_override=data.get('borrowing_limit'),
    )
    return jsonify(to_dict(member)), 201


@routes_blueprint.post('/schools/<school_id>/library/members/bulk')
def add_members(school_id):
    data = get_data()
    require(data, 'members')
    return jsonify(catalog.bulk_create_members(g.db, school_id, data['members'])), 200


@routes_blueprint.patch('/schools/<school_id>/library/members/<int:member_id>')
def edit_member(school_id, member_id):
    data = get_data()
    if 'suspended_until' in data:
        data['suspended_until'] = parse_date(data['suspended_until'], 'suspended_until')
    member = catalog.update_member(g.db, school_id, member_id, **editable(data))
    return jsonify(to_dict(member)), 200


@routes_blueprint.delete('/schools/<school_id>/library/members/<int:member_id>')
def delete_member(school_id, member_id):
    catalog.deactivate_member(g.db, school_id, member_id)
    return jsonify({'message': 'Member deactivated successfully'}), 200


@routes_blueprint.get('/schools/<school_id>/library/members/<int:member_id>/fines')
def get_fines(school_id, member_id):
    member = get_or_404(g.db, LibraryMember, school_id, member_id)
    fines = get_member_unpaid_fines(g.db, school_id, member.id)
    return jsonify({'fines': fines, 'total': sum(f['amount'] for f in fines)}), 200


# transactions

@routes_blueprint.get('/schools/<school_id>/library/transactions')
def get_transactions(school_id):
    transactions = circulation.list_transactions(
        g.db, school_id,
        status=request.args.get('status'),
        member_id=int_arg('member_id'),
        book_id=int_arg('book_id'),
    )
    return jsonify({'transactions': [to_dict(t) for t in transactions]}), 200


@routes_blueprint.post('/schools/<school_id>/library/transactions')
def issue_book(school_id):
    data = get_data()
    require(data, 'book_id', 'member_id')
    transaction = circulation.issue_book(
        g.db, school_id, data['book_id'], data['member_id'],
        due_date=data.get('due_date'),
        issued_by=data.get('issued_by'),
        notes=data.get('notes'),
    )
    return jsonify(to_dict(transaction)), 201


@routes_blueprint.post('/schools/<school_id>/library/transactions/<int:transaction_id>/return')
def return_book(school_id, transaction_id):
    data = request.get_json(silent=True) or {}
    transaction = circulation.return_book(
        g.db, school_id, transaction_id,
        return_date=data.get('return_date'),
        fine_amount=data.get('fine_amount'),
        returned_by=data.get('returned_by'),
        notes=data.get('notes'),
    )
    return jsonify(to_dict(transaction)), 200


@routes_blueprint.post('/schools/<school_id>/library/transactions/<int:transaction_id>/renew')
def renew_book(school_id, transaction_id):
    transaction = circulation.renew_book(g.db, school_id, transaction_id)
    return jsonify(to_dict(transaction)), 200


@routes_blueprint.post('/schools/<school_id>/library/transactions/<int:transaction_id>/pay-fine')
def pay_fine(school_id, transaction_id):
    data = request.get_json(silent=True) or {}
    transaction = circulation.pay_fine(g.db, school_id, transaction_id, paid_on=data.get('paid_on'))
    return jsonify(to_dict(transaction)), 200


# reservations

@routes_blueprint.get('/schools/<school_id>/library/reservations')
def get_reservations(school_id):
    items = reservations.list_reservations(
        g.db, school_id,
        status=request.args.get('status'),
        member_id=int_arg('member_id'),
        book_id=int_arg('book_id'),
    )
    return jsonify({'reservations': [to_dict(r) for r in items]}), 200


@routes_blueprint.post('/schools/<school_id>/library/reservations')
def reserve_book(school_id):
    data = get_data()
    require(data, 'book_id', 'member_id')
    reservation = reservations.create_reservation(g.db, school_id, data['book_id'], data['member_id'])
    return jsonify(to_dict(reservation)), 201


@routes_blueprint.post('/schools/<school_id>/library/reservations/<int:reservation_id>/status')
def change_reservation_status(school_id, reservation_id):
    data = get_data()
    require(data, 'status')
    reservation = circulation.update_reservation_status(
        g.db, school_id, reservation_id, data['status'], issued_by=data.get('issued_by'))
    return jsonify(to_dict(reservation)), 200


@routes_blueprint.get('/schools/<school_id>/library/stats')
def get_stats(school_id):
    return jsonify(catalog.library_stats(g.db, school_id)), 200


# fee payment allocation

@routes_blueprint.post('/fees/allocations/suggest')
def suggest_allocation():
    data = get_data()
    require(data, 'amount', 'components')
    components = allocation.components_from_json(data['components'])
    plan = allocation.suggest_allocation(
        components, data['amount'], data.get('strategy', allocation.OVERDUE_FIRST))
    return jsonify(allocation.plan_to_json(plan)), 200


@routes_blueprint.post('/fees/allocations/validate')
def validate_allocation():
    data = get_data()
    require(data, 'components', 'allocations')
    result = allocation.validate_allocation(
        allocation.components_from_json(data['components']),
        allocation.allocations_from_json(data['allocations']),
    )
    return jsonify(allocation.result_to_json(result)), 200
