from decimal import InvalidOperation
from flask import Blueprint, request, jsonify, current_app

from ..models import Employee, EmployeeImage, JobEmployee, to_decimal
from ..db import SessionLocal
from ..utils.date_utils import normalize_id, parse_bool
from ..utils.file_utils import save_upload, remove_upload, request_payload

employee_bp = Blueprint('employee', __name__)


def _salary(value):
    try:
        salary = to_decimal(value)
    except (InvalidOperation, ValueError):
        return None
    if salary is None or not salary.is_finite() or salary < 0:
        return None
    return salary


def _replace_image(session, employee, upload):
    """Swap the employee's profile image for a freshly saved upload."""
    saved = save_upload(upload, prefix='employee')
    if not saved:
        return False

    file_path, file_name, mimetype = saved
    if employee.image:
        remove_upload(employee.image.file_path)
        session.delete(employee.image)
        session.flush()
    employee.image = EmployeeImage(file_path=file_path, file_name=file_name, file_type=mimetype)
    return True


@employee_bp.route('/add', methods=['POST'])
def add_employee():
    data = request_payload(request)
    name = (data.get('name') or '').strip()
    position = (data.get('position') or '').strip()

    if not name or not position or data.get('salary') in (None, ''):
        return jsonify({'success': False, 'message': 'All required fields must be provided.'}), 400

    salary = _salary(data.get('salary'))
    if salary is None:
        return jsonify({'success': False, 'message': 'Salary must be a non-negative number.'}), 400

    session = SessionLocal()
    try:
        employee = Employee(
            name=name,
            position=position,
            salary=salary,
            active=1 if data.get('active') in (None, '') or parse_bool(data.get('active')) else 0,
            email=data.get('email') or None,
            phone=data.get('phone') or None,
            address=data.get('address') or None,
        )
        session.add(employee)
        session.flush()

        _replace_image(session, employee, request.files.get('profileImage'))

        session.commit()
        current_app.logger.info(f"✅ Employee added: {employee.name} (#{employee.id})")

        return jsonify({
            'success': True,
            'message': 'Employee added successfully!',
            'employee': employee.to_dict()
        }), 201
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error adding employee: {e}")
        return jsonify({'success': False, 'message': f"Error adding employee: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@employee_bp.route('/get', methods=['GET'])
def get_employees():
    session = SessionLocal()
    try:
        employees = session.query(Employee).order_by(Employee.name).all()
        return jsonify({'success': True, 'employees': [e.to_dict() for e in employees]}), 200
    except Exception as e:
        current_app.logger.exception(f"❌ Error fetching employees: {e}")
        return jsonify({'success': False, 'message': f"Error fetching employees: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@employee_bp.route('/update', methods=['PUT'])
def update_employee():
    data = request_payload(request)
    employee_id = normalize_id(data.get('id'))
    name = (data.get('name') or '').strip()
    position = (data.get('position') or '').strip()

    if not employee_id or not name or not position or data.get('salary') in (None, ''):
        return jsonify({'success': False, 'message': 'All required fields must be provided.'}), 400

    salary = _salary(data.get('salary'))
    if salary is None:
        return jsonify({'success': False, 'message': 'Salary must be a non-negative number.'}), 400

    session = SessionLocal()
    try:
        employee = session.get(Employee, employee_id)
        if not employee:
            return jsonify({'success': False, 'message': 'Employee not found.'}), 404

        employee.name = name
        employee.position = position
        employee.salary = salary
        for field in ('email', 'phone', 'address'):
            if field in data:
                setattr(employee, field, data.get(field) or None)
        if data.get('active') not in (None, ''):
            employee.active = 1 if parse_bool(data.get('active')) else 0

        _replace_image(session, employee, request.files.get('profileImage'))

        session.commit()
        current_app.logger.info(f"Employee #{employee_id} updated")
        return jsonify({
            'success': True,
            'message': 'Employee updated successfully!',
            'employee': employee.to_dict()
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error updating employee {employee_id}: {e}")
        return jsonify({'success': False, 'message': f"Error updating employee: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@employee_bp.route('/toggle-active', methods=['PUT'])
def toggle_employee_active():
    data = request.get_json(silent=True) or {}
    employee_id = normalize_id(data.get('id'))

    if not employee_id or data.get('active') is None:
        return jsonify({'success': False, 'message': 'Employee ID and active status are required.'}), 400

    session = SessionLocal()
    try:
        employee = session.get(Employee, employee_id)
        if not employee:
            return jsonify({'success': False, 'message': 'Employee not found.'}), 404

        employee.active = 1 if parse_bool(data.get('active')) else 0
        session.commit()
        current_app.logger.info(f"Employee #{employee_id} active={employee.is_active}")

        return jsonify({
            'success': True,
            'message': 'Employee status updated successfully!',
            'updatedStatus': employee.is_active
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error toggling employee {employee_id}: {e}")
        return jsonify({'success': False, 'message': f"Error updating employee status: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@employee_bp.route('/delete', methods=['DELETE'])
def delete_employee():
    """Delete an employee together with their image file and job bookings."""
    data = request.get_json(silent=True) or {}
    employee_id = normalize_id(data.get('id'))
    if not employee_id:
        return jsonify({'success': False, 'message': 'Employee ID is required.'}), 400

    session = SessionLocal()
    try:
        employee = session.get(Employee, employee_id)
        if not employee:
            return jsonify({'success': False, 'message': 'Employee not found.'}), 404

        image_path = employee.image.file_path if employee.image else None
        session.query(JobEmployee).filter(JobEmployee.employee_id == employee_id).delete(synchronize_session=False)
        session.delete(employee)
        session.commit()

        remove_upload(image_path)
        current_app.logger.info(f"🗑️ Employee #{employee_id} deleted")
        return jsonify({'success': True, 'message': 'Employee deleted successfully!'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error deleting employee {employee_id}: {e}")
        return jsonify({'success': False, 'message': f"Error deleting employee: {e}", 'error': str(e)}), 500
    finally:
        session.close()
