from decimal import InvalidOperation
from flask import Blueprint, request, jsonify, current_app

from ..models import Machine, MachineImage, MachineMaintenance, JobMachine, MACHINE_STATUSES, to_decimal
from ..db import SessionLocal
from ..utils.date_utils import normalize_id, to_date
from ..utils.file_utils import save_uploads, remove_upload, request_payload

machine_bp = Blueprint('machine', __name__)


class MachineFieldError(ValueError):
    pass


def _optional_money(value, label):
    if value in (None, ''):
        return None
    try:
        amount = to_decimal(value)
    except (InvalidOperation, ValueError):
        raise MachineFieldError(f"{label} must be a number.")
    if not amount.is_finite() or amount < 0:
        raise MachineFieldError(f"{label} must be a non-negative number.")
    return amount


def _optional_date(value, label):
    if value in (None, ''):
        return None
    parsed = to_date(value)
    if not parsed:
        raise MachineFieldError(f"Invalid {label} format.")
    return parsed


def _attach_images(machine):
    for file_path, file_name, mimetype in save_uploads(request.files.getlist('images'), prefix='machine'):
        machine.images.append(MachineImage(file_path=file_path, file_name=file_name, file_type=mimetype))


@machine_bp.route('/add', methods=['POST'])
def add_machine():
    data = request_payload(request)
    machine_name = (data.get('machineName') or '').strip()
    if not machine_name:
        return jsonify({'success': False, 'message': 'Machine name is required.'}), 400

    status = data.get('status') or 'Active'
    if status not in MACHINE_STATUSES:
        return jsonify({'success': False, 'message': f"Invalid machine status: {status}"}), 400

    try:
        purchase_date = _optional_date(data.get('purchaseDate'), 'purchase date')
        hourly_rate = _optional_money(data.get('hourlyRate'), 'Hourly rate')
    except MachineFieldError as e:
        return jsonify({'success': False, 'message': str(e)}), 400

    session = SessionLocal()
    try:
        machine = Machine(
            machine_name=machine_name,
            description=data.get('description') or None,
            purchase_date=purchase_date,
            status=status,
            hourly_rate=hourly_rate,
        )
        _attach_images(machine)
        session.add(machine)
        session.commit()
        current_app.logger.info(f"✅ Machine added: {machine.machine_name} (#{machine.id}, {len(machine.images)} images)")

        return jsonify({
            'success': True,
            'message': 'Machine added successfully!',
            'machine': machine.to_dict()
        }), 201
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error adding machine: {e}")
        return jsonify({'success': False, 'message': f"Error adding machine: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@machine_bp.route('/get', methods=['GET'])
def get_machines():
    session = SessionLocal()
    try:
        machines = session.query(Machine).order_by(Machine.machine_name).all()
        return jsonify({'success': True, 'machines': [m.to_dict() for m in machines]}), 200
    except Exception as e:
        current_app.logger.exception(f"❌ Error fetching machines: {e}")
        return jsonify({'success': False, 'message': f"Error fetching machines: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@machine_bp.route('/update', methods=['PUT'])
def update_machine():
    """Update whichever machine fields are present; new images are appended."""
    data = request_payload(request)
    machine_id = normalize_id(data.get('id'))
    if not machine_id:
        return jsonify({'success': False, 'message': 'Machine ID is required.'}), 400

    status = data.get('status')
    if status and status not in MACHINE_STATUSES:
        return jsonify({'success': False, 'message': f"Invalid machine status: {status}"}), 400

    try:
        purchase_date = _optional_date(data.get('purchaseDate'), 'purchase date')
        hourly_rate = _optional_money(data.get('hourlyRate'), 'Hourly rate')
    except MachineFieldError as e:
        return jsonify({'success': False, 'message': str(e)}), 400

    session = SessionLocal()
    try:
        machine = session.get(Machine, machine_id)
        if not machine:
            return jsonify({'success': False, 'message': 'Machine not found.'}), 404

        if data.get('machineName'):
            machine.machine_name = data['machineName'].strip()
        if 'description' in data:
            machine.description = data.get('description') or None
        if 'purchaseDate' in data:
            machine.purchase_date = purchase_date
        if 'hourlyRate' in data:
            machine.hourly_rate = hourly_rate
        if status:
            machine.status = status
        _attach_images(machine)

        session.commit()
        current_app.logger.info(f"Machine #{machine_id} updated")
        return jsonify({
            'success': True,
            'message': 'Machine updated successfully!',
            'machine': machine.to_dict()
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error updating machine {machine_id}: {e}")
        return jsonify({'success': False, 'message': f"Error updating machine: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@machine_bp.route('/delete', methods=['DELETE'])
def delete_machine():
    data = request.get_json(silent=True) or {}
    machine_id = normalize_id(data.get('id'))
    if not machine_id:
        return jsonify({'success': False, 'message': 'Machine ID is required.'}), 400

    session = SessionLocal()
    try:
        machine = session.get(Machine, machine_id)
        if not machine:
            return jsonify({'success': False, 'message': 'Machine not found.'}), 404

        image_paths = [img.file_path for img in machine.images]
        session.query(JobMachine).filter(JobMachine.machine_id == machine_id).delete(synchronize_session=False)
        # images and maintenance records go with the machine
        session.delete(machine)
        session.commit()

        for path in image_paths:
            remove_upload(path)
        current_app.logger.info(f"🗑️ Machine #{machine_id} deleted")
        return jsonify({'success': True, 'message': 'Machine deleted successfully!'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error deleting machine {machine_id}: {e}")
        return jsonify({'success': False, 'message': f"Error deleting machine: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@machine_bp.route('/maintenance/add', methods=['POST'])
def add_maintenance_record():
    data = request.get_json(silent=True) or {}
    machine_id = normalize_id(data.get('machineId'))

    if not machine_id or not data.get('maintenanceDate') or not data.get('description'):
        return jsonify({'success': False, 'message': 'Machine ID, date, and description are required.'}), 400

    try:
        maintenance_date = _optional_date(data.get('maintenanceDate'), 'maintenance date')
        next_date = _optional_date(data.get('nextMaintenanceDate'), 'next maintenance date')
        cost = _optional_money(data.get('cost'), 'Cost')
    except MachineFieldError as e:
        return jsonify({'success': False, 'message': str(e)}), 400

    session = SessionLocal()
    try:
        machine = session.get(Machine, machine_id)
        if not machine:
            return jsonify({'success': False, 'message': 'Machine not found.'}), 404

        record = MachineMaintenance(
            machine_id=machine.id,
            maintenance_date=maintenance_date,
            description=data['description'],
            cost=cost,
            technician=data.get('technician') or None,
            next_maintenance_date=next_date,
        )
        session.add(record)
        machine.last_maintenance_date = maintenance_date
        session.commit()
        current_app.logger.info(f"🔧 Maintenance recorded for machine #{machine_id} on {maintenance_date}")

        return jsonify({
            'success': True,
            'message': 'Maintenance record added successfully!',
            'record': record.to_dict()
        }), 201
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error adding maintenance record for machine {machine_id}: {e}")
        return jsonify({'success': False, 'message': f"Error adding maintenance record: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@machine_bp.route('/maintenance/<machine_id>', methods=['GET'])
def get_maintenance_records(machine_id):
    session = SessionLocal()
    try:
        records = session.query(MachineMaintenance).filter(
            MachineMaintenance.machine_id == normalize_id(machine_id)
        ).order_by(MachineMaintenance.maintenance_date.desc(), MachineMaintenance.id.desc()).all()
        return jsonify({'success': True, 'records': [r.to_dict() for r in records]}), 200
    except Exception as e:
        current_app.logger.exception(f"❌ Error fetching maintenance records for machine {machine_id}: {e}")
        return jsonify({'success': False, 'message': f"Error fetching maintenance records: {e}", 'error': str(e)}), 500
    finally:
        session.close()
