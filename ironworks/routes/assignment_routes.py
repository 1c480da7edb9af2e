from datetime import datetime
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..models import Employee, Machine, Job, JobEmployee, JobMachine
from ..db import SessionLocal
from ..utils.date_utils import (
    normalize_id, normalize_ids, to_date, format_timestamp
)
from ..utils.scheduling import (
    find_missing_ids, find_inactive_employees, find_unavailable_machines,
    find_employee_conflicts, find_machine_conflicts, describe_conflicts,
    jobs_overlapping, conflicting_jobs_by_resource
)

# Mounted at /api/jobs
assignment_bp = Blueprint('assignments', __name__)

BOOKING_RACE_MESSAGE = 'Some resources were booked on this date by another request. Please refresh and try again.'


def _error(message, status, **extra):
    body = {'success': False, 'message': message}
    body.update(extra)
    return body, status


def _check_resources(session, job, employee_ids, machine_ids):
    """
    Run the assignability rules for resources about to be booked on `job`.
    Employees are checked before machines, and inactive status before date
    conflicts. Returns (body, status) for the first failure, else None.
    """
    if employee_ids:
        missing = find_missing_ids(session, Employee, employee_ids)
        if missing:
            return _error(f"Employees not found: {', '.join(str(i) for i in missing)}", 404)

        inactive = find_inactive_employees(session, employee_ids)
        if inactive:
            return _error(
                f"Cannot assign inactive employees: {', '.join(e['name'] for e in inactive)}",
                400, inactiveEmployees=inactive
            )

        busy = find_employee_conflicts(session, employee_ids, job.id, job.start_date)
        if busy:
            return _error(
                f"Some employees are already assigned to other jobs on this date: {describe_conflicts(busy)}",
                400, conflictingEmployees=busy
            )

    if machine_ids:
        missing = find_missing_ids(session, Machine, machine_ids)
        if missing:
            return _error(f"Machines not found: {', '.join(str(i) for i in missing)}", 404)

        unavailable = find_unavailable_machines(session, machine_ids)
        if unavailable:
            details = ', '.join(f"{m['machineName']} ({m['status']})" for m in unavailable)
            return _error(f"Cannot assign unavailable machines: {details}", 400,
                          unavailableMachines=unavailable)

        busy = find_machine_conflicts(session, machine_ids, job.id, job.start_date)
        if busy:
            return _error(
                f"Some machines are already assigned to other jobs on this date: "
                f"{describe_conflicts(busy, 'machineName')}",
                400, conflictingMachines=busy
            )

    return None


def _book(session, job, employee_ids, machine_ids):
    now = datetime.utcnow()
    session.add_all(
        [JobEmployee(job_id=job.id, employee_id=i, job_date=job.start_date, assigned_at=now)
         for i in employee_ids]
        + [JobMachine(job_id=job.id, machine_id=i, job_date=job.start_date, assigned_at=now)
           for i in machine_ids]
    )


def _assigned_ids(session, column, job_column, job_id):
    return [row[0] for row in session.query(column).filter(job_column == job_id).all()]


@assignment_bp.route('/assign', methods=['POST'])
def assign_resources():
    """Replace the full employee/machine set of a job, atomically."""
    data = request.get_json(silent=True) or {}
    job_id = normalize_id(data.get('jobId'))
    employee_ids = normalize_ids(data.get('employeeIds'))
    machine_ids = normalize_ids(data.get('machineIds'))

    if not job_id or (not employee_ids and not machine_ids):
        return jsonify({
            'success': False,
            'message': 'Job ID and at least one resource to assign are required'
        }), 400

    session = SessionLocal()
    try:
        job = session.get(Job, job_id)
        if not job:
            return jsonify({'success': False, 'message': 'Job not found'}), 404

        if job.status == 'Completed':
            return jsonify({'success': False, 'message': 'Cannot assign resources to a completed job'}), 400

        if not job.start_date:
            return jsonify({
                'success': False,
                'message': 'Job has no scheduled date for resource assignment'
            }), 400

        failure = _check_resources(session, job, employee_ids, machine_ids)
        if failure:
            session.rollback()
            body, status = failure
            current_app.logger.warning(f"Assignment to job {job_id} rejected: {body['message']}")
            return jsonify(body), status

        session.query(JobEmployee).filter(JobEmployee.job_id == job.id).delete(synchronize_session=False)
        session.query(JobMachine).filter(JobMachine.job_id == job.id).delete(synchronize_session=False)
        _book(session, job, employee_ids, machine_ids)
        job.status = 'In Progress'

        session.commit()
        current_app.logger.info(
            f"Assigned {len(employee_ids)} employees and {len(machine_ids)} machines to job {job_id}"
        )

        return jsonify({
            'success': True,
            'message': 'Resources assigned successfully',
            'assignedEmployees': len(employee_ids),
            'assignedMachines': len(machine_ids),
        }), 200
    except IntegrityError as e:
        session.rollback()
        current_app.logger.warning(f"Booking constraint hit while assigning job {job_id}: {e.orig}")
        return jsonify({'success': False, 'message': BOOKING_RACE_MESSAGE, 'error': str(e.orig)}), 400
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error assigning resources to job {job_id}: {e}")
        return jsonify({
            'success': False,
            'message': f"Error assigning resources: {e}",
            'error': str(e)
        }), 500
    finally:
        session.close()


@assignment_bp.route('/update', methods=['POST'])
def update_job_resources():
    """Add resources to a job without touching the ones already booked."""
    data = request.get_json(silent=True) or {}
    job_id = normalize_id(data.get('jobId'))
    employee_ids = normalize_ids(data.get('employeeIdsToAdd'))
    machine_ids = normalize_ids(data.get('machineIdsToAdd'))

    if not job_id or (not employee_ids and not machine_ids):
        return jsonify({
            'success': False,
            'message': 'Job ID and at least one resource to add are required'
        }), 400

    session = SessionLocal()
    try:
        job = session.get(Job, job_id)
        if not job:
            return jsonify({'success': False, 'message': 'Job not found'}), 404

        if job.status == 'Completed':
            return jsonify({'success': False, 'message': 'Cannot update resources for a completed job'}), 400

        if not job.start_date:
            return jsonify({
                'success': False,
                'message': 'Job has no scheduled date for resource assignment'
            }), 400

        current_employees = _assigned_ids(session, JobEmployee.employee_id, JobEmployee.job_id, job.id)
        current_machines = _assigned_ids(session, JobMachine.machine_id, JobMachine.job_id, job.id)
        new_employees = [i for i in employee_ids if i not in current_employees]
        new_machines = [i for i in machine_ids if i not in current_machines]

        failure = _check_resources(session, job, new_employees, new_machines)
        if failure:
            session.rollback()
            body, status = failure
            current_app.logger.warning(f"Resource update for job {job_id} rejected: {body['message']}")
            return jsonify(body), status

        _book(session, job, new_employees, new_machines)
        if new_employees or new_machines:
            job.status = 'In Progress'

        session.commit()
        current_app.logger.info(
            f"Added {len(new_employees)} employees and {len(new_machines)} machines to job {job_id}"
        )

        return jsonify({
            'success': True,
            'message': 'Resources updated successfully',
            'addedEmployees': len(new_employees),
            'addedMachines': len(new_machines),
            'totalEmployees': len(current_employees) + len(new_employees),
            'totalMachines': len(current_machines) + len(new_machines),
        }), 200
    except IntegrityError as e:
        session.rollback()
        current_app.logger.warning(f"Booking constraint hit while updating job {job_id}: {e.orig}")
        return jsonify({'success': False, 'message': BOOKING_RACE_MESSAGE, 'error': str(e.orig)}), 400
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error updating resources for job {job_id}: {e}")
        return jsonify({
            'success': False,
            'message': f"Error updating job resources: {e}",
            'error': str(e)
        }), 500
    finally:
        session.close()


@assignment_bp.route('/remove', methods=['POST'])
def remove_job_resources():
    """Drop specific bookings. Allowed on completed jobs so records can be corrected."""
    data = request.get_json(silent=True) or {}
    job_id = normalize_id(data.get('jobId'))
    employee_ids = normalize_ids(data.get('employeeIds'))
    machine_ids = normalize_ids(data.get('machineIds'))

    if not job_id or (not employee_ids and not machine_ids):
        return jsonify({
            'success': False,
            'message': 'Job ID and at least one resource to remove are required'
        }), 400

    session = SessionLocal()
    try:
        job = session.get(Job, job_id)
        if not job:
            return jsonify({'success': False, 'message': 'Job not found'}), 404

        current_employees = _assigned_ids(session, JobEmployee.employee_id, JobEmployee.job_id, job.id)
        current_machines = _assigned_ids(session, JobMachine.machine_id, JobMachine.job_id, job.id)
        employees_to_remove = [i for i in employee_ids if i in current_employees]
        machines_to_remove = [i for i in machine_ids if i in current_machines]

        removed_employees = 0
        if employees_to_remove:
            removed_employees = session.query(JobEmployee).filter(
                JobEmployee.job_id == job.id,
                JobEmployee.employee_id.in_(employees_to_remove)
            ).delete(synchronize_session=False)

        removed_machines = 0
        if machines_to_remove:
            removed_machines = session.query(JobMachine).filter(
                JobMachine.job_id == job.id,
                JobMachine.machine_id.in_(machines_to_remove)
            ).delete(synchronize_session=False)

        remaining_employees = len(current_employees) - removed_employees
        remaining_machines = len(current_machines) - removed_machines

        if remaining_employees == 0 and remaining_machines == 0 and job.status != 'Completed':
            job.status = 'Not Started'

        session.commit()
        current_app.logger.info(
            f"Removed {removed_employees} employees and {removed_machines} machines from job {job_id}"
        )

        return jsonify({
            'success': True,
            'message': 'Resources removed successfully',
            'removedEmployees': removed_employees,
            'removedMachines': removed_machines,
            'remainingEmployees': remaining_employees,
            'remainingMachines': remaining_machines,
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error removing resources from job {job_id}: {e}")
        return jsonify({
            'success': False,
            'message': f"Error removing job resources: {e}",
            'error': str(e)
        }), 500
    finally:
        session.close()


@assignment_bp.route('/assigned/<job_id>', methods=['GET'])
def get_assigned_resources(job_id):
    normalized_job_id = normalize_id(job_id)
    if not normalized_job_id:
        return jsonify({'success': False, 'message': 'Valid job ID is required'}), 400

    session = SessionLocal()
    try:
        if not session.get(Job, normalized_job_id):
            return jsonify({'success': False, 'message': 'Job not found'}), 404

        employees = session.query(Employee).join(
            JobEmployee, JobEmployee.employee_id == Employee.id
        ).filter(JobEmployee.job_id == normalized_job_id).order_by(Employee.name).all()

        machines = session.query(Machine).join(
            JobMachine, JobMachine.machine_id == Machine.id
        ).filter(JobMachine.job_id == normalized_job_id).order_by(Machine.machine_name).all()

        employee_stats = {}
        if employees:
            employee_stats = {
                row[0]: (row[1], row[2]) for row in session.query(
                    JobEmployee.employee_id,
                    func.count(func.distinct(JobEmployee.job_id)),
                    func.max(JobEmployee.assigned_at)
                ).filter(
                    JobEmployee.employee_id.in_([e.id for e in employees])
                ).group_by(JobEmployee.employee_id).all()
            }

        machine_stats = {}
        if machines:
            machine_stats = {
                row[0]: (row[1], row[2]) for row in session.query(
                    JobMachine.machine_id,
                    func.count(func.distinct(JobMachine.job_id)),
                    func.max(JobMachine.assigned_at)
                ).filter(
                    JobMachine.machine_id.in_([m.id for m in machines])
                ).group_by(JobMachine.machine_id).all()
            }

        return jsonify({
            'success': True,
            'employees': [{
                'id': e.id,
                'name': e.name,
                'position': e.position,
                'active': e.is_active,
                'assignments_count': employee_stats.get(e.id, (0, None))[0],
                'last_assigned_at': format_timestamp(employee_stats.get(e.id, (0, None))[1]),
            } for e in employees],
            'machines': [{
                'id': m.id,
                'machineName': m.machine_name,
                'status': m.status,
                'assignments_count': machine_stats.get(m.id, (0, None))[0],
                'last_assigned_at': format_timestamp(machine_stats.get(m.id, (0, None))[1]),
            } for m in machines],
        }), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching assigned resources for job {job_id}: {e}")
        return jsonify({'success': False, 'message': f"Internal server error: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@assignment_bp.route('/by-date/<date>', methods=['GET'])
def get_jobs_by_date(date):
    job_date = to_date(date)
    if not job_date:
        return jsonify({'success': False, 'message': 'Invalid date format'}), 400

    session = SessionLocal()
    try:
        jobs = session.query(Job).filter(Job.start_date == job_date).order_by(Job.job_name).all()
        return jsonify({'success': True, 'jobs': [j.to_dict() for j in jobs]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching jobs for {date}: {e}")
        return jsonify({'success': False, 'message': f"Internal server error: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@assignment_bp.route('/by-date-range/<start_date>/<end_date>', methods=['GET'])
def get_jobs_by_date_range(start_date, end_date):
    start = to_date(start_date)
    end = to_date(end_date)
    if not start or not end:
        return jsonify({'success': False, 'message': 'Invalid date format'}), 400
    if start > end:
        return jsonify({'success': False, 'message': 'Start date must be on or before end date'}), 400

    session = SessionLocal()
    try:
        jobs = jobs_overlapping(session.query(Job), start, end).order_by(
            Job.start_date.desc(), Job.id.desc()
        ).all()
        return jsonify({'success': True, 'jobs': [j.to_dict() for j in jobs]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching jobs between {start_date} and {end_date}: {e}")
        return jsonify({'success': False, 'message': f"Internal server error: {e}", 'error': str(e)}), 500
    finally:
        session.close()


def _availability_range(data):
    if not data.get('startDate') or not data.get('endDate'):
        return None, None, 'Both start date and end date are required'
    start = to_date(data.get('startDate'))
    end = to_date(data.get('endDate'))
    if not start or not end:
        return None, None, 'Invalid date format'
    if start > end:
        return None, None, 'Start date must be on or before end date'
    return start, end, None


@assignment_bp.route('/employee-availability', methods=['POST'])
def check_employee_availability():
    start, end, error = _availability_range(request.get_json(silent=True) or {})
    if error:
        return jsonify({'success': False, 'message': error}), 400

    session = SessionLocal()
    try:
        employees = session.query(Employee).order_by(Employee.name).all()
        conflicts = conflicting_jobs_by_resource(session, JobEmployee, JobEmployee.employee_id, start, end)

        results = []
        for e in employees:
            conflicting_jobs = conflicts.get(e.id, [])
            results.append({
                'id': e.id,
                'name': e.name,
                'position': e.position,
                'active': e.is_active,
                'isAvailable': e.is_active and not conflicting_jobs,
                'conflictingJobs': conflicting_jobs,
            })

        available = sum(1 for r in results if r['isAvailable'])
        return jsonify({
            'success': True,
            'employees': results,
            'availableCount': available,
            'unavailableCount': len(results) - available,
        }), 200
    except Exception as e:
        current_app.logger.exception(f"Error checking employee availability: {e}")
        return jsonify({'success': False, 'message': f"Internal server error: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@assignment_bp.route('/machine-availability', methods=['POST'])
def check_machine_availability():
    start, end, error = _availability_range(request.get_json(silent=True) or {})
    if error:
        return jsonify({'success': False, 'message': error}), 400

    session = SessionLocal()
    try:
        machines = session.query(Machine).order_by(Machine.machine_name).all()
        conflicts = conflicting_jobs_by_resource(session, JobMachine, JobMachine.machine_id, start, end)

        results = []
        for m in machines:
            conflicting_jobs = conflicts.get(m.id, [])
            results.append({
                'id': m.id,
                'machineName': m.machine_name,
                'status': m.status,
                'isAvailable': m.status == 'Active' and not conflicting_jobs,
                'conflictingJobs': conflicting_jobs,
            })

        available = sum(1 for r in results if r['isAvailable'])
        return jsonify({
            'success': True,
            'machines': results,
            'availableCount': available,
            'unavailableCount': len(results) - available,
        }), 200
    except Exception as e:
        current_app.logger.exception(f"Error checking machine availability: {e}")
        return jsonify({'success': False, 'message': f"Internal server error: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@assignment_bp.route('/all', methods=['GET'])
def get_all_jobs():
    """Every job, newest first, with how many employees and machines are booked on it."""
    session = SessionLocal()
    try:
        jobs = session.query(Job).order_by(Job.id.desc()).all()
        employee_counts = dict(session.query(
            JobEmployee.job_id, func.count(JobEmployee.id)
        ).group_by(JobEmployee.job_id).all())
        machine_counts = dict(session.query(
            JobMachine.job_id, func.count(JobMachine.id)
        ).group_by(JobMachine.job_id).all())

        results = []
        for job in jobs:
            data = job.to_dict()
            data['employeeCount'] = employee_counts.get(job.id, 0)
            data['machineCount'] = machine_counts.get(job.id, 0)
            results.append(data)

        return jsonify({'success': True, 'jobs': results}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching jobs: {e}")
        return jsonify({'success': False, 'message': f"Internal server error: {e}", 'error': str(e)}), 500
    finally:
        session.close()
