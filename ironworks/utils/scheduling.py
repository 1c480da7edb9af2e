"""
Query helpers for resource scheduling.

Conflicts are per calendar day: a resource booked on one job cannot be booked
on a different job whose start_date is the same day. Bookings keep a copy of
the job's start_date (job_date) so the database unique constraints on
(employee_id, job_date) / (machine_id, job_date) back up the checks below.
"""
from sqlalchemy import and_, func, or_

from ..models import Employee, Job, JobEmployee, JobMachine, Machine
from .date_utils import format_date_for_response


def find_missing_ids(session, model, ids):
    if not ids:
        return []
    found = {row[0] for row in session.query(model.id).filter(model.id.in_(ids)).all()}
    return [i for i in ids if i not in found]


def find_inactive_employees(session, employee_ids):
    if not employee_ids:
        return []
    employees = session.query(Employee).filter(Employee.id.in_(employee_ids)).order_by(Employee.id).all()
    return [{'id': e.id, 'name': e.name} for e in employees if not e.is_active]


def find_unavailable_machines(session, machine_ids):
    if not machine_ids:
        return []
    machines = session.query(Machine).filter(
        Machine.id.in_(machine_ids),
        Machine.status != 'Active'
    ).order_by(Machine.id).all()
    return [{'id': m.id, 'machineName': m.machine_name, 'status': m.status} for m in machines]


def find_employee_conflicts(session, employee_ids, job_id, job_date):
    """Employees in `employee_ids` already booked on another job starting on `job_date`."""
    if not employee_ids:
        return []
    rows = session.query(Employee.id, Employee.name, Job.job_name, Job.id, Job.start_date).join(
        JobEmployee, JobEmployee.employee_id == Employee.id
    ).join(
        Job, JobEmployee.job_id == Job.id
    ).filter(
        JobEmployee.employee_id.in_(employee_ids),
        Job.id != job_id,
        Job.start_date == job_date
    ).distinct().order_by(Employee.id, Job.id).all()

    return [{
        'id': emp_id,
        'name': name,
        'job_name': job_name,
        'conflicting_job_id': conflicting_job_id,
        'job_date': format_date_for_response(start_date),
    } for emp_id, name, job_name, conflicting_job_id, start_date in rows]


def find_machine_conflicts(session, machine_ids, job_id, job_date):
    """Machines in `machine_ids` already booked on another job starting on `job_date`."""
    if not machine_ids:
        return []
    rows = session.query(Machine.id, Machine.machine_name, Job.job_name, Job.id, Job.start_date).join(
        JobMachine, JobMachine.machine_id == Machine.id
    ).join(
        Job, JobMachine.job_id == Job.id
    ).filter(
        JobMachine.machine_id.in_(machine_ids),
        Job.id != job_id,
        Job.start_date == job_date
    ).distinct().order_by(Machine.id, Job.id).all()

    return [{
        'id': machine_id,
        'machineName': name,
        'job_name': job_name,
        'conflicting_job_id': conflicting_job_id,
        'job_date': format_date_for_response(start_date),
    } for machine_id, name, job_name, conflicting_job_id, start_date in rows]


def describe_conflicts(rows, name_key='name'):
    return ", ".join(
        f'{row[name_key]} (assigned to job "{row["job_name"]}" #{row["conflicting_job_id"]} on {row["job_date"]})'
        for row in rows
    )


def overlap_filter(start, end):
    """
    Job overlaps [start, end] when it starts in the range, finishes in the
    range, or spans the whole range. A job with no finish date is one day long.
    """
    finish = func.coalesce(Job.finish_date, Job.start_date)
    return or_(
        and_(Job.start_date >= start, Job.start_date <= end),
        and_(finish >= start, finish <= end),
        and_(Job.start_date <= start, finish >= end),
    )


def jobs_overlapping(query, start, end):
    return query.filter(overlap_filter(start, end))


def conflicting_jobs_by_resource(session, booking_model, resource_column, start, end):
    """Map resource id -> list of overlapping jobs it is booked on."""
    rows = session.query(resource_column, Job).join(
        Job, booking_model.job_id == Job.id
    ).filter(overlap_filter(start, end)).order_by(Job.start_date, Job.id).all()

    conflicts = {}
    for resource_id, job in rows:
        conflicts.setdefault(resource_id, []).append({
            'job_id': job.id,
            'job_name': job.job_name,
            'start_date': format_date_for_response(job.start_date),
            'finish_date': format_date_for_response(job.finish_date),
        })
    return conflicts


def has_bookings(session, job_id):
    return bool(
        session.query(JobEmployee.id).filter(JobEmployee.job_id == job_id).first()
        or session.query(JobMachine.id).filter(JobMachine.job_id == job_id).first()
    )


def sync_booking_dates(session, job):
    """
    Re-stamp a job's bookings with its current start_date and flush, so a
    clash with another booking surfaces here as an IntegrityError.
    """
    session.query(JobEmployee).filter(JobEmployee.job_id == job.id).update(
        {JobEmployee.job_date: job.start_date}, synchronize_session=False
    )
    session.query(JobMachine).filter(JobMachine.job_id == job.id).update(
        {JobMachine.job_date: job.start_date}, synchronize_session=False
    )
    session.flush()
