import os
import tempfile
from datetime import date
from decimal import Decimal

import pytest

# The engine is built at import time, so point it at a throwaway database first
_DB_DIR = tempfile.mkdtemp(prefix='ironworks-tests-')
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_DB_DIR, 'ironworks-test.db')}"

from ironworks.app import create_app  # noqa: E402
from ironworks.db import Base, engine, SessionLocal  # noqa: E402
from ironworks.models import (  # noqa: E402
    Customer, Employee, Machine, Material, Quotation, QuotationMaterial, Invoice, Job,
    JobEmployee, JobMachine
)

SECRET_KEY = 'test-secret-key'


@pytest.fixture
def app(tmp_path):
    Base.metadata.drop_all(bind=engine)
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': SECRET_KEY,
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
    })
    yield app
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(app):
    return app.test_client()


class Factory:
    """Persists model rows in their own session and hands back detached copies."""

    def _save(self, *objects):
        session = SessionLocal()
        try:
            session.add_all(objects)
            session.commit()
            return objects[0]
        finally:
            session.close()

    def customer(self, email='ann@example.com', password='secret123', name='Ann Perera', tel_num='0712345678'):
        customer = Customer(customer_name=name, email=email, tel_num=tel_num)
        customer.set_password(password)
        return self._save(customer)

    def employee(self, name='Kamal', position='Welder', salary='55000', active=1):
        return self._save(Employee(name=name, position=position, salary=Decimal(salary), active=active))

    def machine(self, name='Arc Welder', status='Active', hourly_rate='1200'):
        return self._save(Machine(machine_name=name, status=status, hourly_rate=Decimal(hourly_rate)))

    def material(self, name='Steel bar', qty='20', price='50'):
        return self._save(Material(item_name=name, available_qty=Decimal(qty), unit_price=Decimal(price)))

    def quotation(self, customer, status='Pending', customer_status='Pending', amount='1000',
                  immediate=date(2025, 7, 10), description='Front gate', materials=()):
        quotation = Quotation(
            customer_id=customer.id,
            customer_name=customer.customer_name,
            job_description=description,
            job_category='Gates',
            quotation_amount=Decimal(amount),
            status=status,
            customer_status=customer_status,
            phone=customer.tel_num,
            location='Colombo',
            immediate=immediate,
            job_code='JOB-001',
        )
        quotation.materials = [
            QuotationMaterial(
                material_id=m.get('material_id'),
                material_name=m['material_name'],
                quantity=Decimal(str(m['quantity'])),
                unit_price=Decimal(str(m['unit_price'])),
            )
            for m in materials
        ]
        return self._save(quotation)

    def invoice(self, quotation, total='1000', paid='0', payment_status='Pending'):
        return self._save(Invoice(
            quotation_id=quotation.id,
            total_amount=Decimal(total),
            paid_amount=Decimal(paid),
            payment_status=payment_status,
        ))

    def job(self, name='Gate install', start_date=date(2025, 7, 1), finish_date=None, status='Not Started',
            quotation=None, invoice=None, customer=None):
        return self._save(Job(
            job_name=name,
            start_date=start_date,
            finish_date=finish_date,
            status=status,
            quotation_id=quotation.id if quotation else None,
            invoice_id=invoice.id if invoice else None,
            customer_id=customer.id if customer else (quotation.customer_id if quotation else None),
        ))

    def booking(self, job, employee=None, machine=None, job_date=None):
        job_date = job_date or job.start_date
        if employee:
            return self._save(JobEmployee(job_id=job.id, employee_id=employee.id, job_date=job_date))
        return self._save(JobMachine(job_id=job.id, machine_id=machine.id, job_date=job_date))


@pytest.fixture
def factory(app):
    return Factory()


@pytest.fixture
def fetch(app):
    """Read a fresh copy of a row, bypassing any cached state."""
    def _fetch(model, row_id):
        session = SessionLocal()
        try:
            return session.get(model, row_id)
        finally:
            session.close()
    return _fetch


@pytest.fixture
def count(app):
    def _count(model, **filters):
        session = SessionLocal()
        try:
            return session.query(model).filter_by(**filters).count()
        finally:
            session.close()
    return _count


@pytest.fixture
def auth_headers():
    def _headers(customer):
        return {'Authorization': f"Bearer {customer.generate_jwt_token(SECRET_KEY)}"}
    return _headers
