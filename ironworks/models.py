from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Enum, ForeignKey, Text, Numeric, UniqueConstraint
)
from sqlalchemy.orm import relationship
from werkzeug.security import generate_password_hash, check_password_hash
import jwt

from .db import Base, SessionLocal
from .utils.date_utils import format_date_for_response, parse_bool

# ----------------------------------
# Helpers / Enums
# ----------------------------------

APPROVAL_STATUSES = ('Pending', 'Approved', 'Rejected')
PAYMENT_STATUSES = ('Pending', 'Partially Paid', 'Completed')
JOB_STATUSES = ('Not Started', 'Pending', 'In Progress', 'Completed', 'Cancelled', 'Delivered')
MACHINE_STATUSES = ('Active', 'In Maintenance', 'Retired')

QUOTATION_STATUS_ENUM = Enum(*APPROVAL_STATUSES, name='quotation_status_enum')
CUSTOMER_STATUS_ENUM = Enum(*APPROVAL_STATUSES, name='customer_status_enum')
PAYMENT_STATUS_ENUM = Enum(*PAYMENT_STATUSES, name='payment_status_enum')
JOB_STATUS_ENUM = Enum(*JOB_STATUSES, name='job_status_enum')
MACHINE_STATUS_ENUM = Enum(*MACHINE_STATUSES, name='machine_status_enum')

CENT = Decimal('0.01')


def _money(value):
    return float(value) if value is not None else None


def to_decimal(value):
    """Coerce request numbers to Decimal without float artefacts."""
    if value is None or value == '':
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value):
    """Round a Decimal amount to whole cents, half up, as the Numeric(12, 2) columns store it."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ----------------------------------
# Customers & Auth
# ----------------------------------

class Customer(Base):
    __tablename__ = 'customers'

    id = Column(Integer, primary_key=True)
    customer_name = Column(String(200), nullable=False)
    email = Column(String(200), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    tel_num = Column(String(20))
    profile_image = Column(String(255))
    join_date = Column(DateTime, default=datetime.utcnow)

    quotations = relationship('Quotation', back_populates='customer', lazy=True)
    jobs = relationship('Job', back_populates='customer', lazy=True)

    def __repr__(self):
        return f'<Customer {self.email}>'

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def generate_jwt_token(self, secret_key: str, expires_in_days: int = 7) -> str:
        payload = {
            'customer_id': self.id,
            'email': self.email,
            'exp': datetime.utcnow() + timedelta(days=expires_in_days),
            'iat': datetime.utcnow(),
        }
        return jwt.encode(payload, secret_key, algorithm='HS256')

    @staticmethod
    def verify_jwt_token(token: str, secret_key: str, session=None):
        """Return the customer a token was issued to, or None when it is expired, forged or orphaned."""
        try:
            payload = jwt.decode(token, secret_key, algorithms=['HS256'])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

        local_session = session or SessionLocal()
        try:
            return local_session.get(Customer, payload.get('customer_id'))
        finally:
            if session is None:
                local_session.close()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'customer_name': self.customer_name,
            'email': self.email,
            'tel_num': self.tel_num,
            'profile_image': self.profile_image,
            'join_date': self.join_date.isoformat() if self.join_date else None,
        }


# ----------------------------------
# Resources: employees, machines, materials
# ----------------------------------

class Employee(Base):
    __tablename__ = 'employees'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    position = Column(String(100), nullable=False)
    salary = Column(Numeric(10, 2), nullable=False)
    # 0/1 on disk, read through parse_bool
    active = Column(Integer, nullable=False, default=1)
    email = Column(String(200))
    phone = Column(String(50))
    address = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    image = relationship('EmployeeImage', back_populates='employee', uselist=False,
                         cascade='all, delete-orphan')
    bookings = relationship('JobEmployee', back_populates='employee', lazy=True,
                            cascade='all, delete-orphan')

    @property
    def is_active(self):
        return parse_bool(self.active)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'position': self.position,
            'salary': _money(self.salary),
            'active': self.is_active,
            'email': self.email or None,
            'phone': self.phone or None,
            'address': self.address or None,
            'profileImage': self.image.file_name if self.image else None,
        }

    def __repr__(self):
        return f'<Employee {self.name}>'


class EmployeeImage(Base):
    __tablename__ = 'employee_images'

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey('employees.id'), nullable=False, unique=True)
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(100))
    file_name = Column(String(255), nullable=False)

    employee = relationship('Employee', back_populates='image')


class Machine(Base):
    __tablename__ = 'machines'

    id = Column(Integer, primary_key=True)
    machine_name = Column(String(200), nullable=False)
    description = Column(Text)
    purchase_date = Column(Date)
    status = Column(MACHINE_STATUS_ENUM, nullable=False, default='Active')
    hourly_rate = Column(Numeric(10, 2))
    last_maintenance_date = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow)

    images = relationship('MachineImage', back_populates='machine', lazy=True,
                          cascade='all, delete-orphan')
    maintenance_records = relationship('MachineMaintenance', back_populates='machine', lazy=True,
                                       cascade='all, delete-orphan')
    bookings = relationship('JobMachine', back_populates='machine', lazy=True,
                            cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'machineName': self.machine_name,
            'description': self.description,
            'purchaseDate': format_date_for_response(self.purchase_date),
            'status': self.status,
            'hourlyRate': _money(self.hourly_rate),
            'lastMaintenanceDate': format_date_for_response(self.last_maintenance_date),
            'images': [img.file_name for img in self.images],
        }

    def __repr__(self):
        return f'<Machine {self.machine_name} ({self.status})>'


class MachineImage(Base):
    __tablename__ = 'machine_images'

    id = Column(Integer, primary_key=True)
    machine_id = Column(Integer, ForeignKey('machines.id'), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(100))
    file_name = Column(String(255), nullable=False)

    machine = relationship('Machine', back_populates='images')


class MachineMaintenance(Base):
    __tablename__ = 'machine_maintenance'

    id = Column(Integer, primary_key=True)
    machine_id = Column(Integer, ForeignKey('machines.id'), nullable=False)
    maintenance_date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    cost = Column(Numeric(10, 2))
    technician = Column(String(200))
    next_maintenance_date = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow)

    machine = relationship('Machine', back_populates='maintenance_records')

    def to_dict(self):
        return {
            'id': self.id,
            'machine_id': self.machine_id,
            'maintenance_date': format_date_for_response(self.maintenance_date),
            'description': self.description,
            'cost': _money(self.cost),
            'technician': self.technician,
            'next_maintenance_date': format_date_for_response(self.next_maintenance_date),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Material(Base):
    __tablename__ = 'materials'

    id = Column(Integer, primary_key=True)
    item_name = Column(String(200), nullable=False)
    available_qty = Column(Numeric(12, 2), nullable=False, default=0)
    unit_price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    images = relationship('MaterialImage', back_populates='material', lazy=True,
                          cascade='all, delete-orphan')

    def to_dict(self, include_images=False):
        data = {
            'id': self.id,
            'itemName': self.item_name,
            'availableQty': _money(self.available_qty),
            'unitPrice': _money(self.unit_price),
        }
        if include_images:
            data['images'] = [img.file_name for img in self.images]
        return data

    def __repr__(self):
        return f'<Material {self.item_name} qty={self.available_qty}>'


class MaterialImage(Base):
    __tablename__ = 'material_images'

    id = Column(Integer, primary_key=True)
    material_id = Column(Integer, ForeignKey('materials.id'), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(100))
    file_name = Column(String(255), nullable=False)

    material = relationship('Material', back_populates='images')


# ----------------------------------
# Quotations
# ----------------------------------

class Quotation(Base):
    __tablename__ = 'quotations'

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False)
    customer_name = Column(String(200))
    job_description = Column(Text, nullable=False)
    job_category = Column(String(100))
    quotation_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(QUOTATION_STATUS_ENUM, nullable=False, default='Pending')
    customer_status = Column(CUSTOMER_STATUS_ENUM, nullable=False, default='Pending')
    phone = Column(String(50))
    location = Column(String(255))
    # date the customer needs the work by; becomes the job's finish_date
    immediate = Column(Date)
    job_code = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship('Customer', back_populates='quotations')
    materials = relationship('QuotationMaterial', back_populates='quotation', lazy=True,
                             cascade='all, delete-orphan', order_by='QuotationMaterial.id')
    invoices = relationship('Invoice', back_populates='quotation', lazy=True)
    jobs = relationship('Job', back_populates='quotation', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'customer_name': self.customer.customer_name if self.customer else self.customer_name,
            'job_description': self.job_description,
            'job_category': self.job_category,
            'quotation_amount': _money(self.quotation_amount),
            'status': self.status,
            'customer_status': self.customer_status,
            'phone': self.phone,
            'location': self.location,
            'immediate': format_date_for_response(self.immediate),
            'jobID': self.job_code,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Quotation {self.id} {self.status}/{self.customer_status}>'


class QuotationMaterial(Base):
    __tablename__ = 'quotation_materials'

    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey('quotations.id'), nullable=False)
    material_id = Column(Integer, ForeignKey('materials.id'))
    material_name = Column(String(200), nullable=False)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    quotation = relationship('Quotation', back_populates='materials')

    @property
    def line_total(self):
        return (self.quantity or 0) * (self.unit_price or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'quotation_id': self.quotation_id,
            'material_id': self.material_id,
            'material_name': self.material_name,
            'quantity': _money(self.quantity),
            'unit_price': _money(self.unit_price),
            'line_total': _money(self.line_total),
        }


# ----------------------------------
# Invoicing & Payments
# ----------------------------------

class Invoice(Base):
    __tablename__ = 'invoices'
    __table_args__ = (
        UniqueConstraint('quotation_id', name='uq_invoice_quotation'),
    )

    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey('quotations.id'), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    payment_status = Column(PAYMENT_STATUS_ENUM, nullable=False, default='Pending')
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    quotation = relationship('Quotation', back_populates='invoices')
    items = relationship('InvoiceItem', back_populates='invoice', lazy=True,
                         cascade='all, delete-orphan', order_by='InvoiceItem.id')

    @property
    def balance(self):
        return (self.total_amount or 0) - (self.paid_amount or 0)

    def apply_payment(self, amount):
        """Add a payment and re-derive payment_status. Completed is never downgraded."""
        self.paid_amount = to_money((self.paid_amount or Decimal('0')) + amount)
        if self.paid_amount >= self.total_amount:
            self.payment_status = 'Completed'
        elif self.payment_status != 'Completed':
            self.payment_status = 'Partially Paid' if self.paid_amount > 0 else 'Pending'
        return self.payment_status

    def to_dict(self, include_items=False):
        quotation = self.quotation
        data = {
            'invoice_id': self.id,
            'quotation_id': self.quotation_id,
            'total_amount': _money(self.total_amount),
            'paid_amount': _money(self.paid_amount),
            'balance': _money(self.balance),
            'payment_status': self.payment_status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'customer_id': quotation.customer_id if quotation else None,
            'job_description': quotation.job_description if quotation else None,
            'customer_name': quotation.customer.customer_name if quotation and quotation.customer else None,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f'<Invoice {self.id} {self.paid_amount}/{self.total_amount}>'


class InvoiceItem(Base):
    __tablename__ = 'invoice_items'

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id'), nullable=False)
    material_id = Column(Integer, ForeignKey('materials.id'))
    material_name = Column(String(200), nullable=False)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    invoice = relationship('Invoice', back_populates='items')

    def to_dict(self):
        return {
            'material_name': self.material_name,
            'quantity': _money(self.quantity),
            'unit_price': _money(self.unit_price),
            'material_id': self.material_id,
        }


# ----------------------------------
# Jobs & resource bookings
# ----------------------------------

class Job(Base):
    __tablename__ = 'jobs'

    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey('quotations.id'))
    invoice_id = Column(Integer, ForeignKey('invoices.id'))
    customer_id = Column(Integer, ForeignKey('customers.id'))
    job_name = Column(String(255))
    job_category = Column(String(100))
    # scheduling anchor for conflict detection
    start_date = Column(Date)
    finish_date = Column(Date)
    status = Column(JOB_STATUS_ENUM, nullable=False, default='Not Started')
    quotation_amount = Column(Numeric(12, 2))
    job_code = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    quotation = relationship('Quotation', back_populates='jobs')
    invoice = relationship('Invoice')
    customer = relationship('Customer', back_populates='jobs')
    employee_bookings = relationship('JobEmployee', back_populates='job', lazy=True,
                                     cascade='all, delete-orphan')
    machine_bookings = relationship('JobMachine', back_populates='job', lazy=True,
                                    cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'job_name': self.job_name,
            'start_date': format_date_for_response(self.start_date),
            'finish_date': format_date_for_response(self.finish_date),
            'status': self.status,
            'quotation_id': self.quotation_id,
            'invoice_id': self.invoice_id,
            'job_category': self.job_category,
            'customer_id': self.customer_id,
            'jobID': self.job_code,
            'quotation_amount': _money(self.quotation_amount),
        }

    def __repr__(self):
        return f'<Job {self.id}: {self.job_name} on {self.start_date}>'


class JobEmployee(Base):
    __tablename__ = 'job_employees'
    __table_args__ = (
        UniqueConstraint('job_id', 'employee_id', name='uq_job_employee'),
        UniqueConstraint('employee_id', 'job_date', name='uq_employee_job_date'),
    )

    id = Column(Integer, primary_key=True)
    job_id = Column(Integer, ForeignKey('jobs.id'), nullable=False)
    employee_id = Column(Integer, ForeignKey('employees.id'), nullable=False)
    job_date = Column(Date, nullable=False)
    assigned_at = Column(DateTime, default=datetime.utcnow)

    job = relationship('Job', back_populates='employee_bookings')
    employee = relationship('Employee', back_populates='bookings')

    def __repr__(self):
        return f'<JobEmployee job={self.job_id} employee={self.employee_id} on {self.job_date}>'


class JobMachine(Base):
    __tablename__ = 'job_machines'
    __table_args__ = (
        UniqueConstraint('job_id', 'machine_id', name='uq_job_machine'),
        UniqueConstraint('machine_id', 'job_date', name='uq_machine_job_date'),
    )

    id = Column(Integer, primary_key=True)
    job_id = Column(Integer, ForeignKey('jobs.id'), nullable=False)
    machine_id = Column(Integer, ForeignKey('machines.id'), nullable=False)
    job_date = Column(Date, nullable=False)
    assigned_at = Column(DateTime, default=datetime.utcnow)

    job = relationship('Job', back_populates='machine_bookings')
    machine = relationship('Machine', back_populates='bookings')

    def __repr__(self):
        return f'<JobMachine job={self.job_id} machine={self.machine_id} on {self.job_date}>'

