from decimal import Decimal, InvalidOperation
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..models import (
    Quotation, QuotationMaterial, Invoice, InvoiceItem, Job, Material,
    APPROVAL_STATUSES, JOB_STATUSES, to_decimal, to_money
)
from ..db import SessionLocal
from ..utils.date_utils import normalize_id, to_date, format_date_for_response
from ..utils.scheduling import has_bookings, sync_booking_dates
from .auth_helpers import token_required

# Mounted at /api/quotation
quotation_bp = Blueprint('quotation', __name__)

# Surcharges the admin screen adds on top of the material subtotal
LABOUR_RATE = Decimal('0.10')
MACHINE_RATE = Decimal('0.08')

QUOTATION_REQUIRED_FIELDS = (
    'job_description', 'job_category', 'userId', 'userName', 'phone', 'location', 'immediate', 'jobID'
)


class MaterialLineError(ValueError):
    pass


class MaterialNotFound(LookupError):
    pass


def _parse_amount(value):
    """Decimal for a JSON number/string, None when absent or not a finite number."""
    try:
        amount = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if amount is None or isinstance(value, bool) or not amount.is_finite():
        return None
    return amount


def _parse_money(value):
    """Like _parse_amount, rounded to cents."""
    amount = _parse_amount(value)
    return to_money(amount) if amount is not None else None


def _parse_material_lines(session, materials):
    """
    Validate a list of {material_name, quantity, unit_price, material_id?}.
    A line may omit material_name when material_id names a stocked material.
    Raises MaterialNotFound for a material_id with no material behind it.
    """
    if not isinstance(materials, list):
        raise MaterialLineError('Materials must be a list')

    lines = []
    for index, item in enumerate(materials, start=1):
        if not isinstance(item, dict):
            raise MaterialLineError(f'Material line {index} is malformed')

        material_id = normalize_id(item.get('material_id'))
        name = str(item.get('material_name') or '').strip()
        if material_id:
            material = session.get(Material, material_id)
            if not material:
                raise MaterialNotFound(f'Material not found: {material_id}')
            name = name or material.item_name
        if not name:
            raise MaterialLineError(f'Material line {index} needs a material name')

        quantity = _parse_amount(item.get('quantity'))
        unit_price = _parse_amount(item.get('unit_price'))
        if quantity is None or quantity <= 0:
            raise MaterialLineError(f'Quantity must be greater than zero for {name}')
        if unit_price is None or unit_price < 0:
            raise MaterialLineError(f'Unit price must be zero or more for {name}')

        lines.append({
            'material_id': material_id,
            'material_name': name,
            'quantity': quantity,
            'unit_price': unit_price,
        })
    return lines


def calculate_quotation_total(lines):
    subtotal = sum((line['quantity'] * line['unit_price'] for line in lines), Decimal('0'))
    total = subtotal * (1 + LABOUR_RATE + MACHINE_RATE)
    return to_money(total)


def _fmt(value):
    return f"{float(value):g}"


def _snapshot_lines(quotation):
    return [{
        'material_id': m.material_id,
        'material_name': m.material_name,
        'quantity': m.quantity,
        'unit_price': m.unit_price,
    } for m in quotation.materials]


# ============================================
# QUOTATIONS
# ============================================

@quotation_bp.route('/create', methods=['POST'])
@token_required
def create_quotation():
    data = request.get_json(silent=True) or {}
    customer = request.current_user

    values = {field: data.get(field) for field in QUOTATION_REQUIRED_FIELDS}
    values['userId'] = values['userId'] or customer.id
    values['userName'] = values['userName'] or customer.customer_name

    if any(not values[field] for field in QUOTATION_REQUIRED_FIELDS):
        return jsonify({
            'success': False,
            'message': 'Job description, job category, userId, userName, phone, location, '
                       'immediate, and jobID are required'
        }), 400

    if normalize_id(values['userId']) != customer.id:
        return jsonify({'success': False, 'message': 'Quotations can only be requested for your own account'}), 403

    required_by = to_date(values['immediate'])
    if not required_by:
        return jsonify({'success': False, 'message': 'Invalid required-by date'}), 400

    session = SessionLocal()
    try:
        quotation = Quotation(
            customer_id=customer.id,
            customer_name=values['userName'],
            job_description=values['job_description'],
            job_category=values['job_category'],
            quotation_amount=Decimal('0.00'),
            status='Pending',
            customer_status='Pending',
            phone=values['phone'],
            location=values['location'],
            immediate=required_by,
            job_code=str(values['jobID']),
        )
        session.add(quotation)
        session.commit()
        current_app.logger.info(f"Quotation {quotation.id} created for customer {customer.id}")

        return jsonify({
            'success': True,
            'message': 'Quotation created successfully',
            'quotationId': quotation.id,
            'jobID': quotation.job_code,
        }), 201
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error creating quotation: {e}")
        return jsonify({'success': False, 'message': f"Error creating quotation: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get', methods=['POST'])
@token_required
def get_quotations():
    """Quotations of the logged-in customer, newest first."""
    session = SessionLocal()
    try:
        quotations = session.query(Quotation).filter(
            Quotation.customer_id == request.current_user.id
        ).order_by(Quotation.id.desc()).all()
        return jsonify({'success': True, 'quotations': [q.to_dict() for q in quotations]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching quotations: {e}")
        return jsonify({'success': False, 'message': f"Error fetching quotations: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/admin', methods=['GET'])
def get_all_quotations_for_admin():
    session = SessionLocal()
    try:
        quotations = session.query(Quotation).order_by(Quotation.id.desc()).all()
        return jsonify({'success': True, 'quotations': [q.to_dict() for q in quotations]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching quotations for admin: {e}")
        return jsonify({'success': False, 'message': f"Error fetching quotations: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_one/<quotation_id>', methods=['GET'])
def get_quotation_by_id(quotation_id):
    session = SessionLocal()
    try:
        quotation = session.get(Quotation, normalize_id(quotation_id)) if normalize_id(quotation_id) else None
        if not quotation:
            return jsonify({'success': False, 'message': 'Quotation not found'}), 404
        return jsonify({'success': True, 'quotation': quotation.to_dict()}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching quotation {quotation_id}: {e}")
        return jsonify({'success': False, 'message': f"Error fetching quotation: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/status', methods=['PUT'])
def update_quotation_status():
    """Admin decision on a quotation, optionally rewording the job description."""
    data = request.get_json(silent=True) or {}
    quotation_id = normalize_id(data.get('quotationId'))
    status = data.get('status')

    if not quotation_id or not status:
        return jsonify({'success': False, 'message': 'Quotation ID and status are required'}), 400
    if status not in APPROVAL_STATUSES:
        return jsonify({'success': False, 'message': f"Invalid status: {status}"}), 400

    session = SessionLocal()
    try:
        quotation = session.get(Quotation, quotation_id)
        if not quotation:
            return jsonify({'success': False, 'message': 'Quotation not found'}), 404

        quotation.status = status
        if data.get('job_description') is not None:
            quotation.job_description = data['job_description']

        session.commit()
        current_app.logger.info(f"Quotation {quotation_id} admin status set to {status}")
        return jsonify({'success': True, 'message': 'Quotation status updated successfully'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error updating quotation status: {e}")
        return jsonify({'success': False, 'message': f"Error updating quotation status: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/customer_status', methods=['PUT'])
@token_required
def update_customer_quotation_status():
    data = request.get_json(silent=True) or {}
    quotation_id = normalize_id(data.get('quotationId'))
    customer_status = data.get('customer_status')

    if not quotation_id or not customer_status:
        return jsonify({'success': False, 'message': 'Quotation ID and customer status are required'}), 400
    if customer_status not in APPROVAL_STATUSES:
        return jsonify({'success': False, 'message': f"Invalid customer status: {customer_status}"}), 400

    session = SessionLocal()
    try:
        quotation = session.get(Quotation, quotation_id)
        if not quotation:
            return jsonify({'success': False, 'message': 'Quotation not found'}), 404
        if quotation.customer_id != request.current_user.id:
            return jsonify({'success': False, 'message': 'Not authorized to update this quotation'}), 403

        quotation.customer_status = customer_status
        session.commit()
        current_app.logger.info(f"Quotation {quotation_id} customer status set to {customer_status}")
        return jsonify({'success': True, 'message': 'Customer status updated successfully'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error updating customer status: {e}")
        return jsonify({'success': False, 'message': f"Error updating customer status: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/update_amount', methods=['PUT'])
def update_quotation_amount():
    """
    Set the quoted amount. When `materials` is sent, the saved material
    snapshot is replaced in the same transaction and, if no amount is given,
    the amount is computed from it (subtotal + 10% labour + 8% machine).
    """
    data = request.get_json(silent=True) or {}
    quotation_id = normalize_id(data.get('quotationId'))
    has_amount = data.get('quotation_amount') is not None
    materials = data.get('materials')

    if not quotation_id or (not has_amount and materials is None):
        return jsonify({'success': False, 'message': 'Quotation ID and amount are required'}), 400

    amount = None
    if has_amount:
        amount = _parse_money(data.get('quotation_amount'))
        if amount is None or amount < 0:
            return jsonify({'success': False, 'message': 'Quotation amount must be a non-negative number'}), 400

    session = SessionLocal()
    try:
        quotation = session.get(Quotation, quotation_id)
        if not quotation:
            return jsonify({'success': False, 'message': 'Quotation not found'}), 404

        if materials is not None:
            try:
                lines = _parse_material_lines(session, materials)
            except MaterialLineError as e:
                return jsonify({'success': False, 'message': str(e)}), 400
            except MaterialNotFound as e:
                return jsonify({'success': False, 'message': str(e)}), 404

            quotation.materials = [QuotationMaterial(**line) for line in lines]
            if amount is None:
                amount = calculate_quotation_total(lines)

        quotation.quotation_amount = amount
        session.commit()
        current_app.logger.info(f"Quotation {quotation_id} amount set to {amount}")

        return jsonify({
            'success': True,
            'message': 'Quotation amount updated successfully',
            'quotation_amount': float(amount),
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error updating quotation amount: {e}")
        return jsonify({'success': False, 'message': f"Error updating quotation amount: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_materials/<quotation_id>', methods=['GET'])
def get_saved_materials(quotation_id):
    session = SessionLocal()
    try:
        materials = session.query(QuotationMaterial).filter(
            QuotationMaterial.quotation_id == normalize_id(quotation_id)
        ).order_by(QuotationMaterial.id).all()
        return jsonify({'success': True, 'materials': [m.to_dict() for m in materials]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching saved materials for quotation {quotation_id}: {e}")
        return jsonify({'success': False, 'message': f"Error fetching saved materials: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/save_material', methods=['POST'])
def save_quotation_material():
    data = request.get_json(silent=True) or {}
    quotation_id = normalize_id(data.get('quotationId'))
    if not quotation_id:
        return jsonify({'success': False, 'message': 'Quotation ID is required'}), 400

    session = SessionLocal()
    try:
        quotation = session.get(Quotation, quotation_id)
        if not quotation:
            return jsonify({'success': False, 'message': 'Quotation not found'}), 404

        try:
            line = _parse_material_lines(session, [data])[0]
        except MaterialLineError as e:
            return jsonify({'success': False, 'message': str(e)}), 400
        except MaterialNotFound as e:
            return jsonify({'success': False, 'message': str(e)}), 404

        session.add(QuotationMaterial(quotation_id=quotation.id, **line))
        session.commit()
        return jsonify({'success': True, 'message': 'Material added to quotation successfully'}), 201
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error saving quotation material: {e}")
        return jsonify({'success': False, 'message': f"Error saving quotation material: {e}", 'error': str(e)}), 500
    finally:
        session.close()


# ============================================
# INVOICES & PAYMENTS
# ============================================

@quotation_bp.route('/invoice_create', methods=['POST'])
def create_invoice():
    """
    Bill a customer-approved quotation. The invoice row, its items and the
    stock decrements for stocked materials commit together or not at all.
    """
    data = request.get_json(silent=True) or {}
    quotation_id = normalize_id(data.get('quotationId'))
    if not quotation_id:
        return jsonify({'success': False, 'message': 'Quotation ID is required'}), 400

    session = SessionLocal()
    try:
        quotation = session.get(Quotation, quotation_id)
        if not quotation:
            return jsonify({'success': False, 'message': 'Quotation not found'}), 404

        if quotation.customer_status != 'Approved':
            current_app.logger.warning(
                f"Invoice for quotation {quotation_id} refused: customer status is {quotation.customer_status}"
            )
            return jsonify({
                'success': False,
                'message': 'Cannot create invoice - waiting for customer approval'
            }), 400

        if session.query(Invoice.id).filter(Invoice.quotation_id == quotation.id).first():
            return jsonify({'success': False, 'message': 'An invoice already exists for this quotation'}), 400

        materials = data.get('materials')
        if materials:
            try:
                lines = _parse_material_lines(session, materials)
            except MaterialLineError as e:
                return jsonify({'success': False, 'message': str(e)}), 400
            except MaterialNotFound as e:
                return jsonify({'success': False, 'message': str(e)}), 404
        else:
            lines = _snapshot_lines(quotation)

        if data.get('invoiceAmount') is not None:
            total = _parse_money(data.get('invoiceAmount'))
        else:
            total = quotation.quotation_amount
        if total is None or total < 0:
            return jsonify({'success': False, 'message': 'Invoice amount must be a non-negative number'}), 400

        # Stock check across all lines before anything is written
        requested = {}
        for line in lines:
            if line['material_id']:
                requested[line['material_id']] = requested.get(line['material_id'], Decimal('0')) + line['quantity']

        stocked = {}
        if requested:
            stocked = {
                m.id: m for m in session.query(Material).filter(
                    Material.id.in_(list(requested))
                ).with_for_update().all()
            }

        shortfalls = [
            {
                'material_id': material_id,
                'itemName': stocked[material_id].item_name,
                'availableQty': float(stocked[material_id].available_qty),
                'requestedQty': float(quantity),
            }
            for material_id, quantity in requested.items()
            if material_id in stocked and stocked[material_id].available_qty < quantity
        ]
        if shortfalls:
            details = ', '.join(
                f"{s['itemName']} (available {_fmt(s['availableQty'])}, requested {_fmt(s['requestedQty'])})"
                for s in shortfalls
            )
            current_app.logger.warning(f"Invoice for quotation {quotation_id} refused: low stock {details}")
            return jsonify({
                'success': False,
                'message': f"Insufficient stock for: {details}",
                'insufficientMaterials': shortfalls,
            }), 400

        invoice = Invoice(
            quotation_id=quotation.id,
            total_amount=total,
            paid_amount=Decimal('0'),
            payment_status='Pending',
        )
        invoice.items = [
            InvoiceItem(
                material_id=line['material_id'] if line['material_id'] in stocked else None,
                material_name=line['material_name'],
                quantity=line['quantity'],
                unit_price=line['unit_price'],
            )
            for line in lines
        ]
        session.add(invoice)

        for material_id, quantity in requested.items():
            if material_id in stocked:
                stocked[material_id].available_qty = stocked[material_id].available_qty - quantity

        session.commit()
        current_app.logger.info(
            f"Invoice {invoice.id} created for quotation {quotation_id} with {len(lines)} items"
        )

        return jsonify({
            'success': True,
            'message': 'Invoice created successfully',
            'invoiceId': invoice.id,
        }), 201
    except IntegrityError as e:
        session.rollback()
        current_app.logger.warning(f"Invoice for quotation {quotation_id} lost a race with another request: {e.orig}")
        return jsonify({
            'success': False,
            'message': 'An invoice already exists for this quotation',
            'error': str(e.orig)
        }), 400
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error creating invoice for quotation {quotation_id}: {e}")
        return jsonify({'success': False, 'message': f"Error creating invoice: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/invoice_payment', methods=['POST'])
def add_payment():
    data = request.get_json(silent=True) or {}
    invoice_id = normalize_id(data.get('invoiceId'))
    amount = _parse_money(data.get('paymentAmount'))

    if not invoice_id:
        return jsonify({'success': False, 'message': 'Invoice ID is required'}), 400
    if amount is None or amount <= 0:
        return jsonify({'success': False, 'message': 'Payment amount must be a positive number'}), 400

    session = SessionLocal()
    try:
        invoice = session.get(Invoice, invoice_id)
        if not invoice:
            return jsonify({'success': False, 'message': 'Invoice not found'}), 404

        payment_status = invoice.apply_payment(amount)
        session.commit()
        current_app.logger.info(
            f"Payment of {amount} added to invoice {invoice_id}; paid {invoice.paid_amount} ({payment_status})"
        )

        return jsonify({
            'success': True,
            'message': 'Payment added successfully',
            'newPaidAmount': float(invoice.paid_amount),
            'paymentStatus': payment_status,
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error adding payment to invoice {invoice_id}: {e}")
        return jsonify({'success': False, 'message': f"Error adding payment: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_invoice_by_id', methods=['POST'])
def get_invoice_by_id():
    data = request.get_json(silent=True) or {}
    invoice_id = normalize_id(data.get('invoiceId'))
    if not invoice_id:
        return jsonify({'success': False, 'message': 'Invoice ID is required'}), 400

    session = SessionLocal()
    try:
        invoice = session.get(Invoice, invoice_id)
        if not invoice:
            return jsonify({'success': False, 'message': 'Invoice not found'}), 404
        return jsonify({'success': True, 'invoice': invoice.to_dict(include_items=True)}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching invoice {invoice_id}: {e}")
        return jsonify({'success': False, 'message': f"Error fetching invoice: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_invoice', methods=['GET'])
@token_required
def get_invoices_by_user():
    session = SessionLocal()
    try:
        invoices = session.query(Invoice).join(Quotation, Invoice.quotation_id == Quotation.id).filter(
            Quotation.customer_id == request.current_user.id
        ).order_by(Invoice.id.desc()).all()
        return jsonify({'success': True, 'invoices': [i.to_dict(include_items=True) for i in invoices]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching invoices: {e}")
        return jsonify({'success': False, 'message': f"Error fetching invoices: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_invoice2', methods=['POST'])
def get_invoice_for_user():
    data = request.get_json(silent=True) or {}
    user_id = normalize_id(data.get('userId'))
    invoice_id = normalize_id(data.get('invoiceId'))
    if not user_id or not invoice_id:
        return jsonify({'success': False, 'message': 'User ID and Invoice ID are required'}), 400

    session = SessionLocal()
    try:
        invoices = session.query(Invoice).join(Quotation, Invoice.quotation_id == Quotation.id).filter(
            Quotation.customer_id == user_id,
            Invoice.id == invoice_id
        ).order_by(Invoice.id.desc()).all()
        return jsonify({'success': True, 'invoices': [i.to_dict(include_items=True) for i in invoices]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching invoice {invoice_id} for user {user_id}: {e}")
        return jsonify({'success': False, 'message': f"Error fetching invoices: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_all', methods=['GET'])
def get_all_invoices_admin():
    session = SessionLocal()
    try:
        invoices = session.query(Invoice).order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()
        return jsonify({'success': True, 'invoices': [i.to_dict() for i in invoices]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching invoices: {e}")
        return jsonify({'success': False, 'message': f"Error fetching invoices: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_all_invoices', methods=['GET'])
def get_all_invoices():
    session = SessionLocal()
    try:
        invoices = session.query(Invoice).order_by(Invoice.id.desc()).all()
        return jsonify({'success': True, 'invoices': [i.to_dict(include_items=True) for i in invoices]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching all invoices: {e}")
        return jsonify({'success': False, 'message': f"Error fetching all invoices: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_partially_paid_invoices', methods=['GET'])
def get_partially_paid_invoices():
    """Partially paid invoices with their quotation details and the job already scheduled for them, if any."""
    session = SessionLocal()
    try:
        invoices = session.query(Invoice).filter(
            Invoice.payment_status == 'Partially Paid'
        ).order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()

        results = []
        for invoice in invoices:
            quotation = invoice.quotation
            data = invoice.to_dict()
            data.update({
                'id': invoice.id,
                'job_category': quotation.job_category,
                'jobID': quotation.job_code,
                'phone': quotation.phone,
                'location': quotation.location,
                'immediate': format_date_for_response(quotation.immediate),
                'tel_num': quotation.customer.tel_num if quotation.customer else None,
            })
            existing_job = session.query(Job).filter(
                Job.quotation_id == quotation.id
            ).order_by(Job.id).first()
            if existing_job:
                data['existingJob'] = existing_job.to_dict()
            results.append(data)

        return jsonify({'success': True, 'invoices': results}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching partially paid invoices: {e}")
        return jsonify({
            'success': False,
            'message': f"Error fetching partially paid invoices: {e}",
            'error': str(e)
        }), 500
    finally:
        session.close()


# ============================================
# JOBS
# ============================================

@quotation_bp.route('/get_partially_paid_jobs', methods=['GET'])
def get_partially_paid_jobs():
    session = SessionLocal()
    try:
        rows = session.query(Job, Invoice).join(
            Invoice, Job.quotation_id == Invoice.quotation_id
        ).filter(Invoice.payment_status == 'Partially Paid').order_by(Job.id.desc()).all()

        jobs = []
        for job, invoice in rows:
            data = job.to_dict()
            data['payment_status'] = invoice.payment_status
            data['customer_name'] = job.customer.customer_name if job.customer else None
            jobs.append(data)

        return jsonify({'success': True, 'jobs': jobs}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching partially paid jobs: {e}")
        return jsonify({'success': False, 'message': f"Error fetching partially paid jobs: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/create_or_update_job', methods=['POST'])
def create_or_update_job():
    """
    Schedule the job for an invoiced quotation.

    The job is found by `jobId` when the caller knows it; otherwise by the
    quotation, restricted to jobs on the same invoice or not yet linked to
    one. The quotation's required-by date becomes the finish date.
    """
    data = request.get_json(silent=True) or {}
    quotation_id = normalize_id(data.get('quotationId'))
    invoice_id = normalize_id(data.get('invoiceId'))
    job_id = normalize_id(data.get('jobId'))
    status = data.get('status') or None

    if not quotation_id:
        return jsonify({'success': False, 'message': 'Quotation ID is required'}), 400
    if status and status not in JOB_STATUSES:
        return jsonify({'success': False, 'message': f"Invalid job status: {status}"}), 400

    quotation_amount = None
    if data.get('quotationAmount') is not None:
        quotation_amount = _parse_money(data.get('quotationAmount'))
        if quotation_amount is None:
            return jsonify({'success': False, 'message': 'Quotation amount must be a number'}), 400

    session = SessionLocal()
    try:
        quotation = session.get(Quotation, quotation_id)
        if not quotation:
            return jsonify({'success': False, 'message': 'Quotation not found'}), 404

        start_date = to_date(data.get('actualStartDate'))
        if not start_date:
            return jsonify({'success': False, 'message': 'Invalid start date format'}), 400

        if invoice_id:
            invoice = session.get(Invoice, invoice_id)
            if not invoice:
                return jsonify({'success': False, 'message': 'Invoice not found'}), 404
            if invoice.quotation_id != quotation.id:
                return jsonify({'success': False, 'message': 'Invoice does not belong to this quotation'}), 400

        if job_id:
            job = session.get(Job, job_id)
            if not job:
                return jsonify({'success': False, 'message': 'Job not found'}), 404
            if job.quotation_id != quotation.id:
                return jsonify({'success': False, 'message': 'Job does not belong to this quotation'}), 400
        else:
            query = session.query(Job).filter(Job.quotation_id == quotation.id)
            if invoice_id:
                query = query.filter(or_(Job.invoice_id == invoice_id, Job.invoice_id.is_(None)))
            job = query.order_by(Job.id).first()

        created = job is None
        if created:
            job = Job(
                quotation_id=quotation.id,
                invoice_id=invoice_id,
                job_name=data.get('jobName') or quotation.job_description,
                job_category=data.get('jobCategory') or quotation.job_category,
                start_date=start_date,
                finish_date=quotation.immediate,
                status=status or 'Not Started',
                customer_id=normalize_id(data.get('customerId')) or quotation.customer_id,
                quotation_amount=quotation_amount if quotation_amount is not None else quotation.quotation_amount,
                job_code=data.get('jobID') or quotation.job_code,
            )
            session.add(job)
            session.flush()
        else:
            rescheduled = job.start_date != start_date
            job.start_date = start_date
            job.finish_date = quotation.immediate
            if status:
                job.status = status
            if invoice_id and not job.invoice_id:
                job.invoice_id = invoice_id
            if rescheduled:
                sync_booking_dates(session, job)

        session.commit()
        message = 'Job created successfully' if created else 'Job updated successfully'
        current_app.logger.info(f"{message}: job {job.id} for quotation {quotation_id} starting {start_date}")

        return jsonify({'success': True, 'message': message, 'jobId': job.id}), 200
    except IntegrityError as e:
        session.rollback()
        current_app.logger.warning(f"Rescheduling for quotation {quotation_id} clashes with other bookings: {e.orig}")
        return jsonify({
            'success': False,
            'message': f"Assigned resources are already booked on another job on {start_date}",
            'error': str(e.orig)
        }), 400
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error creating/updating job for quotation {quotation_id}: {e}")
        return jsonify({'success': False, 'message': f"Error creating/updating job: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_all_jobs', methods=['GET'])
def get_all_jobs():
    session = SessionLocal()
    try:
        jobs = session.query(Job).order_by(Job.id.desc()).all()
        return jsonify({'success': True, 'jobs': [j.to_dict() for j in jobs]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching jobs: {e}")
        return jsonify({'success': False, 'message': f"Error fetching jobs: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/update_job', methods=['PUT'])
def update_job():
    data = request.get_json(silent=True) or {}
    job_id = normalize_id(data.get('jobId'))
    if not job_id:
        return jsonify({'success': False, 'message': 'Job ID is required'}), 400

    status = data.get('status')
    if status and status not in JOB_STATUSES:
        return jsonify({'success': False, 'message': f"Invalid job status: {status}"}), 400

    dates = {}
    for key, label in (('startDate', 'start'), ('finishDate', 'finish')):
        if key in data:
            value = data.get(key)
            parsed = to_date(value) if value else None
            if value and not parsed:
                return jsonify({'success': False, 'message': f"Invalid {label} date format"}), 400
            dates[key] = parsed

    session = SessionLocal()
    try:
        job = session.get(Job, job_id)
        if not job:
            return jsonify({'success': False, 'message': 'Job not found'}), 404

        rescheduled = 'startDate' in dates and dates['startDate'] != job.start_date
        if rescheduled and dates['startDate'] is None and has_bookings(session, job.id):
            return jsonify({
                'success': False,
                'message': 'Cannot clear the start date of a job with assigned resources'
            }), 400

        if 'startDate' in dates:
            job.start_date = dates['startDate']
        if 'finishDate' in dates:
            job.finish_date = dates['finishDate']
        if status:
            job.status = status
        if rescheduled:
            sync_booking_dates(session, job)

        session.commit()
        current_app.logger.info(f"Job {job_id} updated")
        return jsonify({'success': True, 'message': 'Job updated successfully', 'job': job.to_dict()}), 200
    except IntegrityError as e:
        session.rollback()
        current_app.logger.warning(f"Rescheduling job {job_id} clashes with other bookings: {e.orig}")
        return jsonify({
            'success': False,
            'message': f"Assigned resources are already booked on another job on {dates.get('startDate')}",
            'error': str(e.orig)
        }), 400
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error updating job {job_id}: {e}")
        return jsonify({'success': False, 'message': f"Error updating job: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@quotation_bp.route('/get_job', methods=['POST'])
@token_required
def get_jobs_by_customer():
    session = SessionLocal()
    try:
        jobs = session.query(Job).filter(
            Job.customer_id == request.current_user.id
        ).order_by(Job.id.desc()).all()
        if not jobs:
            return jsonify({'success': False, 'message': 'No jobs found for this customer'}), 404
        return jsonify({'success': True, 'jobs': [j.to_dict() for j in jobs]}), 200
    except Exception as e:
        current_app.logger.exception(f"Error fetching jobs for customer: {e}")
        return jsonify({'success': False, 'message': f"Error fetching jobs: {e}", 'error': str(e)}), 500
    finally:
        session.close()
