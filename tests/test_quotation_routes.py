from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from ironworks.db import SessionLocal
from ironworks.models import Invoice, InvoiceItem, Job, JobEmployee, Material, Quotation, QuotationMaterial


def new_quotation_payload(customer, **overrides):
    payload = {
        'job_description': 'Steel staircase',
        'job_category': 'Stairs',
        'userId': customer.id,
        'userName': customer.customer_name,
        'phone': '0712345678',
        'location': 'Kandy',
        'immediate': '2025-08-15',
        'jobID': 'JOB-100',
    }
    payload.update(overrides)
    return payload


# ---- quotations ----

def test_create_quotation_requires_login(client, factory):
    customer = factory.customer()
    resp = client.post('/api/quotation/create', json=new_quotation_payload(customer))
    assert resp.status_code == 401


def test_create_quotation(client, factory, fetch, auth_headers):
    customer = factory.customer()

    resp = client.post('/api/quotation/create', json=new_quotation_payload(customer),
                       headers=auth_headers(customer))

    assert resp.status_code == 201
    body = resp.get_json()
    quotation = fetch(Quotation, body['quotationId'])
    assert quotation.customer_id == customer.id
    assert quotation.quotation_amount == Decimal('0')
    assert quotation.status == 'Pending'
    assert quotation.customer_status == 'Pending'
    assert quotation.immediate == date(2025, 8, 15)
    assert body['jobID'] == 'JOB-100'


def test_create_quotation_defaults_user_from_token(client, factory, auth_headers):
    customer = factory.customer()
    payload = new_quotation_payload(customer)
    del payload['userId'], payload['userName']

    resp = client.post('/api/quotation/create', json=payload, headers=auth_headers(customer))

    assert resp.status_code == 201


def test_create_quotation_validation(client, factory, auth_headers):
    customer = factory.customer()
    headers = auth_headers(customer)

    resp = client.post('/api/quotation/create', json=new_quotation_payload(customer, location=''),
                       headers=headers)
    assert resp.status_code == 400

    resp = client.post('/api/quotation/create', json=new_quotation_payload(customer, immediate='soon'),
                       headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Invalid required-by date'


def test_customer_sees_only_their_quotations(client, factory, auth_headers):
    ann = factory.customer()
    bob = factory.customer(email='bob@example.com', name='Bob')
    factory.quotation(ann, description='Ann gate')
    factory.quotation(bob, description='Bob fence')

    resp = client.post('/api/quotation/get', headers=auth_headers(ann))

    assert resp.status_code == 200
    assert [q['job_description'] for q in resp.get_json()['quotations']] == ['Ann gate']


def test_admin_list_and_single_lookup(client, factory):
    customer = factory.customer()
    quotation = factory.quotation(customer)

    resp = client.get('/api/quotation/admin')
    assert resp.get_json()['quotations'][0]['customer_name'] == customer.customer_name

    assert client.get(f'/api/quotation/get_one/{quotation.id}').status_code == 200
    resp = client.get('/api/quotation/get_one/9999')
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Quotation not found'


def test_admin_status_update(client, factory, fetch):
    quotation = factory.quotation(factory.customer())

    resp = client.put('/api/quotation/status', json={
        'quotationId': quotation.id, 'status': 'Approved', 'job_description': 'Front gate, powder coated'
    })
    assert resp.status_code == 200
    updated = fetch(Quotation, quotation.id)
    assert updated.status == 'Approved'
    assert updated.job_description == 'Front gate, powder coated'

    resp = client.put('/api/quotation/status', json={'quotationId': quotation.id, 'status': 'Maybe'})
    assert resp.status_code == 400
    assert client.put('/api/quotation/status', json={'quotationId': 9999, 'status': 'Approved'}).status_code == 404


def test_customer_status_is_owner_only(client, factory, fetch, auth_headers):
    ann = factory.customer()
    bob = factory.customer(email='bob@example.com', name='Bob')
    quotation = factory.quotation(ann)

    resp = client.put('/api/quotation/customer_status', json={
        'quotationId': quotation.id, 'customer_status': 'Approved'
    }, headers=auth_headers(bob))
    assert resp.status_code == 403

    resp = client.put('/api/quotation/customer_status', json={'quotationId': quotation.id},
                      headers=auth_headers(ann))
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Quotation ID and customer status are required'

    resp = client.put('/api/quotation/customer_status', json={
        'quotationId': quotation.id, 'customer_status': 'Approved'
    }, headers=auth_headers(ann))
    assert resp.status_code == 200
    assert fetch(Quotation, quotation.id).customer_status == 'Approved'


def test_update_amount_from_materials_replaces_snapshot(client, factory, fetch, count):
    quotation = factory.quotation(factory.customer(), materials=[
        {'material_name': 'Old line', 'quantity': 1, 'unit_price': 1},
    ])
    steel = factory.material(name='Steel bar')

    resp = client.put('/api/quotation/update_amount', json={
        'quotationId': quotation.id,
        'materials': [
            {'material_id': steel.id, 'quantity': 10, 'unit_price': 50},
            {'material_name': 'Paint', 'quantity': 2, 'unit_price': 100},
        ],
    })

    assert resp.status_code == 200
    assert resp.get_json()['quotation_amount'] == 826.0
    assert fetch(Quotation, quotation.id).quotation_amount == Decimal('826.00')
    assert count(QuotationMaterial, quotation_id=quotation.id) == 2

    saved = client.get(f'/api/quotation/get_materials/{quotation.id}').get_json()['materials']
    assert [m['material_name'] for m in saved] == ['Steel bar', 'Paint']
    assert saved[0]['material_id'] == steel.id


def test_update_amount_explicit_and_validation(client, factory, fetch):
    quotation = factory.quotation(factory.customer())

    resp = client.put('/api/quotation/update_amount', json={'quotationId': quotation.id, 'quotation_amount': 1500})
    assert resp.status_code == 200
    assert fetch(Quotation, quotation.id).quotation_amount == Decimal('1500')

    resp = client.put('/api/quotation/update_amount', json={'quotationId': quotation.id})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Quotation ID and amount are required'

    resp = client.put('/api/quotation/update_amount', json={
        'quotationId': quotation.id, 'materials': [{'material_name': 'Rod', 'quantity': 0, 'unit_price': 5}]
    })
    assert resp.status_code == 400


def test_save_material_appends_line(client, factory, count):
    quotation = factory.quotation(factory.customer())

    resp = client.post('/api/quotation/save_material', json={
        'quotationId': quotation.id, 'material_name': 'Angle iron', 'quantity': 4, 'unit_price': 75
    })

    assert resp.status_code == 201
    assert count(QuotationMaterial, quotation_id=quotation.id) == 1


def test_unknown_material_id_is_not_found(client, factory, count):
    quotation = factory.quotation(factory.customer(), customer_status='Approved')
    line = {'material_id': 4242, 'material_name': 'Ghost rod', 'quantity': 1, 'unit_price': 10}

    resp = client.post('/api/quotation/save_material', json={'quotationId': quotation.id, **line})
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Material not found: 4242'

    resp = client.put('/api/quotation/update_amount', json={'quotationId': quotation.id, 'materials': [line]})
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Material not found: 4242'

    resp = client.post('/api/quotation/invoice_create', json={'quotationId': quotation.id, 'materials': [line]})
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Material not found: 4242'

    assert count(QuotationMaterial, quotation_id=quotation.id) == 0
    assert count(Invoice) == 0


# ---- invoices ----

def test_invoice_needs_customer_approval_even_when_admin_approved(client, factory, count):
    quotation = factory.quotation(factory.customer(), status='Approved', customer_status='Pending')

    resp = client.post('/api/quotation/invoice_create', json={'quotationId': quotation.id})

    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Cannot create invoice - waiting for customer approval'
    assert count(Invoice) == 0


def test_invoice_from_snapshot_decrements_stock(client, factory, fetch, count):
    steel = factory.material(name='Steel bar', qty='20')
    quotation = factory.quotation(factory.customer(), customer_status='Approved', amount='826', materials=[
        {'material_id': steel.id, 'material_name': 'Steel bar', 'quantity': 10, 'unit_price': 50},
        {'material_name': 'Paint', 'quantity': 2, 'unit_price': 100},
    ])

    resp = client.post('/api/quotation/invoice_create', json={'quotationId': quotation.id})

    assert resp.status_code == 201
    invoice_id = resp.get_json()['invoiceId']
    invoice = fetch(Invoice, invoice_id)
    assert invoice.total_amount == Decimal('826')
    assert invoice.payment_status == 'Pending'
    assert count(InvoiceItem, invoice_id=invoice_id) == 2
    assert fetch(Material, steel.id).available_qty == Decimal('10')

    resp = client.post('/api/quotation/invoice_create', json={'quotationId': quotation.id})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'An invoice already exists for this quotation'


def test_invoice_with_short_stock_writes_nothing(client, factory, fetch, count):
    steel = factory.material(name='Steel bar', qty='5')
    quotation = factory.quotation(factory.customer(), customer_status='Approved')

    resp = client.post('/api/quotation/invoice_create', json={
        'quotationId': quotation.id,
        'invoiceAmount': 700,
        'materials': [{'material_id': steel.id, 'material_name': 'Steel bar', 'quantity': 10, 'unit_price': 50}],
    })

    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Insufficient stock for: Steel bar (available 5, requested 10)'
    assert count(Invoice) == 0
    assert fetch(Material, steel.id).available_qty == Decimal('5')


def test_invoice_for_unknown_quotation(client):
    assert client.post('/api/quotation/invoice_create', json={'quotationId': 9999}).status_code == 404
    assert client.post('/api/quotation/invoice_create', json={}).status_code == 400


def test_payment_completes_invoice_without_overpayment_guard(client, factory):
    quotation = factory.quotation(factory.customer(), customer_status='Approved')
    invoice = factory.invoice(quotation, total='1000.00', paid='400.00', payment_status='Partially Paid')

    resp = client.post('/api/quotation/invoice_payment', json={'invoiceId': invoice.id, 'paymentAmount': 600.00})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['newPaidAmount'] == 1000.0
    assert body['paymentStatus'] == 'Completed'

    resp = client.post('/api/quotation/invoice_payment', json={'invoiceId': invoice.id, 'paymentAmount': 0.01})
    assert resp.status_code == 200
    assert resp.get_json()['paymentStatus'] == 'Completed'
    assert resp.get_json()['newPaidAmount'] == 1000.01


def test_partial_payment(client, factory):
    invoice = factory.invoice(factory.quotation(factory.customer()), total='1000')

    resp = client.post('/api/quotation/invoice_payment', json={'invoiceId': invoice.id, 'paymentAmount': '250'})

    assert resp.get_json()['paymentStatus'] == 'Partially Paid'
    assert resp.get_json()['newPaidAmount'] == 250.0


def test_payment_validation(client, factory):
    invoice = factory.invoice(factory.quotation(factory.customer()))

    for amount in (0, -5, 'abc', None):
        resp = client.post('/api/quotation/invoice_payment', json={'invoiceId': invoice.id, 'paymentAmount': amount})
        assert resp.status_code == 400

    resp = client.post('/api/quotation/invoice_payment', json={'invoiceId': 9999, 'paymentAmount': 10})
    assert resp.status_code == 404


def test_payment_status_follows_paid_amount():
    for total, paid, expected in (
        ('1000', '0', 'Pending'),
        ('1000', '1', 'Partially Paid'),
        ('1000', '999.99', 'Partially Paid'),
        ('1000', '1000', 'Completed'),
        ('1000', '1200', 'Completed'),
    ):
        invoice = Invoice(total_amount=Decimal(total), paid_amount=Decimal('0'), payment_status='Pending')
        assert invoice.apply_payment(Decimal(paid)) == expected


def test_payment_is_rounded_to_cents_before_status_is_derived(client, factory, fetch):
    invoice = factory.invoice(factory.quotation(factory.customer()), total='1000')

    resp = client.post('/api/quotation/invoice_payment', json={'invoiceId': invoice.id, 'paymentAmount': 999.999})

    body = resp.get_json()
    assert resp.status_code == 200
    assert body['newPaidAmount'] == 1000.0
    assert body['paymentStatus'] == 'Completed'
    stored = fetch(Invoice, invoice.id)
    assert stored.paid_amount == Decimal('1000.00')
    assert stored.payment_status == 'Completed'

    resp = client.post('/api/quotation/invoice_payment', json={'invoiceId': invoice.id, 'paymentAmount': 0.004})
    assert resp.status_code == 400


def test_quoted_and_invoiced_amounts_are_rounded_to_cents(client, factory, fetch):
    quotation = factory.quotation(factory.customer(), customer_status='Approved')

    resp = client.put('/api/quotation/update_amount', json={'quotationId': quotation.id, 'quotation_amount': 1500.555})
    assert resp.get_json()['quotation_amount'] == 1500.56
    assert fetch(Quotation, quotation.id).quotation_amount == Decimal('1500.56')

    resp = client.post('/api/quotation/invoice_create', json={'quotationId': quotation.id, 'invoiceAmount': '700.005'})
    assert resp.status_code == 201
    assert fetch(Invoice, resp.get_json()['invoiceId']).total_amount == Decimal('700.01')


def test_one_invoice_per_quotation_is_enforced_by_the_database(app, factory):
    quotation = factory.quotation(factory.customer())
    factory.invoice(quotation)

    session = SessionLocal()
    try:
        session.add(Invoice(quotation_id=quotation.id, total_amount=Decimal('1'), paid_amount=Decimal('0')))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()
    finally:
        session.close()


def test_invoice_lookups(client, factory, auth_headers):
    ann = factory.customer()
    bob = factory.customer(email='bob@example.com', name='Bob')
    ann_invoice = factory.invoice(factory.quotation(ann))
    factory.invoice(factory.quotation(bob))

    resp = client.post('/api/quotation/get_invoice_by_id', json={'invoiceId': ann_invoice.id})
    assert resp.status_code == 200
    assert resp.get_json()['invoice']['items'] == []

    resp = client.get('/api/quotation/get_invoice', headers=auth_headers(ann))
    assert [i['invoice_id'] for i in resp.get_json()['invoices']] == [ann_invoice.id]

    resp = client.post('/api/quotation/get_invoice2', json={'userId': ann.id, 'invoiceId': ann_invoice.id})
    assert len(resp.get_json()['invoices']) == 1
    assert client.post('/api/quotation/get_invoice2', json={'userId': ann.id}).status_code == 400

    assert len(client.get('/api/quotation/get_all').get_json()['invoices']) == 2
    assert 'items' in client.get('/api/quotation/get_all_invoices').get_json()['invoices'][0]


def test_partially_paid_invoices_include_existing_job(client, factory):
    customer = factory.customer()
    quotation = factory.quotation(customer)
    invoice = factory.invoice(quotation, paid='100', payment_status='Partially Paid')
    job = factory.job(quotation=quotation, invoice=invoice)
    factory.invoice(factory.quotation(customer), payment_status='Pending')

    resp = client.get('/api/quotation/get_partially_paid_invoices')

    invoices = resp.get_json()['invoices']
    assert len(invoices) == 1
    assert invoices[0]['tel_num'] == customer.tel_num
    assert invoices[0]['existingJob']['id'] == job.id

    jobs = client.get('/api/quotation/get_partially_paid_jobs').get_json()['jobs']
    assert [j['id'] for j in jobs] == [job.id]
    assert jobs[0]['payment_status'] == 'Partially Paid'


# ---- jobs ----

def test_create_job_defaults_from_quotation(client, factory, fetch):
    customer = factory.customer()
    quotation = factory.quotation(customer, immediate=date(2025, 7, 20))
    invoice = factory.invoice(quotation)

    resp = client.post('/api/quotation/create_or_update_job', json={
        'quotationId': quotation.id, 'invoiceId': invoice.id, 'actualStartDate': '2025-07-01T00:00:00.000Z'
    })

    assert resp.status_code == 200
    assert resp.get_json()['message'] == 'Job created successfully'
    job = fetch(Job, resp.get_json()['jobId'])
    assert job.start_date == date(2025, 7, 1)
    assert job.finish_date == date(2025, 7, 20)
    assert job.job_name == 'Front gate'
    assert job.customer_id == customer.id
    assert job.status == 'Not Started'


def test_existing_job_without_invoice_is_updated_in_place(client, factory, fetch, count):
    quotation = factory.quotation(factory.customer())
    invoice = factory.invoice(quotation)
    job = factory.job(quotation=quotation, start_date=date(2025, 7, 1))

    resp = client.post('/api/quotation/create_or_update_job', json={
        'quotationId': quotation.id, 'invoiceId': invoice.id, 'actualStartDate': '2025-07-03'
    })

    assert resp.status_code == 200
    body = resp.get_json()
    assert body['jobId'] == job.id
    assert body['message'] == 'Job updated successfully'
    assert count(Job, quotation_id=quotation.id) == 1
    updated = fetch(Job, job.id)
    assert updated.invoice_id == invoice.id
    assert updated.start_date == date(2025, 7, 3)


def test_rescheduling_restamps_bookings(client, factory, count):
    quotation = factory.quotation(factory.customer())
    job = factory.job(quotation=quotation, start_date=date(2025, 7, 1))
    welder = factory.employee()
    factory.booking(job, employee=welder)

    resp = client.post('/api/quotation/create_or_update_job', json={
        'quotationId': quotation.id, 'jobId': job.id, 'actualStartDate': '2025-07-04'
    })

    assert resp.status_code == 200
    assert count(JobEmployee, job_id=job.id, job_date=date(2025, 7, 4)) == 1


def test_create_or_update_job_validation(client, factory):
    quotation = factory.quotation(factory.customer())

    resp = client.post('/api/quotation/create_or_update_job', json={'quotationId': 9999, 'actualStartDate': '2025-07-01'})
    assert resp.status_code == 404

    resp = client.post('/api/quotation/create_or_update_job', json={'quotationId': quotation.id, 'actualStartDate': 'x'})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Invalid start date format'


def test_update_job_reschedule_clash_is_rejected(client, factory, fetch):
    welder = factory.employee()
    busy_day = factory.job(name='Busy', start_date=date(2025, 7, 1))
    movable = factory.job(name='Movable', start_date=date(2025, 7, 2))
    factory.booking(busy_day, employee=welder)
    factory.booking(movable, employee=welder)

    resp = client.put('/api/quotation/update_job', json={'jobId': movable.id, 'startDate': '2025-07-01'})

    assert resp.status_code == 400
    assert fetch(Job, movable.id).start_date == date(2025, 7, 2)


def test_update_job(client, factory, fetch):
    job = factory.job()

    resp = client.put('/api/quotation/update_job', json={
        'jobId': job.id, 'startDate': '2025-07-05', 'finishDate': '2025-07-09', 'status': 'Completed'
    })

    assert resp.status_code == 200
    assert resp.get_json()['job']['finish_date'] == '2025-07-09'
    updated = fetch(Job, job.id)
    assert updated.status == 'Completed'
    assert updated.start_date == date(2025, 7, 5)

    assert client.put('/api/quotation/update_job', json={'jobId': 9999}).status_code == 404
    assert client.put('/api/quotation/update_job', json={'jobId': job.id, 'status': 'Done'}).status_code == 400


def test_clearing_start_date_of_booked_job_is_rejected(client, factory):
    job = factory.job()
    factory.booking(job, machine=factory.machine())

    resp = client.put('/api/quotation/update_job', json={'jobId': job.id, 'startDate': None})

    assert resp.status_code == 400


def test_jobs_for_customer(client, factory, auth_headers):
    ann = factory.customer()
    bob = factory.customer(email='bob@example.com', name='Bob')
    job = factory.job(quotation=factory.quotation(ann))

    resp = client.post('/api/quotation/get_job', headers=auth_headers(ann))
    assert [j['id'] for j in resp.get_json()['jobs']] == [job.id]

    resp = client.post('/api/quotation/get_job', headers=auth_headers(bob))
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'No jobs found for this customer'

    assert client.get('/api/quotation/get_all_jobs').get_json()['jobs'][0]['id'] == job.id
