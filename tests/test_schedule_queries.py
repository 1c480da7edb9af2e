from datetime import date


def test_jobs_by_date_are_sorted_by_name(client, factory):
    factory.job(name='Window grills', start_date=date(2025, 7, 1))
    factory.job(name='Awning', start_date=date(2025, 7, 1))
    factory.job(name='Next day', start_date=date(2025, 7, 2))

    resp = client.get('/api/jobs/by-date/2025-07-01')

    assert resp.status_code == 200
    jobs = resp.get_json()['jobs']
    assert [j['job_name'] for j in jobs] == ['Awning', 'Window grills']
    assert jobs[0]['start_date'] == '2025-07-01'


def test_jobs_by_date_rejects_garbage(client):
    resp = client.get('/api/jobs/by-date/someday')
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Invalid date format'


def test_jobs_by_date_range_uses_overlap(client, factory):
    factory.job(name='Inside', start_date=date(2025, 7, 3), finish_date=date(2025, 7, 4))
    factory.job(name='Spanning', start_date=date(2025, 6, 25), finish_date=date(2025, 7, 20))
    factory.job(name='Ends inside', start_date=date(2025, 6, 20), finish_date=date(2025, 7, 2))
    factory.job(name='Single day', start_date=date(2025, 7, 5))
    factory.job(name='Before', start_date=date(2025, 6, 1), finish_date=date(2025, 6, 10))
    factory.job(name='After', start_date=date(2025, 8, 1))

    resp = client.get('/api/jobs/by-date-range/2025-07-01/2025-07-10')

    assert resp.status_code == 200
    names = [j['job_name'] for j in resp.get_json()['jobs']]
    assert names == ['Single day', 'Inside', 'Spanning', 'Ends inside']


def test_jobs_by_date_range_validation(client):
    assert client.get('/api/jobs/by-date-range/bad/2025-07-10').status_code == 400
    assert client.get('/api/jobs/by-date-range/2025-07-10/2025-07-01').status_code == 400


def test_employee_availability(client, factory):
    booked_job = factory.job(name='Gate', start_date=date(2025, 7, 2))
    busy = factory.employee(name='Busy')
    free = factory.employee(name='Free')
    factory.employee(name='Retired', active=0)
    factory.booking(booked_job, employee=busy)

    resp = client.post('/api/jobs/employee-availability', json={
        'startDate': '2025-07-01', 'endDate': '2025-07-03'
    })

    assert resp.status_code == 200
    body = resp.get_json()
    by_name = {e['name']: e for e in body['employees']}
    assert by_name['Free']['isAvailable'] is True
    assert by_name['Busy']['isAvailable'] is False
    assert by_name['Busy']['conflictingJobs'] == [{
        'job_id': booked_job.id,
        'job_name': 'Gate',
        'start_date': '2025-07-02',
        'finish_date': None,
    }]
    assert by_name['Retired']['isAvailable'] is False
    assert by_name['Retired']['active'] is False
    assert body['availableCount'] == 1
    assert body['unavailableCount'] == 2


def test_machine_availability(client, factory):
    booked_job = factory.job(name='Truss', start_date=date(2025, 6, 28), finish_date=date(2025, 7, 2))
    busy = factory.machine(name='Busy saw')
    factory.machine(name='Idle drill')
    factory.machine(name='Broken lathe', status='Retired')
    factory.booking(booked_job, machine=busy)

    resp = client.post('/api/jobs/machine-availability', json={
        'startDate': '2025-07-01', 'endDate': '2025-07-03'
    })

    assert resp.status_code == 200
    body = resp.get_json()
    by_name = {m['machineName']: m for m in body['machines']}
    assert by_name['Idle drill']['isAvailable'] is True
    assert by_name['Busy saw']['isAvailable'] is False
    assert by_name['Broken lathe']['isAvailable'] is False
    assert body['availableCount'] == 1


def test_availability_validation(client):
    resp = client.post('/api/jobs/employee-availability', json={'startDate': '2025-07-01'})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Both start date and end date are required'

    resp = client.post('/api/jobs/machine-availability', json={'startDate': 'x', 'endDate': 'y'})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Invalid date format'


def test_all_jobs_include_resource_counts(client, factory):
    job = factory.job(name='Counted')
    factory.job(name='Empty', start_date=date(2025, 7, 9))
    factory.booking(job, employee=factory.employee(name='A'))
    factory.booking(job, employee=factory.employee(name='B'))
    factory.booking(job, machine=factory.machine())

    resp = client.get('/api/jobs/all')

    assert resp.status_code == 200
    jobs = resp.get_json()['jobs']
    assert [j['job_name'] for j in jobs] == ['Empty', 'Counted']
    assert jobs[1]['employeeCount'] == 2
    assert jobs[1]['machineCount'] == 1
    assert jobs[0]['employeeCount'] == 0
