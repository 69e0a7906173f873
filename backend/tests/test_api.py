def test_health(client):
    res = client.get('/health')
    assert res.status_code == 200
    assert res.get_json()['status'] == 'OK'


def test_unknown_user_stats(client):
    res = client.get('/api/users/nobody/stats')
    assert res.status_code == 404
    assert 'error' in res.get_json()


def test_user_stats_with_gaps(client, service):
    engine, _ = service.store.get_or_create('u1', name='Alice', timezone='UTC')
    engine.set_online('room-1')
    engine.start()
    service.scheduler.advance(3000)

    res = client.get('/api/users/u1/stats')
    assert res.status_code == 200
    stats = res.get_json()
    assert stats['ledger']['completed_session_count'] == 1
    assert stats['ledger']['daily_history'] == {}
    assert stats['display_focus_minutes'] == 50
    # the day started at midnight, the first session at 10:00
    assert [g['kind'] for g in stats['dead_time_gaps']] == ['start_of_day']


def test_persistence_status_and_save(client, service):
    service.store.get_or_create('u1', name='Alice')
    status = client.get('/api/persistence/status').get_json()
    assert status['persistent_users_count'] == 1
    assert status['stored_snapshots_count'] == 0

    res = client.post('/api/persistence/save')
    assert res.status_code == 200
    assert res.get_json()['saved_users'] == 1
    assert client.get('/api/persistence/status').get_json()['stored_snapshots_count'] == 1


def test_recovery_report_endpoint(client):
    report = client.get('/api/persistence/recovery').get_json()
    assert report['total_users'] == 0
    assert report['details'] == []


def test_cleanup_endpoint(client, service):
    engine, _ = service.store.get_or_create('u1')
    engine.ledger.daily_history['2025-01-01'] = engine.ledger.summary()
    res = client.post('/api/persistence/cleanup', json={'days_to_keep': 7})
    assert res.status_code == 200
    assert res.get_json()['removed_days'] == 1

    res = client.post('/api/persistence/cleanup', json={'days_to_keep': 'a week'})
    assert res.status_code == 400
