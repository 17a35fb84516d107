"""Testes dos endpoints de monitoramento."""
from unittest.mock import patch


def test_health_retorna_200(client):
    r = client.get('/health')
    assert r.status_code == 200
    data = r.get_json()
    assert data['status'] == 'ok'
    assert 'timestamp' in data and 'uptime' in data


def test_health_detailed_saudavel(client):
    with patch('intranet.services.monitoring.verificar_conexao', return_value=(True, None)):
        r = client.get('/health/detailed')
    assert r.status_code == 200
    data = r.get_json()
    assert data['status'] == 'healthy'
    assert data['services']['supabase']['status'] == 'healthy'
    assert data['services']['cache']['stats']['backend'] == 'memoria'


def test_health_detailed_supabase_fora_retorna_503(client):
    with patch('intranet.services.monitoring.verificar_conexao', return_value=(False, 'timeout')):
        r = client.get('/health/detailed')
    assert r.status_code == 503
    data = r.get_json()
    assert data['status'] == 'degraded'
    assert data['services']['supabase']['error'] == 'timeout'


def test_health_detailed_erro_inesperado_retorna_500(client):
    with patch('intranet.routes.api.realizar_health_check', side_effect=RuntimeError('boom')):
        r = client.get('/health/detailed')
    assert r.status_code == 500
    assert r.get_json()['status'] == 'error'


def test_metrics_retorna_dados_do_processo(client):
    r = client.get('/metrics')
    assert r.status_code == 200
    data = r.get_json()
    assert data['pid'] > 0
    assert 'memoria' in data and 'cpu' in data
