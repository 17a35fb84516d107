"""Testes do relay de posições: envio autenticado, fila com retry limitado e mensagens."""
import io
import json
import threading
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from intranet.exceptions import EnvioPosicaoError
from intranet.relay.fila import FilaPosicoes
from intranet.relay.relay import RelayRastreamento, _Intervalo

URL_BASE = 'https://intranet.test/'


def _resposta_ok(corpo=b'{"sucesso": true}'):
    resp = MagicMock()
    resp.read.return_value = corpo
    contexto = MagicMock()
    contexto.__enter__.return_value = resp
    return contexto


def _http_error(status):
    return HTTPError(URL_BASE, status, 'erro', {}, io.BytesIO(b'{"erro": "x"}'))


def _leitura(lat=-23.5505199, lon=-46.6333094, **coords):
    return {'coords': {'latitude': lat, 'longitude': lon, **coords}, 'timestamp': 1700000000000}


def _enviados(mock_urlopen):
    """Corpos JSON e tokens de cada POST feito."""
    return [
        (json.loads(c.args[0].data), c.args[0].get_header('Authorization'))
        for c in mock_urlopen.call_args_list
    ]


@pytest.fixture
def notificacoes():
    return []


@pytest.fixture
def relay(notificacoes):
    fila = FilaPosicoes()
    r = RelayRastreamento(URL_BASE, fila, notificar=notificacoes.append, intervalo=3600, max_tentativas=2, lote=10)
    r.coleta_id = 'col_1'
    r.token = 'tok_atual'
    yield r
    r.parar()
    fila.fechar()


def _tipos(notificacoes):
    return [n['type'] for n in notificacoes]


# ---------------------------------------------------------------------------
# Payload e envio
# ---------------------------------------------------------------------------

def test_montar_payload_arredonda_e_converte_velocidade(relay):
    payload = relay.montar_payload(_leitura(accuracy=8.456, speed=10, heading=90.123))
    assert payload == {
        'coletaId': 'col_1',
        'latitude': -23.55052,
        'longitude': -46.633309,
        'precisao': 8.46,
        'velocidade': 36.0,
        'direcao': 90.12,
        'timestamp': '2023-11-14T22:13:20+00:00',
    }


def test_montar_payload_opcionais_ausentes_viram_none(relay):
    payload = relay.montar_payload({'coords': {'latitude': 1, 'longitude': 2}})
    assert payload['precisao'] is None and payload['velocidade'] is None and payload['direcao'] is None
    assert payload['timestamp']


def test_montar_payload_velocidade_e_rumo_desconhecidos_viram_none(relay):
    payload = relay.montar_payload(_leitura(accuracy=5, speed=-1, heading=-1))
    assert payload['velocidade'] is None
    assert payload['direcao'] is None
    assert payload['precisao'] == 5


@pytest.mark.parametrize('lat,lon', [(float('nan'), 0), (91, 0), (0, 181), (None, 0), ('x', 0)])
def test_coordenadas_invalidas_sao_descartadas(relay, lat, lon):
    with patch('intranet.relay.relay.urlopen') as mock_urlopen:
        assert relay.enviar_posicao(_leitura(lat, lon)) is False
    mock_urlopen.assert_not_called()
    assert relay.fila.contar() == 0


def test_enviar_posicao_sucesso(relay, notificacoes):
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()) as mock_urlopen:
        assert relay.enviar_posicao(_leitura()) is True
    req = mock_urlopen.call_args.args[0]
    assert req.full_url == 'https://intranet.test/api/rastreamento/enviar-posicao'
    assert req.get_method() == 'POST'
    assert req.get_header('Authorization') == 'Bearer tok_atual'
    assert json.loads(req.data)['coletaId'] == 'col_1'
    assert _tipos(notificacoes) == ['POSICAO_ENVIADA']
    assert relay.ultima_posicao == _leitura()
    assert relay.fila.contar() == 0


def test_enviar_posicao_sem_token_nao_envia(relay):
    relay.token = None
    with patch('intranet.relay.relay.urlopen') as mock_urlopen:
        assert relay.enviar_posicao(_leitura()) is False
    mock_urlopen.assert_not_called()


def test_falha_http_enfileira_e_registra_sync(relay, notificacoes):
    with patch('intranet.relay.relay.urlopen', side_effect=_http_error(500)):
        with pytest.raises(EnvioPosicaoError) as exc:
            relay.enviar_posicao(_leitura())
    assert exc.value.status == 500
    assert relay.fila.contar('col_1') == 1
    assert relay.fila.pendentes('col_1')[0]['token'] == 'tok_atual'
    assert relay.sync_pendente is True
    assert 'TOKEN_INVALIDO' not in _tipos(notificacoes)


@pytest.mark.parametrize('status', [401, 403])
def test_token_recusado_notifica_pagina(relay, notificacoes, status):
    with patch('intranet.relay.relay.urlopen', side_effect=_http_error(status)):
        with pytest.raises(EnvioPosicaoError):
            relay.enviar_posicao(_leitura())
    assert 'TOKEN_INVALIDO' in _tipos(notificacoes)
    assert relay.fila.contar() == 1


def test_falha_de_rede_enfileira(relay):
    with patch('intranet.relay.relay.urlopen', side_effect=URLError('sem rede')):
        with pytest.raises(EnvioPosicaoError) as exc:
            relay.enviar_posicao(_leitura())
    assert exc.value.status is None
    assert relay.fila.contar() == 1


@pytest.mark.parametrize('status', [400, 404, 409, 422])
def test_recusa_definitiva_nao_enfileira(relay, status):
    with patch('intranet.relay.relay.urlopen', side_effect=_http_error(status)):
        with pytest.raises(EnvioPosicaoError) as exc:
            relay.enviar_posicao(_leitura())
    assert exc.value.definitivo is True
    assert relay.fila.contar() == 0
    assert relay.sync_pendente is False


def test_resposta_2xx_sem_json_conta_como_enviada(relay):
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok(b'OK')):
        assert relay.enviar_posicao(_leitura()) is True


def test_falha_ao_notificar_nao_interrompe_envio(relay):
    relay.notificar = MagicMock(side_effect=RuntimeError('página fechada'))
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        assert relay.enviar_posicao(_leitura()) is True


# ---------------------------------------------------------------------------
# Fila de pendentes
# ---------------------------------------------------------------------------

def _enfileirar(relay, *timestamps, token='tok_antigo', coleta='col_1'):
    for i, ts in enumerate(timestamps):
        relay.fila.adicionar({'coletaId': coleta, 'latitude': i, 'longitude': i, 'timestamp': ts}, token)


def test_pendentes_enviadas_em_ordem_com_token_proprio(relay):
    _enfileirar(relay, '2026-03-01T10:04:00+00:00', '2026-03-01T10:00:00+00:00', '2026-03-01T10:02:00+00:00')
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()) as mock_urlopen:
        resultado = relay.enviar_posicoes_pendentes()
    assert resultado == {'enviadas': 3, 'falhas': 0, 'descartadas': 0}
    enviados = _enviados(mock_urlopen)
    assert [corpo['timestamp'] for corpo, _ in enviados] == [
        '2026-03-01T10:00:00+00:00', '2026-03-01T10:02:00+00:00', '2026-03-01T10:04:00+00:00',
    ]
    assert {auth for _, auth in enviados} == {'Bearer tok_antigo'}
    assert relay.fila.contar() == 0


def test_pendente_sem_token_usa_token_atual(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00', token=None)
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()) as mock_urlopen:
        relay.enviar_posicoes_pendentes()
    assert _enviados(mock_urlopen)[0][1] == 'Bearer tok_atual'


def test_pendente_sem_nenhum_token_e_pulada(relay):
    relay.token = None
    _enfileirar(relay, '2026-03-01T10:00:00+00:00', token=None)
    with patch('intranet.relay.relay.urlopen') as mock_urlopen:
        assert relay.enviar_posicoes_pendentes() == {'enviadas': 0, 'falhas': 0, 'descartadas': 0}
    mock_urlopen.assert_not_called()
    assert relay.fila.contar() == 1


def test_falha_no_reenvio_nao_duplica_e_descarta_no_limite(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00')
    with patch('intranet.relay.relay.urlopen', side_effect=_http_error(502)):
        primeiro = relay.enviar_posicoes_pendentes()
        assert relay.fila.contar() == 1
        assert relay.fila.pendentes('col_1')[0]['tentativas'] == 1
        segundo = relay.enviar_posicoes_pendentes()
    assert primeiro == {'enviadas': 0, 'falhas': 1, 'descartadas': 0}
    assert segundo == {'enviadas': 0, 'falhas': 1, 'descartadas': 1}
    assert relay.fila.contar() == 0


def test_lote_limita_envios_por_rodada(relay):
    relay.lote = 2
    _enfileirar(relay, '2026-03-01T10:00:00+00:00', '2026-03-01T10:01:00+00:00', '2026-03-01T10:02:00+00:00')
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        assert relay.enviar_posicoes_pendentes()['enviadas'] == 2
    assert relay.fila.contar() == 1


def test_pendentes_de_outra_coleta_nao_sao_enviadas(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00', coleta='col_2')
    with patch('intranet.relay.relay.urlopen') as mock_urlopen:
        relay.enviar_posicoes_pendentes()
    mock_urlopen.assert_not_called()
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        assert relay.enviar_posicoes_pendentes('col_2')['enviadas'] == 1


def test_pendente_recusada_pelo_servidor_e_descartada_na_hora(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00', '2026-03-01T10:01:00+00:00')
    with patch('intranet.relay.relay.urlopen', side_effect=[_http_error(409), _resposta_ok()]):
        resultado = relay.enviar_posicoes_pendentes()
    assert resultado == {'enviadas': 1, 'falhas': 1, 'descartadas': 1}
    assert relay.fila.contar() == 0


def test_parar_nao_espera_envio_de_pendentes_em_andamento(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00', '2026-03-01T10:01:00+00:00', '2026-03-01T10:02:00+00:00')
    em_envio = threading.Event()
    liberar = threading.Event()

    def _post_lento(*args, **kwargs):
        em_envio.set()
        liberar.wait(2)
        raise URLError('timeout')

    with patch('intranet.relay.relay.urlopen', side_effect=_post_lento) as mock_urlopen:
        envio = threading.Thread(target=relay.enviar_posicoes_pendentes)
        envio.start()
        assert em_envio.wait(2)

        parou = threading.Event()
        threading.Thread(target=lambda: (relay.parar(), parou.set()), daemon=True).start()
        assert parou.wait(0.5), 'parar() ficou bloqueado pelo envio em andamento'

        liberar.set()
        envio.join(2)
    assert not envio.is_alive()
    assert mock_urlopen.call_count == 1
    assert relay.fila.contar() == 3


def test_envio_de_pendentes_concorrente_e_ignorado(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00')
    em_envio = threading.Event()
    liberar = threading.Event()

    def _post_lento(*args, **kwargs):
        em_envio.set()
        liberar.wait(2)
        return _resposta_ok()

    with patch('intranet.relay.relay.urlopen', side_effect=_post_lento) as mock_urlopen:
        envio = threading.Thread(target=relay.enviar_posicoes_pendentes)
        envio.start()
        assert em_envio.wait(2)
        assert relay.enviar_posicoes_pendentes() == {'enviadas': 0, 'falhas': 0, 'descartadas': 0}
        liberar.set()
        envio.join(2)
    assert mock_urlopen.call_count == 1
    assert relay.fila.contar() == 0


def test_envio_de_pendentes_apos_parar_continua_funcionando(relay):
    relay.parar()
    _enfileirar(relay, '2026-03-01T10:00:00+00:00')
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        assert relay.sincronizar()['enviadas'] == 1


# ---------------------------------------------------------------------------
# Ciclo de vida e mensagens
# ---------------------------------------------------------------------------

def test_iniciar_sem_token_permanece_parado(relay, notificacoes):
    relay.coleta_id = None
    assert relay.iniciar('col_1', None) is False
    assert relay.ativo is False
    assert notificacoes == []


def test_iniciar_captura_imediatamente_e_parar(relay, notificacoes):
    provedor = MagicMock(return_value=_leitura())
    relay.provedor_posicao = provedor
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()) as mock_urlopen:
        assert relay.iniciar('col_9', 'tok_novo') is True
    provedor.assert_called_once_with('col_9')
    assert _enviados(mock_urlopen)[0][1] == 'Bearer tok_novo'
    assert relay.estado == 'ativo'
    assert _tipos(notificacoes) == ['POSICAO_ENVIADA', 'RASTREAMENTO_INICIADO']

    relay.parar()
    assert relay.estado == 'parado'
    assert _tipos(notificacoes)[-1] == 'RASTREAMENTO_PARADO'
    assert relay._intervalo_envio is None and relay._intervalo_fila is None


def test_parar_encerra_threads_dos_timers(relay):
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        assert relay.iniciar('col_1', 'tok_atual') is True
    threads = [relay._intervalo_envio._thread, relay._intervalo_fila._thread]
    assert all(t.is_alive() for t in threads)
    relay.parar()
    assert not any(t.is_alive() for t in threads)


def test_sem_provedor_ciclo_envia_pendentes(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00')
    relay.estado = 'ativo'
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        relay.obter_e_enviar_posicao()
    assert relay.fila.contar() == 0


def test_provedor_com_erro_cai_para_pendentes(relay):
    relay.estado = 'ativo'
    relay.provedor_posicao = MagicMock(side_effect=RuntimeError('GPS desligado'))
    with patch.object(relay, 'enviar_posicoes_pendentes') as mock_pendentes:
        relay.obter_e_enviar_posicao()
    mock_pendentes.assert_called_once_with()


def test_falha_de_envio_no_ciclo_nao_propaga(relay):
    relay.estado = 'ativo'
    relay.provedor_posicao = MagicMock(return_value=_leitura())
    with patch('intranet.relay.relay.urlopen', side_effect=URLError('offline')):
        relay.obter_e_enviar_posicao()
    assert relay.fila.contar() == 1


def test_ciclo_da_fila_so_age_sem_provedor(relay):
    relay.estado = 'ativo'
    relay.provedor_posicao = MagicMock()
    with patch.object(relay, 'enviar_posicoes_pendentes') as mock_pendentes:
        relay._ciclo_fila()
        mock_pendentes.assert_not_called()
        relay.provedor_posicao = None
        relay._ciclo_fila()
        mock_pendentes.assert_called_once_with()


def test_mensagens_da_pagina(relay, notificacoes):
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        relay.processar_mensagem({'type': 'INICIAR_RASTREAMENTO', 'coletaId': 'col_5', 'tokenRastreamento': 't5'})
        assert relay.ativo and relay.coleta_id == 'col_5'

        relay.processar_mensagem({'type': 'ATUALIZAR_TOKEN', 'tokenRastreamento': 't6'})
        assert relay.token == 't6'

        relay.processar_mensagem({'type': 'TIPO_QUALQUER'})
        relay.processar_mensagem({'type': 'PARAR_RASTREAMENTO'})
    assert relay.estado == 'parado'
    assert 'RASTREAMENTO_INICIADO' in _tipos(notificacoes)
    assert _tipos(notificacoes)[-1] == 'RASTREAMENTO_PARADO'


def test_mensagem_posicao_gps_com_falha_fica_na_fila(relay):
    with patch('intranet.relay.relay.urlopen', side_effect=_http_error(503)):
        relay.processar_mensagem({'type': 'POSICAO_GPS', 'position': _leitura()})
    assert relay.fila.contar() == 1


def test_mensagem_nova_posicao_envia_pendentes(relay):
    _enfileirar(relay, '2026-03-01T10:00:00+00:00')
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        relay.processar_mensagem({'type': 'NOVA_POSICAO', 'coletaId': 'col_1'})
    assert relay.fila.contar() == 0


def test_sincronizar_limpa_flag_e_envia(relay):
    relay.registrar_sync()
    _enfileirar(relay, '2026-03-01T10:00:00+00:00')
    with patch('intranet.relay.relay.urlopen', return_value=_resposta_ok()):
        resultado = relay.sincronizar()
    assert resultado['enviadas'] == 1
    assert relay.sync_pendente is False


def test_from_config_usa_parametros_do_config():
    from config import Config
    fila = FilaPosicoes()
    r = RelayRastreamento.from_config(Config, URL_BASE, fila=fila)
    assert r.intervalo == Config.RASTREAMENTO_INTERVALO_ENVIO
    assert r.max_tentativas == Config.RASTREAMENTO_MAX_TENTATIVAS
    assert r.lote == Config.RASTREAMENTO_LOTE_PENDENTES
    assert r.fila is fila
    fila.fechar()


def test_intervalo_executa_ate_cancelar():
    executou = threading.Event()
    intervalo = _Intervalo(0.01, executou.set, 'teste').iniciar()
    try:
        assert executou.wait(2)
    finally:
        intervalo.cancelar()
