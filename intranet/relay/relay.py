"""
Relay de posições GPS em background (lado do dispositivo).

Mantém o envio de posições de uma coleta mesmo quando a tela do motorista não está
em primeiro plano:

- a cada `intervalo` segundos pede uma leitura nova ao provedor de posição (a página
  / app em primeiro plano) e envia para POST /api/rastreamento/enviar-posicao com o
  token Bearer da coleta;
- envios que falham vão para a FilaPosicoes (SQLite) e um "sync" fica registrado;
- a fila é esvaziada em lotes (mais antigas primeiro) quando não há provedor, a cada
  2 x intervalo, ou quando sincronizar() é chamado (conexão restabelecida);
- cada entrada tem no máximo `max_tentativas`; depois disso é descartada.

A comunicação com a página usa mensagens no formato {'type': ..., ...}, recebidas em
processar_mensagem() e emitidas pelo callback `notificar`.
"""

import json
import logging
import math
import threading
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from intranet.exceptions import EnvioPosicaoError
from intranet.relay.fila import FilaPosicoes

logger = logging.getLogger(__name__)

ENDPOINT_POSICAO = '/api/rastreamento/enviar-posicao'

# Mensagens recebidas da página
INICIAR_RASTREAMENTO = 'INICIAR_RASTREAMENTO'
PARAR_RASTREAMENTO = 'PARAR_RASTREAMENTO'
ATUALIZAR_TOKEN = 'ATUALIZAR_TOKEN'
NOVA_POSICAO = 'NOVA_POSICAO'
POSICAO_GPS = 'POSICAO_GPS'

# Mensagens emitidas para a página
RASTREAMENTO_INICIADO = 'RASTREAMENTO_INICIADO'
RASTREAMENTO_PARADO = 'RASTREAMENTO_PARADO'
POSICAO_ENVIADA = 'POSICAO_ENVIADA'
TOKEN_INVALIDO = 'TOKEN_INVALIDO'

ESTADO_PARADO = 'parado'
ESTADO_ATIVO = 'ativo'


class _Intervalo:
    """Executa `funcao` a cada `segundos` numa thread daemon até cancelar()."""

    def __init__(self, segundos: float, funcao: Callable[[], None], nome: str):
        self.segundos = segundos
        self.funcao = funcao
        self._cancelado = threading.Event()
        self._thread = threading.Thread(target=self._executar, name=nome, daemon=True)

    def iniciar(self):
        self._thread.start()
        return self

    def cancelar(self):
        self._cancelado.set()

    def aguardar(self, timeout: float) -> None:
        """Espera o ciclo em andamento terminar. Chamado da própria thread, não faz nada."""
        if self._thread is not threading.current_thread() and self._thread.is_alive():
            self._thread.join(timeout)

    def _executar(self):
        while not self._cancelado.wait(self.segundos):
            try:
                self.funcao()
            except Exception as e:
                logger.exception("Erro no ciclo %s: %s", self._thread.name, e)


def _arredondar(valor, casas: int):
    if valor is None or isinstance(valor, bool):
        return None
    try:
        numero = float(valor)
    except (TypeError, ValueError):
        return None
    return round(numero, casas) if math.isfinite(numero) else None


def _nao_negativo(valor):
    return valor if valor is not None and valor >= 0 else None


def _instante_iso(valor) -> str:
    """Timestamp da leitura: epoch em ms (como o navegador entrega), ISO ou agora."""
    if isinstance(valor, (int, float)) and not isinstance(valor, bool):
        return datetime.fromtimestamp(valor / 1000, tz=timezone.utc).isoformat()
    if isinstance(valor, str) and valor.strip():
        return valor.strip()
    return datetime.now(timezone.utc).isoformat()


class RelayRastreamento:
    """Captura periódica, envio autenticado e fila com retry limitado das posições de uma coleta."""

    def __init__(self,
                 url_base: str,
                 fila: FilaPosicoes,
                 provedor_posicao: Optional[Callable[[str], Optional[dict]]] = None,
                 notificar: Optional[Callable[[dict], None]] = None,
                 intervalo: float = 120,
                 max_tentativas: int = 5,
                 lote: int = 10,
                 timeout: float = 15):
        self.url = url_base.rstrip('/') + ENDPOINT_POSICAO
        self.fila = fila
        self.provedor_posicao = provedor_posicao
        self.notificar = notificar
        self.intervalo = intervalo
        self.max_tentativas = max_tentativas
        self.lote = lote
        self.timeout = timeout

        self.estado = ESTADO_PARADO
        self.coleta_id = None
        self.token = None
        self.ultima_posicao = None
        self.sync_pendente = False
        self._intervalo_envio = None
        self._intervalo_fila = None
        # Protege estado e timers; nunca fica preso durante chamadas HTTP
        self._lock = threading.RLock()
        # Setado por parar(): o envio de pendentes em andamento para na próxima entrada
        self._interromper = threading.Event()
        # Só um envio de pendentes por vez, para a mesma entrada não sair duas vezes
        self._enviando_pendentes = False

    @classmethod
    def from_config(cls, config, url_base: str, **kwargs):
        """Cria o relay com intervalo, tentativas, lote e caminho da fila vindos do Config."""
        fila = kwargs.pop('fila', None) or FilaPosicoes(config.RASTREAMENTO_FILA_PATH)
        return cls(
            url_base,
            fila,
            intervalo=config.RASTREAMENTO_INTERVALO_ENVIO,
            max_tentativas=config.RASTREAMENTO_MAX_TENTATIVAS,
            lote=config.RASTREAMENTO_LOTE_PENDENTES,
            **kwargs,
        )

    @property
    def ativo(self) -> bool:
        return self.estado == ESTADO_ATIVO

    # ------------------------------------------------------------------
    # Mensagens
    # ------------------------------------------------------------------

    def processar_mensagem(self, mensagem: dict) -> None:
        """Trata uma mensagem vinda da página/app em primeiro plano."""
        tipo = (mensagem or {}).get('type')
        logger.debug("Mensagem recebida: %s", tipo)

        if tipo == INICIAR_RASTREAMENTO:
            self.iniciar(mensagem.get('coletaId'), mensagem.get('tokenRastreamento'))
        elif tipo == PARAR_RASTREAMENTO:
            self.parar()
        elif tipo == ATUALIZAR_TOKEN:
            self.atualizar_token(mensagem.get('tokenRastreamento'))
        elif tipo == NOVA_POSICAO:
            self.enviar_posicoes_pendentes(mensagem.get('coletaId'))
        elif tipo == POSICAO_GPS:
            try:
                self.enviar_posicao(mensagem.get('position'))
            except EnvioPosicaoError as e:
                logger.warning("Posição recebida da página não foi enviada: %s", e)
        else:
            logger.warning("Tipo de mensagem desconhecido ignorado: %s", tipo)

    def _emitir(self, tipo: str, **dados) -> None:
        if not self.notificar:
            return
        try:
            self.notificar({'type': tipo, **dados})
        except Exception as e:
            logger.exception("Falha ao notificar %s: %s", tipo, e)

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def iniciar(self, coleta_id, token) -> bool:
        """Ativa o rastreamento: captura imediata e timers de envio e de fila."""
        if not coleta_id or not token:
            logger.error("Dados insuficientes para rastreamento (coleta=%s, token=%s)",
                         coleta_id, 'sim' if token else 'não')
            return False

        with self._lock:
            self._cancelar_timers()
            self.coleta_id = str(coleta_id)
            self.token = token
            self.estado = ESTADO_ATIVO
            logger.info("Rastreamento GPS iniciado para coleta %s", self.coleta_id)

        self.obter_e_enviar_posicao()

        with self._lock:
            if self.ativo:
                self._intervalo_envio = _Intervalo(
                    self.intervalo, self.obter_e_enviar_posicao, 'relay-envio').iniciar()
                self._intervalo_fila = _Intervalo(
                    self.intervalo * 2, self._ciclo_fila, 'relay-fila').iniciar()

        self._emitir(RASTREAMENTO_INICIADO, message='Rastreamento GPS iniciado em background')
        return True

    def parar(self) -> None:
        with self._lock:
            self.estado = ESTADO_PARADO
            self._interromper.set()
            intervalos = self._cancelar_timers()
        # Fora do lock: o ciclo em andamento pode precisar dele para terminar
        for intervalo in intervalos:
            intervalo.aguardar(self.timeout + 1)
        logger.info("Rastreamento GPS parado (coleta %s)", self.coleta_id)
        self._emitir(RASTREAMENTO_PARADO, message='Rastreamento GPS parado')

    def atualizar_token(self, token) -> None:
        if not token:
            logger.warning("ATUALIZAR_TOKEN sem token ignorado")
            return
        with self._lock:
            self.token = token
        logger.info("Token de rastreamento atualizado (coleta %s)", self.coleta_id)

    def _cancelar_timers(self) -> list:
        """Cancela os timers e devolve os que estavam ativos."""
        cancelados = [i for i in (self._intervalo_envio, self._intervalo_fila) if i is not None]
        for intervalo in cancelados:
            intervalo.cancelar()
        self._intervalo_envio = None
        self._intervalo_fila = None
        return cancelados

    def _ciclo_fila(self) -> None:
        """Sem provedor de posição (página fechada), o timer da fila é quem envia as pendentes."""
        if self.ativo and self.provedor_posicao is None:
            logger.info("Nenhum provedor de posição ativo, enviando posições da fila")
            self.enviar_posicoes_pendentes()

    # ------------------------------------------------------------------
    # Envio
    # ------------------------------------------------------------------

    def obter_e_enviar_posicao(self) -> None:
        """Pede uma leitura ao provedor e envia; sem leitura, tenta esvaziar a fila."""
        if not self.ativo or not self.coleta_id or not self.token:
            return
        if self.provedor_posicao is None:
            self.enviar_posicoes_pendentes()
            return
        try:
            leitura = self.provedor_posicao(self.coleta_id)
        except Exception as e:
            logger.error("Erro ao obter posição do provedor: %s", e)
            self.enviar_posicoes_pendentes()
            return
        if leitura is None:
            self.enviar_posicoes_pendentes()
            return
        try:
            self.enviar_posicao(leitura)
        except EnvioPosicaoError as e:
            logger.warning("Envio da posição falhou, ficou na fila: %s", e)

    def montar_payload(self, position: dict) -> Optional[dict]:
        """Converte uma leitura {coords: {...}} no corpo da API. None se as coordenadas forem inválidas."""
        coords = (position or {}).get('coords') or {}
        latitude = _arredondar(coords.get('latitude'), 6)
        longitude = _arredondar(coords.get('longitude'), 6)
        if latitude is None or longitude is None or not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
            return None
        # GPS sem leitura de velocidade/rumo informa -1 (iOS): vira None em vez de ser recusado
        velocidade = _nao_negativo(_arredondar(coords.get('speed'), 6))
        direcao = _nao_negativo(_arredondar(coords.get('heading'), 2))
        return {
            'coletaId': self.coleta_id,
            'latitude': latitude,
            'longitude': longitude,
            'precisao': _nao_negativo(_arredondar(coords.get('accuracy'), 2)),
            # m/s do GPS -> km/h
            'velocidade': round(velocidade * 3.6, 2) if velocidade is not None else None,
            'direcao': direcao if direcao is None or direcao <= 360 else None,
            'timestamp': _instante_iso(position.get('timestamp')),
        }

    def enviar_posicao(self, position: dict, token: Optional[str] = None) -> bool:
        """
        Envia uma leitura ao servidor.

        Returns:
            True se enviada, False se descartada por dados insuficientes/inválidos.

        Raises:
            EnvioPosicaoError: falha HTTP ou de rede; a posição foi enfileirada, exceto
                quando o servidor a recusou de forma definitiva (400, 404, 409, 422).
        """
        token = token or self.token
        if not position or not self.coleta_id or not token:
            logger.warning("Dados insuficientes para enviar posição")
            return False

        payload = self.montar_payload(position)
        if payload is None:
            logger.error("Coordenadas inválidas, posição descartada")
            return False

        try:
            self._post(payload, token)
        except EnvioPosicaoError as e:
            logger.error("Erro ao enviar posição: %s", e)
            if e.definitivo:
                logger.warning("Servidor recusou a posição (HTTP %s), descartada", e.status)
            else:
                self.fila.adicionar(payload, token)
                self.registrar_sync()
            if e.token_invalido:
                self._emitir(TOKEN_INVALIDO, message='Token de rastreamento inválido')
            raise

        self.ultima_posicao = position
        logger.info("Posição enviada com sucesso (coleta %s)", self.coleta_id)
        self._emitir(POSICAO_ENVIADA, timestamp=datetime.now(timezone.utc).isoformat())
        return True

    def enviar_posicoes_pendentes(self, coleta_id: Optional[str] = None) -> dict:
        """
        Envia até `lote` posições pendentes da coleta, mais antigas primeiro.

        Sucesso remove a entrada; falha soma uma tentativa e, ao chegar em
        `max_tentativas`, a entrada é descartada. Recusa definitiva do servidor
        descarta na hora. Falhas aqui não reenfileiram. parar() interrompe o lote
        antes da próxima entrada.
        """
        resultado = {'enviadas': 0, 'falhas': 0, 'descartadas': 0}
        coleta_id = coleta_id or self.coleta_id
        if not coleta_id:
            return resultado

        with self._lock:
            if self._enviando_pendentes:
                logger.debug("Envio de pendentes já em andamento")
                return resultado
            self._enviando_pendentes = True
            self._interromper.clear()

        try:
            entradas = self.fila.pendentes(coleta_id, limite=self.lote)
            if not entradas:
                logger.debug("Nenhuma posição pendente para a coleta %s", coleta_id)
                return resultado
            logger.info("Encontradas %d posições pendentes para coleta %s", len(entradas), coleta_id)

            for entrada in entradas:
                if self._interromper.is_set():
                    logger.info("Rastreamento parado, envio de pendentes interrompido")
                    break
                token = entrada['token'] or self.token
                if not token:
                    logger.warning("Posição pendente %s sem token, pulando", entrada['id'])
                    continue
                try:
                    self._post(entrada['dados'], token)
                except EnvioPosicaoError as e:
                    resultado['falhas'] += 1
                    if e.definitivo:
                        self.fila.remover(entrada['id'])
                        resultado['descartadas'] += 1
                        logger.warning("Posição %s recusada pelo servidor (HTTP %s), removida",
                                       entrada['id'], e.status)
                    else:
                        tentativas = self.fila.incrementar_tentativas(entrada['id'])
                        logger.warning("Posição pendente %s falhou (tentativa %d/%d): %s",
                                       entrada['id'], tentativas, self.max_tentativas, e)
                        if tentativas >= self.max_tentativas:
                            self.fila.remover(entrada['id'])
                            resultado['descartadas'] += 1
                            logger.warning("Posição %s removida após %d tentativas", entrada['id'], tentativas)
                    if e.token_invalido:
                        self._emitir(TOKEN_INVALIDO, message='Token de rastreamento inválido')
                    continue
                self.fila.remover(entrada['id'])
                resultado['enviadas'] += 1
        finally:
            with self._lock:
                self._enviando_pendentes = False

        if resultado['enviadas']:
            self._emitir(POSICAO_ENVIADA, timestamp=datetime.now(timezone.utc).isoformat(),
                         pendentes_enviadas=resultado['enviadas'])
        return resultado

    def _post(self, payload: dict, token: str) -> dict:
        """POST JSON autenticado. Levanta EnvioPosicaoError em status != 2xx ou falha de rede."""
        req = Request(
            self.url,
            data=json.dumps(payload).encode('utf-8'),
            method='POST',
            headers={
                'Content-Type': 'application/json',
                'Authorization': f'Bearer {token}',
                'User-Agent': 'IntranetRelay/1.0',
            },
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                corpo = resp.read()
                return json.loads(corpo.decode('utf-8')) if corpo else {}
        except HTTPError as e:
            try:
                detalhe = e.read().decode('utf-8', errors='replace')[:200]
            except Exception:
                detalhe = ''
            raise EnvioPosicaoError(e.code, f"Erro HTTP {e.code} {detalhe}".strip()) from e
        except (URLError, OSError) as e:
            raise EnvioPosicaoError(None, f"Falha de comunicação: {e}") from e
        except ValueError:
            # 2xx com corpo que não é JSON: a posição foi aceita
            return {}

    # ------------------------------------------------------------------
    # Background sync
    # ------------------------------------------------------------------

    def registrar_sync(self) -> None:
        """Marca que há envio a refazer quando a conexão voltar."""
        if not self.sync_pendente:
            logger.info("Sync de rastreamento registrado")
        self.sync_pendente = True

    def sincronizar(self) -> dict:
        """Esvazia a fila e captura uma posição nova. Chamado quando a conexão é restabelecida."""
        logger.info("Sync de rastreamento acionado")
        self.sync_pendente = False
        resultado = self.enviar_posicoes_pendentes()
        self.obter_e_enviar_posicao()
        return resultado
