"""
Serviço de rastreamento GPS de coletas.

Fluxo:
1. Operador (ou o próprio motorista) inicia o rastreamento de uma coleta e recebe um token.
2. O dispositivo envia posições periodicamente com `Authorization: Bearer <token>`.
3. Cada posição é validada, conferida contra a coleta do token e gravada em
   `rastreamento_posicoes`; a última posição fica em cache para o painel.
4. Ao parar o rastreamento, novas posições daquela coleta passam a ser recusadas (409).
"""
import logging

from flask import current_app

from intranet.exceptions import (
    ColetaNaoEncontradaError,
    PermissaoNegadaError,
    PosicaoInvalidaError,
    RastreamentoInativoError,
)
from intranet.models_coleta import Coleta
from intranet.models_posicao import Posicao
from intranet.services.tokens import gerar_token, validar_token
from intranet.services.validators import normalizar_posicao, validar_posicao

logger = logging.getLogger(__name__)

LIMITE_MAXIMO_LISTAGEM = 1000


def _obter_coleta(coleta_id: str) -> Coleta:
    coleta = Coleta.get_by_id(coleta_id)
    if coleta is None:
        raise ColetaNaoEncontradaError(coleta_id)
    return coleta


def iniciar_rastreamento(coleta_id: str, usuario) -> dict:
    """
    Ativa o rastreamento da coleta e emite o token do dispositivo.

    Raises:
        ColetaNaoEncontradaError: coleta inexistente.
        PermissaoNegadaError: usuário sem permissão sobre a coleta.
    """
    coleta = _obter_coleta(coleta_id)
    if not usuario.pode_rastrear(coleta):
        logger.warning("Usuário %s tentou rastrear coleta %s sem permissão", usuario.email, coleta_id,
                       extra={'categoria': 'seguranca'})
        raise PermissaoNegadaError("Você não tem permissão para rastrear esta coleta")

    if not coleta.rastreamento_ativo:
        coleta.definir_rastreamento(True)

    token = gerar_token(coleta.id, coleta.motorista_id)
    logger.info("Rastreamento iniciado: coleta=%s por %s", coleta.id, usuario.email,
                extra={'categoria': 'operacao'})
    return {
        'coleta_id': coleta.id,
        'token': token,
        'expira_em_segundos': current_app.config.get('RASTREAMENTO_TOKEN_TTL'),
        'intervalo_envio_segundos': current_app.config.get('RASTREAMENTO_INTERVALO_ENVIO'),
    }


def parar_rastreamento(coleta_id: str, usuario) -> dict:
    """Desativa o rastreamento. Tokens já emitidos deixam de ser aceitos para a coleta."""
    coleta = _obter_coleta(coleta_id)
    if not usuario.pode_rastrear(coleta):
        raise PermissaoNegadaError("Você não tem permissão para parar este rastreamento")
    if coleta.rastreamento_ativo:
        coleta.definir_rastreamento(False)
    logger.info("Rastreamento parado: coleta=%s por %s", coleta.id, usuario.email,
                extra={'categoria': 'operacao'})
    return {'coleta_id': coleta.id, 'rastreamento_ativo': False}


def registrar_posicao(token: str, dados) -> dict:
    """
    Registra uma posição enviada pelo dispositivo.

    Raises:
        TokenRastreamentoInvalidoError: token ausente/expirado/adulterado (401).
        PosicaoInvalidaError: corpo inválido (400).
        PermissaoNegadaError: posição de coleta diferente da do token (403).
        ColetaNaoEncontradaError: coleta removida (404).
        RastreamentoInativoError: rastreamento encerrado (409).
    """
    payload = validar_token(token)

    erros = validar_posicao(dados)
    if erros:
        raise PosicaoInvalidaError(erros)
    posicao_dados = normalizar_posicao(dados)

    if posicao_dados['coleta_id'] != str(payload['coleta_id']):
        logger.warning(
            "Posição para coleta %s enviada com token da coleta %s",
            posicao_dados['coleta_id'], payload['coleta_id'],
            extra={'categoria': 'seguranca'},
        )
        raise PermissaoNegadaError("Token não pertence a esta coleta")

    coleta = _obter_coleta(posicao_dados['coleta_id'])
    if not coleta.rastreamento_ativo:
        raise RastreamentoInativoError(coleta.id)

    posicao = Posicao(
        coleta_id=coleta.id,
        motorista_id=payload.get('motorista_id') or coleta.motorista_id,
        latitude=posicao_dados['latitude'],
        longitude=posicao_dados['longitude'],
        precisao=posicao_dados['precisao'],
        velocidade=posicao_dados['velocidade'],
        direcao=posicao_dados['direcao'],
        registrado_em=posicao_dados['registrado_em'],
    ).save()
    logger.info("Posição recebida: coleta=%s (%s, %s)", coleta.id, posicao.latitude, posicao.longitude,
                extra={'categoria': 'operacao'})
    return posicao.to_api_dict()


def listar_posicoes(coleta_id: str, limite: int = 500, desde: str = None) -> list:
    """Histórico de posições da coleta em ordem cronológica."""
    _obter_coleta(coleta_id)
    limite = max(1, min(int(limite), LIMITE_MAXIMO_LISTAGEM))
    return [p.to_api_dict() for p in Posicao.listar_por_coleta(coleta_id, limite=limite, desde=desde)]


def ultima_posicao(coleta_id: str):
    """Posição mais recente da coleta, ou None se nenhuma foi registrada."""
    _obter_coleta(coleta_id)
    posicao = Posicao.ultima_da_coleta(coleta_id)
    return posicao.to_api_dict() if posicao else None
