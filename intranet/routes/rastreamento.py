"""Rotas de rastreamento GPS: início/fim por coleta, recebimento de posições e consulta."""
import logging
from flask import request, jsonify
from flask_login import login_required, current_user
from intranet.routes import main
from intranet.limiter import limiter, chave_por_token
from intranet.exceptions import IntranetError, PosicaoInvalidaError, SupabaseIndisponivelError
from intranet.services import rastreamento
from intranet.services.tokens import extrair_bearer
from intranet.supabase_retry import falha_transitoria

logger = logging.getLogger(__name__)

# Mensagem genérica em respostas 500 para não expor detalhes internos em produção
ERRO_INTERNO_MSG = "Erro interno. Tente novamente."


def _resposta_erro(e: IntranetError):
    corpo = {'sucesso': False, 'erro': str(e)}
    if isinstance(e, PosicaoInvalidaError):
        corpo['detalhes'] = e.erros
    return jsonify(corpo), e.status_code


def _resposta_inesperada(rota: str, e: Exception):
    # Falha de rede/5xx do Supabase fora do retry: o cliente pode tentar de novo
    if falha_transitoria(e):
        logger.error("Supabase indisponível em %s: %s", rota, e)
        return _resposta_erro(SupabaseIndisponivelError())
    logger.exception("Erro em %s: %s", rota, e)
    return jsonify({'sucesso': False, 'erro': ERRO_INTERNO_MSG}), 500


@main.route('/api/rastreamento/enviar-posicao', methods=['POST'])
@limiter.limit("30 per minute", key_func=chave_por_token)
def enviar_posicao():
    """Recebe uma posição GPS do dispositivo. Autenticação por token Bearer (sem sessão, sem CSRF)."""
    token = extrair_bearer(request.headers.get('Authorization'))
    try:
        posicao = rastreamento.registrar_posicao(token, request.get_json(silent=True))
        return jsonify({'sucesso': True, 'posicao': posicao}), 200
    except IntranetError as e:
        if e.status_code >= 500:
            logger.error("Falha ao registrar posição: %s", e)
        return _resposta_erro(e)
    except Exception as e:
        return _resposta_inesperada('enviar_posicao', e)


@main.route('/api/rastreamento/coletas/<coleta_id>/iniciar', methods=['POST'])
@login_required
def iniciar_rastreamento(coleta_id):
    """Ativa o rastreamento da coleta e devolve o token para o dispositivo."""
    try:
        dados = rastreamento.iniciar_rastreamento(coleta_id, current_user)
        return jsonify({'sucesso': True, **dados}), 200
    except IntranetError as e:
        return _resposta_erro(e)
    except Exception as e:
        return _resposta_inesperada('iniciar_rastreamento', e)


@main.route('/api/rastreamento/coletas/<coleta_id>/parar', methods=['POST'])
@login_required
def parar_rastreamento(coleta_id):
    """Encerra o rastreamento da coleta."""
    try:
        dados = rastreamento.parar_rastreamento(coleta_id, current_user)
        return jsonify({'sucesso': True, **dados}), 200
    except IntranetError as e:
        return _resposta_erro(e)
    except Exception as e:
        return _resposta_inesperada('parar_rastreamento', e)


@main.route('/api/rastreamento/coletas/<coleta_id>/posicoes', methods=['GET'])
@login_required
def listar_posicoes(coleta_id):
    """Histórico de posições. Query: limite (1..1000, padrão 500), desde (ISO 8601)."""
    try:
        limite = int(request.args.get('limite', 500))
    except ValueError:
        return jsonify({'sucesso': False, 'erro': 'limite deve ser um número inteiro'}), 400
    desde = (request.args.get('desde') or '').strip() or None
    try:
        posicoes = rastreamento.listar_posicoes(coleta_id, limite=limite, desde=desde)
        return jsonify({'sucesso': True, 'coleta_id': coleta_id, 'total': len(posicoes), 'posicoes': posicoes}), 200
    except IntranetError as e:
        return _resposta_erro(e)
    except Exception as e:
        return _resposta_inesperada('listar_posicoes', e)


@main.route('/api/rastreamento/coletas/<coleta_id>/ultima-posicao', methods=['GET'])
@login_required
def ultima_posicao(coleta_id):
    """Posição mais recente da coleta (404 se ainda não houver nenhuma)."""
    try:
        posicao = rastreamento.ultima_posicao(coleta_id)
        if posicao is None:
            return jsonify({'sucesso': False, 'erro': 'Nenhuma posição registrada'}), 404
        return jsonify({'sucesso': True, 'posicao': posicao}), 200
    except IntranetError as e:
        return _resposta_erro(e)
    except Exception as e:
        return _resposta_inesperada('ultima_posicao', e)
