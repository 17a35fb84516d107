"""Rotas de monitoramento: health check simples e detalhado, métricas do processo."""
import logging
from datetime import datetime, timezone
from flask import jsonify
from intranet.routes import main
from intranet.limiter import limiter
from intranet.services.monitoring import get_system_metrics, realizar_health_check, uptime

logger = logging.getLogger(__name__)


@main.route('/health', methods=['GET'])
@limiter.exempt
def health():
    """Health check para load balancer e monitoramento. Retorna 200 quando a aplicação está no ar."""
    return jsonify({
        'status': 'ok',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'uptime': uptime(),
    }), 200


@main.route('/health/detailed', methods=['GET'])
def health_detailed():
    """Verifica Supabase e cache. 200 se tudo saudável, 503 se degradado."""
    try:
        health_info = realizar_health_check()
        status_code = 200 if health_info['status'] == 'healthy' else 503
        return jsonify(health_info), status_code
    except Exception as e:
        logger.exception("Erro no health check detalhado: %s", e)
        return jsonify({'status': 'error', 'error': 'Falha ao executar health check'}), 500


@main.route('/metrics', methods=['GET'])
def metrics():
    """Métricas do processo (memória, CPU, load average)."""
    return jsonify(get_system_metrics()), 200
