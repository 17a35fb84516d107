"""Métricas do processo e health check detalhado (Supabase + cache)."""
import os
import sys
import time
import logging
import platform
from datetime import datetime, timezone

from intranet import cache
from intranet.database import verificar_conexao

logger = logging.getLogger(__name__)

_INICIO = time.time()


def uptime() -> float:
    """Segundos desde que o módulo foi carregado (início do processo web)."""
    return round(time.time() - _INICIO, 2)


def _memoria_mb():
    try:
        import resource
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss: KB no Linux, bytes no macOS
        divisor = 1024 * 1024 if sys.platform == 'darwin' else 1024
        return round(rss / divisor, 1)
    except (ImportError, OSError):
        return None


def get_system_metrics() -> dict:
    """Métricas básicas do processo e do sistema."""
    try:
        load = list(os.getloadavg())
    except (AttributeError, OSError):
        load = None
    cpu = os.times()
    return {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'uptime': uptime(),
        'memoria': {'max_rss_mb': _memoria_mb()},
        'cpu': {'user': round(cpu.user, 2), 'system': round(cpu.system, 2)},
        'plataforma': {
            'sistema': platform.system(),
            'release': platform.release(),
            'arquitetura': platform.machine(),
            'python': platform.python_version(),
        },
        'load_average': load,
        'pid': os.getpid(),
    }


def realizar_health_check() -> dict:
    """
    Verifica os serviços de que a aplicação depende.

    Status geral: 'healthy' quando todos respondem, 'degraded' se algum falhar.
    """
    health = {
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'services': {},
        'metrics': get_system_metrics(),
    }

    inicio = time.monotonic()
    ok, erro = verificar_conexao()
    health['services']['supabase'] = {
        'status': 'healthy' if ok else 'unhealthy',
        'tempo_resposta_ms': round((time.monotonic() - inicio) * 1000, 1),
    }
    if erro:
        health['services']['supabase']['error'] = erro

    try:
        health['services']['cache'] = {'status': 'healthy', 'stats': cache.estatisticas()}
    except Exception as e:
        logger.warning("Falha ao ler estatísticas do cache: %s", e)
        health['services']['cache'] = {'status': 'unhealthy', 'error': str(e)}

    if any(s['status'] == 'unhealthy' for s in health['services'].values()):
        health['status'] = 'degraded'
    return health
