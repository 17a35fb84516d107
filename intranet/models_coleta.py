"""Visão somente-leitura de uma coleta, com o que o rastreamento precisa: motorista e flag de rastreamento ativo."""
import logging
from intranet.database import get_db
from intranet.cache import cached_query, cache_delete
from intranet.supabase_retry import execute_with_retry, supabase_retry

logger = logging.getLogger(__name__)


def _cache_key(coleta_id: str) -> str:
    return f'coletas:{coleta_id}'


class Coleta:
    """Coleta (ordem de carga) vinculada a um motorista"""

    def __init__(self, id: str, motorista_id: str = None, status: str = None,
                 rastreamento_ativo: bool = False):
        self.id = id
        self.motorista_id = motorista_id
        self.status = status
        self.rastreamento_ativo = bool(rastreamento_ativo)

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            id=str(data.get('id')),
            motorista_id=data.get('motorista_id'),
            status=data.get('status'),
            rastreamento_ativo=data.get('rastreamento_ativo') or False,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'motorista_id': self.motorista_id,
            'status': self.status,
            'rastreamento_ativo': self.rastreamento_ativo,
        }

    @classmethod
    def get_by_id(cls, coleta_id: str):
        """Busca a coleta por ID. Retorna None se não existir."""
        @supabase_retry(max_retries=3)
        def _consulta():
            resp = (
                get_db().table('coletas')
                .select('id, motorista_id, status, rastreamento_ativo')
                .eq('id', coleta_id)
                .limit(1)
                .execute()
            )
            return resp.data[0] if resp.data else None

        data = cached_query(_consulta, _cache_key(coleta_id), 'coletas')
        return cls.from_dict(data) if data else None

    def definir_rastreamento(self, ativo: bool) -> None:
        """Atualiza a flag rastreamento_ativo e invalida o cache da coleta."""
        execute_with_retry(
            get_db().table('coletas').update({'rastreamento_ativo': bool(ativo)}).eq('id', self.id).execute,
            max_retries=3,
        )
        self.rastreamento_ativo = bool(ativo)
        cache_delete(_cache_key(self.id))
        logger.info("Rastreamento da coleta %s %s", self.id, 'ativado' if ativo else 'desativado',
                    extra={'categoria': 'operacao'})

    def __repr__(self):
        return f'<Coleta {self.id} rastreamento={self.rastreamento_ativo}>'
