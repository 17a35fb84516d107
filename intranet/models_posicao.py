from datetime import datetime, timezone
import logging
import uuid
import pytz
from intranet.database import get_db
from intranet.cache import cache_get, cache_set_tipo
from intranet.supabase_retry import supabase_retry

logger = logging.getLogger(__name__)

TABELA = 'rastreamento_posicoes'
FUSO_BRASILIA = pytz.timezone('America/Sao_Paulo')


def cache_key_ultima(coleta_id: str) -> str:
    return f'posicoes:ultima:{coleta_id}'


def _instante(valor):
    if isinstance(valor, datetime):
        return valor if valor.tzinfo else pytz.utc.localize(valor)
    if not isinstance(valor, str):
        return None
    try:
        ts = datetime.fromisoformat(valor.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else pytz.utc.localize(ts)


class Posicao:
    """Leitura GPS registrada para uma coleta"""

    def __init__(self,
                 coleta_id: str,
                 latitude: float,
                 longitude: float,
                 motorista_id: str = None,
                 precisao: float = None,    # metros
                 velocidade: float = None,  # km/h
                 direcao: float = None,     # graus
                 registrado_em=None,
                 recebido_em=None,
                 id: str = None):

        self.id = id
        self.coleta_id = coleta_id
        self.motorista_id = motorista_id
        self.latitude = latitude
        self.longitude = longitude
        self.precisao = precisao
        self.velocidade = velocidade
        self.direcao = direcao
        self.recebido_em = recebido_em or datetime.now(timezone.utc).isoformat()
        self.registrado_em = registrado_em or self.recebido_em

    def to_dict(self):
        """Converte para dicionário para salvar no Supabase"""
        d = {
            'coleta_id': self.coleta_id,
            'motorista_id': self.motorista_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'precisao': self.precisao,
            'velocidade': self.velocidade,
            'direcao': self.direcao,
            'registrado_em': self.registrado_em,
            'recebido_em': self.recebido_em,
        }
        if self.id is not None:
            d['id'] = self.id
        return d

    @classmethod
    def from_dict(cls, data: dict):
        """Cria um objeto Posicao a partir de uma linha da tabela"""
        return cls(
            id=data.get('id'),
            coleta_id=data.get('coleta_id'),
            motorista_id=data.get('motorista_id'),
            latitude=data.get('latitude'),
            longitude=data.get('longitude'),
            precisao=data.get('precisao'),
            velocidade=data.get('velocidade'),
            direcao=data.get('direcao'),
            registrado_em=data.get('registrado_em'),
            recebido_em=data.get('recebido_em'),
        )

    @supabase_retry(max_retries=3)
    def save(self):
        """Grava a posição e atualiza o cache de última posição da coleta.

        O id é gerado aqui e a gravação é um upsert por id, então uma nova
        tentativa depois de um timeout não duplica a linha.
        """
        if self.id is None:
            self.id = str(uuid.uuid4())
        get_db().table(TABELA).upsert(self.to_dict(), on_conflict='id').execute()
        self._atualizar_cache_ultima()
        logger.debug("Posição %s salva para coleta %s", self.id, self.coleta_id)
        return self

    def _atualizar_cache_ultima(self):
        # Posições da fila chegam atrasadas: só substitui se não for mais antiga
        chave = cache_key_ultima(self.coleta_id)
        cached = cache_get(chave)
        if cached:
            atual = _instante(cached.get('registrado_em'))
            nova = _instante(self.registrado_em)
            if atual and nova and nova < atual:
                return
        cache_set_tipo(chave, self.to_dict(), 'posicoes')

    @classmethod
    @supabase_retry(max_retries=3)
    def listar_por_coleta(cls, coleta_id: str, limite: int = 500, desde: str = None):
        """Posições da coleta em ordem cronológica (mais antigas primeiro)"""
        query = get_db().table(TABELA).select('*').eq('coleta_id', coleta_id)
        if desde:
            query = query.gte('registrado_em', desde)
        resp = query.order('registrado_em').limit(limite).execute()
        return [cls.from_dict(row) for row in (resp.data or [])]

    @classmethod
    @supabase_retry(max_retries=3)
    def ultima_da_coleta(cls, coleta_id: str):
        """Posição mais recente da coleta (cache de curta duração)"""
        cached = cache_get(cache_key_ultima(coleta_id))
        if cached:
            return cls.from_dict(cached)
        resp = (
            get_db().table(TABELA)
            .select('*')
            .eq('coleta_id', coleta_id)
            .order('registrado_em', desc=True)
            .limit(1)
            .execute()
        )
        if not resp.data:
            return None
        cache_set_tipo(cache_key_ultima(coleta_id), resp.data[0], 'posicoes')
        return cls.from_dict(resp.data[0])

    def registrado_em_formatado(self):
        """Retorna registrado_em no horário de Brasília (dd/mm/aaaa HH:MM:SS)"""
        ts = _instante(self.registrado_em)
        if ts is None:
            return '-'
        return ts.astimezone(FUSO_BRASILIA).strftime('%d/%m/%Y %H:%M:%S')

    def to_api_dict(self):
        d = self.to_dict()
        d['id'] = self.id
        d['registrado_em_local'] = self.registrado_em_formatado()
        return d

    def __repr__(self):
        return f'<Posicao {self.coleta_id} ({self.latitude}, {self.longitude})>'
