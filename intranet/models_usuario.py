import logging
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from intranet.database import get_db
from intranet.cache import cached_query, cache_delete
from intranet.supabase_retry import supabase_retry

logger = logging.getLogger(__name__)

PERFIS = ('admin', 'operador', 'motorista')


def _cache_key(user_id: str) -> str:
    return f'usuarios:{user_id}'


class Usuario(UserMixin):
    """Representação de um usuário da intranet"""

    def __init__(self, id: str, email: str, nome: str, perfil: str = 'operador',
                 motorista_id: str = None, ativo: bool = True):
        self.id = id
        self.email = email
        self.nome = nome
        self.perfil = perfil  # 'admin', 'operador' ou 'motorista'
        self.motorista_id = motorista_id  # preenchido para perfil motorista
        self.ativo = ativo
        self.senha_hash = None

    @property
    def is_active(self):
        return bool(self.ativo)

    def set_password(self, senha: str):
        """Define a senha com hash"""
        self.senha_hash = generate_password_hash(senha)

    def check_password(self, senha: str) -> bool:
        """Verifica se a senha está correta"""
        return check_password_hash(self.senha_hash, senha) if self.senha_hash else False

    def pode_rastrear(self, coleta) -> bool:
        """Admin e operador rastreiam qualquer coleta; motorista só as próprias."""
        if self.perfil in ('admin', 'operador'):
            return True
        if self.perfil == 'motorista':
            return bool(self.motorista_id) and str(coleta.motorista_id) == str(self.motorista_id)
        return False

    def to_dict(self):
        """Converte para dicionário para salvar no Supabase"""
        return {
            'id': self.id,
            'email': self.email,
            'nome': self.nome,
            'perfil': self.perfil,
            'motorista_id': self.motorista_id,
            'ativo': self.ativo,
            'senha_hash': self.senha_hash,
        }

    def to_public_dict(self):
        """Dados seguros para resposta da API (sem hash de senha)"""
        return {
            'id': self.id,
            'email': self.email,
            'nome': self.nome,
            'perfil': self.perfil,
            'motorista_id': self.motorista_id,
        }

    @classmethod
    def from_dict(cls, data: dict, id: str = None):
        """Cria um objeto Usuario a partir de uma linha da tabela usuarios"""
        usuario = cls(
            id=str(id or data.get('id')),
            email=data.get('email'),
            nome=data.get('nome'),
            perfil=data.get('perfil', 'operador'),
            motorista_id=data.get('motorista_id'),
            ativo=data.get('ativo', True) is not False,
        )
        usuario.senha_hash = data.get('senha_hash')
        return usuario

    @classmethod
    def get_by_email(cls, email: str):
        """Busca usuário por email (sem cache: usado no login)"""
        try:
            resp = get_db().table('usuarios').select('*').eq('email', email.strip().lower()).limit(1).execute()
            if resp.data:
                return cls.from_dict(resp.data[0])
        except Exception as e:
            logger.exception("Erro ao buscar usuário por email: %s", e)
        return None

    @classmethod
    def get_by_id(cls, user_id: str):
        """Busca usuário por ID (cacheado; chamado a cada requisição pelo Flask-Login)"""
        def _consulta():
            resp = get_db().table('usuarios').select('*').eq('id', user_id).limit(1).execute()
            return resp.data[0] if resp.data else None

        try:
            data = cached_query(_consulta, _cache_key(user_id), 'usuarios')
            if data:
                return cls.from_dict(data)
        except Exception as e:
            logger.exception("Erro ao buscar usuário por ID: %s", e)
        return None

    @supabase_retry(max_retries=3)
    def save(self):
        """Grava (upsert) o usuário no Supabase com retry automático"""
        get_db().table('usuarios').upsert(self.to_dict()).execute()
        cache_delete(_cache_key(self.id))
        return True

    def __repr__(self):
        return f'<Usuario {self.email} ({self.perfil})>'
