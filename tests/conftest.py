"""Configuração pytest e fixtures compartilhadas."""
import os
import pytest
from unittest.mock import patch, MagicMock

# Garante que o app seja importável (FLASK_ENV=testing evita exigência de SECRET_KEY de produção)
os.environ.setdefault('FLASK_ENV', 'testing')
os.environ.pop('REDIS_URL', None)


@pytest.fixture
def app():
    """Cria aplicação Flask para testes."""
    from intranet import create_app
    app = create_app()
    app.config['TESTING'] = True
    app.config['WTF_CSRF_ENABLED'] = False
    app.config['SECRET_KEY'] = 'test-secret'
    app.config['RASTREAMENTO_TOKEN_KEY'] = ''
    app.config['APP_BASE_URL'] = ''
    # Test client fala HTTP: cookie de sessão não pode exigir HTTPS
    app.config['SESSION_COOKIE_SECURE'] = False
    return app


@pytest.fixture
def client(app):
    """Cliente de teste para requisições HTTP."""
    return app.test_client()


@pytest.fixture(autouse=True)
def limpar_cache():
    """Cache em memória é global do processo: cada teste começa vazio."""
    from intranet import cache
    cache.invalidar()
    cache.resetar_estatisticas()
    yield
    cache.invalidar()


def _usuario(uid, email, nome, perfil, motorista_id=None, ativo=True):
    """Cria um Usuario real com senha 'ok'."""
    from intranet.models_usuario import Usuario
    u = Usuario(id=uid, email=email, nome=nome, perfil=perfil, motorista_id=motorista_id, ativo=ativo)
    u.set_password('ok')
    return u


def _logar(client, user):
    with patch('intranet.models_usuario.Usuario.get_by_email', return_value=user):
        r = client.post('/api/login', json={'email': user.email, 'senha': 'ok'})
    assert r.status_code == 200


@pytest.fixture
def usuario_factory():
    return _usuario


@pytest.fixture
def client_logado_admin(client, app):
    """Cliente com usuário admin já logado."""
    user = _usuario('admin_1', 'admin@test.com', 'Admin Teste', 'admin')
    with patch('intranet.models_usuario.Usuario.get_by_id', return_value=user):
        _logar(client, user)
        yield client


@pytest.fixture
def client_logado_operador(client, app):
    """Cliente com usuário operador já logado."""
    user = _usuario('op_1', 'op@test.com', 'Operador Teste', 'operador')
    with patch('intranet.models_usuario.Usuario.get_by_id', return_value=user):
        _logar(client, user)
        yield client


@pytest.fixture
def client_logado_motorista(client, app):
    """Cliente com motorista (motorista_id='mot_1') já logado. Só rastreia coletas do mot_1."""
    user = _usuario('usr_mot_1', 'motorista@test.com', 'Motorista Teste', 'motorista', motorista_id='mot_1')
    with patch('intranet.models_usuario.Usuario.get_by_id', return_value=user):
        _logar(client, user)
        yield client


@pytest.fixture
def mock_supabase():
    """
    Mock do cliente Supabase para testes que não devem acessar o banco real.
    Use: def test_x(mock_supabase): mock_supabase.table.return_value... (mesmo mock em todos os models).
    """
    mock_db = MagicMock()
    with patch('intranet.database.get_db', return_value=mock_db), \
            patch('intranet.models_usuario.get_db', return_value=mock_db), \
            patch('intranet.models_coleta.get_db', return_value=mock_db), \
            patch('intranet.models_posicao.get_db', return_value=mock_db):
        yield mock_db
