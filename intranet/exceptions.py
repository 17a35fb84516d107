"""
Exceções customizadas da intranet.

Define exceções específicas para rastreamento, usuários, acesso ao Supabase
e ao relay de posições, com mensagens claras para o usuário e o status HTTP
correspondente (usado pelos handlers registrados em create_app).
"""


class IntranetError(Exception):
    """Exceção base da aplicação"""
    status_code = 500


class RastreamentoError(IntranetError):
    """Exceção base para erros de rastreamento GPS"""
    status_code = 400


class TokenRastreamentoInvalidoError(RastreamentoError):
    """Levantada quando o token de rastreamento está ausente, expirado ou adulterado"""
    status_code = 401

    def __init__(self, mensagem: str = "Token de rastreamento inválido"):
        self.mensagem = mensagem
        super().__init__(mensagem)


class PosicaoInvalidaError(RastreamentoError):
    """Levantada quando os dados da posição não passam na validação"""
    status_code = 400

    def __init__(self, erros: list = None, mensagem: str = "Dados de posição inválidos"):
        self.erros = erros or []
        self.mensagem = mensagem
        super().__init__(mensagem)


class ColetaNaoEncontradaError(RastreamentoError):
    """Levantada quando a coleta não existe"""
    status_code = 404

    def __init__(self, coleta_id: str):
        self.coleta_id = coleta_id
        super().__init__(f"Coleta {coleta_id} não encontrada")


class RastreamentoInativoError(RastreamentoError):
    """Levantada quando chega posição para coleta cujo rastreamento foi encerrado"""
    status_code = 409

    def __init__(self, coleta_id: str):
        self.coleta_id = coleta_id
        super().__init__(f"Rastreamento da coleta {coleta_id} não está ativo")


class UsuarioError(IntranetError):
    """Exceção base para erros de usuário"""
    status_code = 400


class AutenticacaoError(UsuarioError):
    """Levantada quando falha a autenticação"""
    status_code = 401

    def __init__(self, mensagem: str = "Email ou senha incorretos"):
        super().__init__(mensagem)


class PermissaoNegadaError(UsuarioError):
    """Levantada quando usuário não tem permissão"""
    status_code = 403

    def __init__(self, mensagem: str = "Você não tem permissão para esta ação"):
        super().__init__(mensagem)


class SupabaseError(IntranetError):
    """Exceção base para erros do Supabase"""
    status_code = 500


class RegistroNaoEncontradoError(SupabaseError):
    """Levantada quando o registro não existe na tabela"""
    status_code = 404

    def __init__(self, tabela: str, registro_id: str):
        self.tabela = tabela
        self.registro_id = registro_id
        super().__init__(f"Registro {registro_id} não encontrado em {tabela}")


class SupabaseIndisponivelError(SupabaseError):
    """Levantada quando o cliente Supabase não está configurado ou não responde"""
    status_code = 503

    def __init__(self, mensagem: str = "Banco de dados indisponível"):
        super().__init__(mensagem)


class RelayError(Exception):
    """Exceção base do relay de posições (lado do dispositivo)"""
    pass


class EnvioPosicaoError(RelayError):
    """Levantada quando o envio de uma posição ao servidor falha"""

    def __init__(self, status: int = None, mensagem: str = None):
        self.status = status
        if mensagem is None:
            mensagem = f"Erro HTTP {status}" if status else "Falha de comunicação com o servidor"
        self.mensagem = mensagem
        super().__init__(mensagem)

    @property
    def token_invalido(self) -> bool:
        return self.status in (401, 403)

    @property
    def definitivo(self) -> bool:
        """Recusa que não muda com novas tentativas (dados inválidos, coleta removida ou parada)."""
        return self.status in (400, 404, 409, 422)
