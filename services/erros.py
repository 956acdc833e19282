"""
Exceções de domínio dos serviços de prazos, documentos e notificações.

Os serviços levantam estas exceções; os routers as convertem em HTTPException.
"""

from fastapi import HTTPException, status


class ErroPrazos(Exception):
    """Base de todos os erros de domínio."""


class ErroValidacaoPrazo(ErroPrazos):
    """Entrada inválida, detectada antes de qualquer chamada remota."""

    def __init__(self, mensagem: str, campos: list[str] | None = None):
        super().__init__(mensagem)
        self.campos = campos or []


class PrazoNaoEncontrado(ErroPrazos):
    pass


class DocumentoNaoEncontrado(ErroPrazos):
    pass


class NotificacaoNaoEncontrada(ErroPrazos):
    pass


class TransicaoStatusInvalida(ErroPrazos):
    def __init__(self, atual: str, novo: str):
        super().__init__(f"Transição de status não permitida: {atual} -> {novo}")
        self.atual = atual
        self.novo = novo


class DocumentoInvalido(ErroPrazos):
    """Arquivo vazio, grande demais ou de formato não suportado."""


class ErroRemoto(ErroPrazos):
    """Falha de rede ou de escrita no Supabase / funções serverless."""


def para_http(erro: ErroPrazos) -> HTTPException:
    """Converte o erro de domínio na HTTPException equivalente."""
    if isinstance(erro, ErroValidacaoPrazo):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"tipo": "validacao", "mensagem": str(erro), "campos": erro.campos},
        )
    if isinstance(erro, (PrazoNaoEncontrado, DocumentoNaoEncontrado, NotificacaoNaoEncontrada)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(erro))
    if isinstance(erro, TransicaoStatusInvalida):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(erro))
    if isinstance(erro, DocumentoInvalido):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(erro))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"tipo": "rede", "mensagem": str(erro)},
    )
