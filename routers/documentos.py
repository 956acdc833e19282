from fastapi import APIRouter, UploadFile, File, Form, Depends, status, Path
from fastapi.concurrency import run_in_threadpool
from supabase import Client
from typing import Optional

from models.documento_model import ConfirmarPrazoDocumento
from services.auth import pegar_usuario, pegar_usuario_admin
from services.erros import ErroPrazos, para_http
from services import documentos as servico

router = APIRouter(
    prefix="/documentos",
    tags=["Documentos"]
)


@router.post("/upload-prazo", status_code=status.HTTP_201_CREATED)
async def upload_documento_prazo(
    arquivo: UploadFile = File(...),
    empresa_id: str = Form(...),
    tipo_documento: Optional[str] = Form(None),
    numero_documento: Optional[str] = Form(None),
    observacoes: Optional[str] = Form(None),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Recebe um documento fiscal (PDF ou imagem), salva-o no storage e extrai
    os prazos candidatos. Nenhum prazo é criado aqui: o retorno traz os
    candidatos e o pré-preenchimento do formulário para confirmação.
    """
    arquivo_bytes = await arquivo.read()

    try:
        documento = await run_in_threadpool(
            servico.receber_documento,
            supabase_admin,
            user["sub"],
            empresa_id,
            arquivo.filename or "",
            arquivo_bytes,
            arquivo.content_type,
            tipo_documento,
            numero_documento,
            observacoes,
        )
    except ErroPrazos as e:
        raise para_http(e)

    if documento.extracao.prazos_detectados:
        mensagem = f"{len(documento.extracao.prazos_detectados)} prazo(s) detectado(s). Confirme para cadastrar."
    else:
        mensagem = "Nenhum prazo detectado. Preencha os dados manualmente."

    return {
        "data": documento,
        "message": mensagem
    }


@router.post("/{id_documento}/confirmar", status_code=status.HTTP_201_CREATED)
def confirmar_prazo_documento(
    corpo: ConfirmarPrazoDocumento,
    id_documento: str = Path(..., title="ID do documento"),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Cria o prazo a partir de um candidato do documento e das correções do usuário.
    """
    try:
        prazo = servico.confirmar_documento(supabase_admin, user["sub"], id_documento, corpo)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": prazo,
        "message": "Prazo fiscal criado a partir do documento."
    }


@router.get("/{id_documento}/url")
def pegar_url_documento(
    id_documento: str = Path(..., title="ID do documento"),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    try:
        url = servico.url_assinada(supabase_admin, user["sub"], id_documento)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": {"url": url},
        "message": "URL do documento gerada com sucesso."
    }
