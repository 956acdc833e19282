# services/documentos.py
"""
Recebimento de documentos fiscais e confirmação dos prazos extraídos.

O upload nunca cria prazos sozinho: os candidatos ficam guardados no
registro do documento (status 'aguardando_confirmacao') e o usuário confirma
um deles, com ou sem correções, ou preenche tudo à mão.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client

from models.documento_model import ConfirmarPrazoDocumento, DocumentoUploadPrazo, PrazoDetectado, ResultadoExtracao
from models.prazo_model import CategoriaObrigacao, PrazoFiscal
from services.erros import DocumentoInvalido, DocumentoNaoEncontrado, ErroRemoto, ErroValidacaoPrazo
from services.extracao import detectar_tipo_documento
from services.ocr import formato_suportado, processar_documento
from services.prazos import criar_prazo, validar_criacao
from settings.settings import importar_configs

logger = logging.getLogger(__name__)

TABELA_DOCUMENTOS = "documentos"
PASTA_PRAZOS = "prazos-fiscais"

STATUS_AGUARDANDO = "aguardando_confirmacao"
STATUS_PROCESSADO = "processado"


def validar_arquivo(nome_arquivo: str, conteudo: bytes, tamanho_maximo: int):
    if not conteudo:
        raise DocumentoInvalido("O arquivo enviado está vazio.")
    if not nome_arquivo or not formato_suportado(nome_arquivo):
        raise DocumentoInvalido("Formato não suportado. Envie PDF, PNG, JPG ou TIFF.")
    if len(conteudo) > tamanho_maximo:
        raise DocumentoInvalido(
            f"Arquivo maior que o limite de {tamanho_maximo // (1024 * 1024)} MB."
        )


def caminho_storage(user_id: str, nome_arquivo: str) -> str:
    extensao = nome_arquivo.rsplit(".", 1)[-1].lower()
    return f"{user_id}/{PASTA_PRAZOS}/{uuid.uuid4().hex}.{extensao}"


def montar_pre_preenchimento(candidato: Optional[PrazoDetectado]) -> Dict[str, Any]:
    """Campos do formulário de prazo a partir do candidato; vazio se não houver."""
    if candidato is None:
        return {}
    dados = {
        "obligation_type": candidato.tipo_obrigacao,
        "category": CategoriaObrigacao.pagamento.value,
        "name": candidato.descricao,
        "description": "Prazo extraído automaticamente do documento",
        "due_date": candidato.data_vencimento.isoformat() if candidato.data_vencimento else None,
        "estimated_amount": candidato.valor_estimado,
    }
    return {k: v for k, v in dados.items() if v is not None}


def remover_arquivo(client: Client, bucket: str, caminho: str) -> bool:
    """Apaga do storage um arquivo que ficou sem registro em 'documentos'."""
    try:
        client.storage.from_(bucket).remove([caminho])
    except Exception as e:
        logger.warning("Arquivo órfão no storage (%s/%s): %s", bucket, caminho, e)
        return False
    return True


def receber_documento(client: Client, user_id: str, empresa_id: str, nome_arquivo: str,
                      conteudo: bytes, content_type: Optional[str] = None,
                      tipo_documento: Optional[str] = None, numero_documento: Optional[str] = None,
                      observacoes: Optional[str] = None) -> DocumentoUploadPrazo:
    st = importar_configs()
    if not empresa_id or not empresa_id.strip():
        raise ErroValidacaoPrazo("empresa_id é obrigatório", ["empresa_id"])
    validar_arquivo(nome_arquivo, conteudo, st.TAMANHO_MAXIMO_ARQUIVO)

    tipo = tipo_documento or detectar_tipo_documento(nome_arquivo)
    caminho = caminho_storage(user_id, nome_arquivo)

    try:
        client.storage.from_(st.BUCKET_DOCUMENTOS).upload(
            path=caminho,
            file=conteudo,
            file_options={"content-type": content_type or "application/octet-stream"},
        )
    except Exception as e:
        logger.error("Erro no upload de %s: %s", nome_arquivo, e)
        raise ErroRemoto(f"Erro no upload do arquivo: {e}") from e

    extracao = processar_documento(conteudo, nome_arquivo, tipo, content_type)
    candidato = extracao.prazos_detectados[0] if extracao.prazos_detectados else None

    registro = {
        "user_id": user_id,
        "empresa_id": empresa_id,
        "nome_arquivo": nome_arquivo,
        "caminho_arquivo": caminho,
        "tipo_documento": tipo,
        "tamanho_arquivo": len(conteudo),
        "tipo_mime": content_type,
        "numero_documento": numero_documento,
        "observacoes": observacoes,
        "status": STATUS_AGUARDANDO,
        "texto_extraido": extracao.texto_extraido,
        "dados_estruturados": extracao.model_dump(mode="json", exclude={"texto_extraido"}),
        "confidence": extracao.confianca,
        "metadata": {"origem": "upload_prazo_fiscal", "provider": extracao.provider},
    }
    try:
        resposta = client.table(TABELA_DOCUMENTOS).insert(registro).execute()
    except Exception as e:
        logger.error("Erro ao salvar documento %s: %s", nome_arquivo, e)
        remover_arquivo(client, st.BUCKET_DOCUMENTOS, caminho)
        raise ErroRemoto(f"Erro ao salvar documento: {e}") from e
    if not resposta.data:
        remover_arquivo(client, st.BUCKET_DOCUMENTOS, caminho)
        raise ErroRemoto("Erro ao salvar documento: o banco não retornou o registro inserido")

    documento = DocumentoUploadPrazo(
        id=str(resposta.data[0]["id"]),
        empresa_id=empresa_id,
        nome_arquivo=nome_arquivo,
        caminho_arquivo=caminho,
        tipo_documento=tipo,
        status=STATUS_AGUARDANDO,
        extracao=extracao,
        pre_preenchimento=montar_pre_preenchimento(candidato),
    )
    logger.info(
        "Documento %s recebido de %s: %d candidato(s)",
        documento.id, user_id, len(extracao.prazos_detectados),
    )
    return documento


def buscar_documento(client: Client, user_id: str, id_documento: str) -> Dict[str, Any]:
    try:
        resposta = (
            client.table(TABELA_DOCUMENTOS)
            .select("*")
            .eq("id", id_documento)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error("Erro ao buscar documento %s: %s", id_documento, e)
        raise ErroRemoto(f"Erro ao buscar documento: {e}") from e
    if not resposta.data:
        raise DocumentoNaoEncontrado(f"Documento {id_documento} não encontrado")
    return resposta.data[0]


def _candidatos(documento: Dict[str, Any]):
    dados = documento.get("dados_estruturados") or {}
    try:
        return ResultadoExtracao(**dados).prazos_detectados if dados else []
    except ValueError:
        logger.warning("Dados estruturados ilegíveis no documento %s", documento.get("id"))
        return []


def confirmar_documento(client: Client, user_id: str, id_documento: str,
                        corpo: ConfirmarPrazoDocumento) -> PrazoFiscal:
    """
    Cria o prazo a partir do candidato escolhido (ou só dos campos enviados).
    Campos enviados no corpo têm precedência sobre os extraídos.
    """
    documento = buscar_documento(client, user_id, id_documento)
    candidatos = _candidatos(documento)

    candidato = None
    if corpo.indice_candidato is not None:
        if corpo.indice_candidato >= len(candidatos):
            raise ErroValidacaoPrazo("Candidato inexistente neste documento", ["indice_candidato"])
        candidato = candidatos[corpo.indice_candidato]

    dados = montar_pre_preenchimento(candidato)
    dados.update(corpo.model_dump(mode="json", exclude_none=True, exclude={"indice_candidato"}))
    dados["empresa_id"] = str(documento["empresa_id"])
    dados["metadata"] = {
        "documento_origem": str(documento["id"]),
        "extraido_automaticamente": candidato is not None,
    }
    if candidato is not None:
        dados["metadata"].update({
            "confidence": candidato.confidence,
            "competencia": candidato.competencia,
            "codigo_barras": candidato.codigo_barras,
        })

    prazo = criar_prazo(client, user_id, validar_criacao(dados))

    try:
        (
            client.table(TABELA_DOCUMENTOS)
            .update({
                "status": STATUS_PROCESSADO,
                "metadata": {**(documento.get("metadata") or {}), "prazo_id": prazo.id},
                "updated_at": datetime.now(timezone.utc).isoformat(),
            })
            .eq("id", id_documento)
            .eq("user_id", user_id)
            .execute()
        )
    except Exception as e:
        # O prazo já foi gravado; o documento apenas continua aguardando
        logger.warning("Prazo %s criado, mas o documento %s não foi atualizado: %s", prazo.id, id_documento, e)

    return prazo


def url_assinada(client: Client, user_id: str, id_documento: str) -> str:
    st = importar_configs()
    documento = buscar_documento(client, user_id, id_documento)
    try:
        resposta = client.storage.from_(st.BUCKET_DOCUMENTOS).create_signed_url(
            documento["caminho_arquivo"], st.URL_EXPIRACAO_SEGUNDOS
        )
    except Exception as e:
        logger.error("Erro ao gerar URL do documento %s: %s", id_documento, e)
        raise ErroRemoto(f"Erro ao gerar URL do documento: {e}") from e

    url = resposta.get("signedURL") or resposta.get("signedUrl")
    if not url:
        raise ErroRemoto("O storage não retornou a URL assinada")
    return url
