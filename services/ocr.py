import json
import re
import time
import logging
from io import BytesIO
from typing import List, Optional
import pdfplumber
import google.generativeai as genai

from models.documento_model import PrazoDetectado, ResultadoExtracao
from services.extracao import (
    _extrair_texto_pdf_pypdf,
    _para_float,
    extrair_prazos_do_texto,
    normalizar_tipo_obrigacao,
)
from settings.settings import importar_configs

logger = logging.getLogger(__name__)

FORMATOS_SUPORTADOS = {
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "tiff": "image/tiff",
}

PROMPT_INSTRUCOES = """
Você é um extrator de dados de documentos fiscais brasileiros (guias DAS, DARF,
GPS, FGTS, GARE, declarações, notificações da Receita).
Retorne APENAS um JSON válido (sem comentários, sem texto extra).
Não invente dados; se faltar, use null.

Esquema de saída:

{
  "tipo_documento": "string|null",
  "confianca_geral": 0.0,
  "prazos": [
    {
      "tipo_obrigacao": "DAS|DCTF|ECF|SPED|DEFIS|DIRF|RAIS|CAGED|GPS|FGTS|ICMS|ISS|IRPJ|CSLL|PIS|COFINS|null",
      "descricao": "string",
      "data_vencimento": "YYYY-MM-DD|null",
      "valor": 0.0,
      "competencia": "MM/AAAA|null",
      "codigo_barras": "string|null",
      "confianca": 0.0
    }
  ]
}

REGRAS:
- data_vencimento: "Vencimento", "Data de vencimento", "Pagar até" (DD/MM/AAAA → YYYY-MM-DD).
- valor: "Valor total", "Total a pagar" (converter 1.234,56 → 1234.56).
- codigo_barras: linha digitável, somente dígitos.
- competencia: "Competência" ou "Período de apuração".
- confianca e confianca_geral: número entre 0 e 1 indicando sua certeza.
- Um item em "prazos" para cada vencimento distinto no documento.
- Retorne SOMENTE o JSON.
"""

def formato_suportado(nome_arquivo: str) -> bool:
    extensao = nome_arquivo.rsplit(".", 1)[-1].lower() if "." in nome_arquivo else ""
    return extensao in FORMATOS_SUPORTADOS

def _mime_type(nome_arquivo: str, content_type: Optional[str]) -> str:
    if content_type and content_type != "application/octet-stream":
        return content_type
    extensao = nome_arquivo.rsplit(".", 1)[-1].lower() if "." in nome_arquivo else ""
    return FORMATOS_SUPORTADOS.get(extensao, "application/octet-stream")

def extrair_texto_pdf_bytes(file_bytes: bytes) -> Optional[str]:
    """Extrai texto de todas as páginas de um PDF a partir de um arquivo binário."""
    try:
        texto = []
        with pdfplumber.open(BytesIO(file_bytes)) as pdf:
            for page in pdf.pages:
                # layout=True preserva espaços entre colunas
                texto_page = page.extract_text(layout=True) or ""
                texto.append(texto_page)
        return "\n".join(texto).strip()
    except Exception as e:
        logger.warning("pdfplumber falhou, tentando PyPDF: %s", e)
        return _extrair_texto_pdf_pypdf(file_bytes)

def chamar_gemini(texto_bruto: Optional[str] = None, imagem: Optional[bytes] = None, mime_type: str = "image/png") -> str:
    """Chama o Gemini e pede a resposta em JSON puro (texto do PDF ou imagem)."""
    st = importar_configs()
    genai.configure(api_key=st.API_KEY)
    model = genai.GenerativeModel(
        st.MODEL_NAME,
        generation_config={"response_mime_type": "application/json"},
    )
    if imagem is not None:
        content = [PROMPT_INSTRUCOES, {"mime_type": mime_type, "data": imagem}]
    else:
        content = f"{PROMPT_INSTRUCOES}\n\nTEXTO BRUTO A PROCESSAR:\n---\n{texto_bruto}\n---"
    resp = model.generate_content(content)
    return (resp.text or "").strip()

def normalizar_tipos(dados):
    """Converte strings 'null' -> None; não mexe em códigos numéricos."""
    if isinstance(dados, str):
        return None if dados.strip().lower() in {"null", "none", ""} else dados
    if isinstance(dados, list):
        return [normalizar_tipos(x) for x in dados]
    if isinstance(dados, dict):
        return {k: normalizar_tipos(x) for k, x in dados.items()}
    return dados

def parse_json_resposta(s: str) -> dict:
    s = re.sub(r"^\s*```(?:json)?\s*|\s*```\s*$", "", s, flags=re.IGNORECASE).strip()
    try:
        data = json.loads(s)
    except json.JSONDecodeError as e:
        raise ValueError(f"Resposta não é JSON válido. Erro: {e}. Trecho inicial: {s[:300]}")
    if not isinstance(data, dict) or "prazos" not in data:
        raise ValueError("JSON não contém a chave necessária: 'prazos'")
    return normalizar_tipos(data)

def _confianca(valor, padrao: float = 0.0) -> float:
    numero = _para_float(valor)
    if numero is None:
        return padrao
    return max(0.0, min(1.0, numero))

def converter_prazos_ia(dados: dict, tipo_documento: str) -> List[PrazoDetectado]:
    """Transforma o JSON da IA em candidatos; itens ilegíveis são descartados."""
    geral = _confianca(dados.get("confianca_geral"))
    prazos = []
    for item in dados.get("prazos") or []:
        if not isinstance(item, dict):
            continue
        tipo = normalizar_tipo_obrigacao(item.get("tipo_obrigacao")) or normalizar_tipo_obrigacao(tipo_documento)
        try:
            prazo = PrazoDetectado(
                tipo_obrigacao=tipo,
                descricao=item.get("descricao") or f"{tipo or tipo_documento} - Vencimento",
                data_vencimento=item.get("data_vencimento"),
                valor_estimado=_para_float(item.get("valor")),
                competencia=item.get("competencia"),
                codigo_barras=re.sub(r"\D", "", str(item["codigo_barras"])) if item.get("codigo_barras") else None,
                confidence=_confianca(item.get("confianca"), geral),
            )
        except ValueError as e:
            logger.warning("Candidato da IA ignorado (%s): %s", e, item)
            continue
        prazos.append(prazo)
    return prazos

def marcar_revisao(prazos: List[PrazoDetectado], confianca_minima: float) -> List[PrazoDetectado]:
    for prazo in prazos:
        prazo.requer_revisao = (
            prazo.confidence < confianca_minima
            or prazo.data_vencimento is None
            or prazo.tipo_obrigacao is None
        )
    return sorted(prazos, key=lambda p: p.confidence, reverse=True)

# Função de extração
def processar_documento(file_bytes: bytes, nome_arquivo: str, tipo_documento: str,
                        content_type: Optional[str] = None) -> ResultadoExtracao:
    """
    Função principal: recebe o arquivo, extrai texto e candidatos a prazo.

    Nunca levanta exceção por falha de extração: o resultado volta com
    success=False, confiança 0 e a lista de erros, e o usuário preenche à mão.
    """
    st = importar_configs()
    inicio = time.time()
    erros: List[str] = []
    mime = _mime_type(nome_arquivo, content_type)
    eh_pdf = mime == "application/pdf"

    texto = ""
    if eh_pdf:
        texto = extrair_texto_pdf_bytes(file_bytes) or ""
        if not texto:
            erros.append("Não foi possível extrair texto do PDF.")

    prazos: List[PrazoDetectado] = []
    provider = "nenhum"
    confianca = 0.0

    if st.API_KEY and (texto or not eh_pdf):
        try:
            resposta = chamar_gemini(texto_bruto=texto) if texto else chamar_gemini(imagem=file_bytes, mime_type=mime)
            dados = parse_json_resposta(resposta)
            prazos = converter_prazos_ia(dados, tipo_documento)
            provider = "gemini"
            confianca = _confianca(dados.get("confianca_geral"), max((p.confidence for p in prazos), default=0.0))
        except Exception as e:
            logger.warning("Extração com IA indisponível para %s: %s", nome_arquivo, e)
            erros.append(f"Extração com IA indisponível: {e}")

    if not prazos and texto:
        prazos = extrair_prazos_do_texto(texto, tipo_documento)
        if prazos:
            provider = "regex"
            confianca = max(p.confidence for p in prazos)

    if not prazos:
        confianca = 0.0

    prazos = marcar_revisao(prazos, st.OCR_CONFIANCA_MINIMA)
    logger.info(
        "Extração de %s: %d prazo(s), provider=%s, confiança=%.2f em %.0f ms",
        nome_arquivo, len(prazos), provider, confianca, (time.time() - inicio) * 1000,
    )
    return ResultadoExtracao(
        success=bool(prazos),
        texto_extraido=texto,
        confianca=confianca,
        provider=provider,
        prazos_detectados=prazos,
        errors=erros,
    )
