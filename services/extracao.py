import re
import logging
from io import BytesIO
from typing import List, Optional
from datetime import date, datetime
from pypdf import PdfReader
from rapidfuzz import fuzz, process

from models.documento_model import PrazoDetectado
from models.prazo_model import TipoObrigacao

logger = logging.getLogger(__name__)

CONFIANCA_REGEX = 0.7

# Guias que não mapeiam para uma única obrigação ficam sem tipo
TIPOS_POR_NOME_ARQUIVO = [
    ("das", "DAS"),
    ("gps", "GPS"),
    ("darf", "DARF"),
    ("gare", "GARE"),
    ("gnre", "GNRE"),
    ("danfse", "NFSe"),
    ("nfse", "NFSe"),
    ("danfe", "NFe"),
    ("nfe", "NFe"),
    ("dacte", "CTe"),
    ("cte", "CTe"),
    ("esocial", "ESOCIAL"),
    ("sped", "SPED"),
    ("dirf", "DIRF"),
    ("defis", "DEFIS"),
    ("ecf", "ECF"),
    ("fgts", "FGTS"),
    ("extrato", "EXTRATO_BANCARIO"),
]

def _extrair_texto_pdf_pypdf(file_bytes: bytes) -> Optional[str]:
    """
    Extrai texto de todas as páginas de um PDF (PyPDF); usado quando o pdfplumber falha.
    """
    try:
        reader = PdfReader(BytesIO(file_bytes))
        texto = []
        for page in reader.pages:
            t = page.extract_text() or ""
            texto.append(t)
        return "\n".join(texto).strip()
    except Exception as e:
        logger.warning("Falha ao ler PDF com PyPDF: %s", e)
        return None

def _formatar_data(data_str: str) -> Optional[date]:
    """Converte DD/MM/YYYY (ou DD-MM-YYYY) para date; None se a data não existir."""
    try:
        return datetime.strptime(data_str.replace("-", "/"), "%d/%m/%Y").date()
    except ValueError:
        return None

def _para_float(valor) -> Optional[float]:
    """Aceita 1.234,56 / 1234.56 / números; None quando não for valor monetário."""
    if valor is None:
        return None
    if isinstance(valor, (int, float)):
        return float(valor)
    texto = str(valor).strip().replace("R$", "").strip()
    if not texto:
        return None
    if "," in texto:
        texto = texto.replace(".", "").replace(",", ".")
    try:
        return float(texto)
    except ValueError:
        return None

def detectar_tipo_documento(nome_arquivo: str) -> str:
    """Detecta o tipo de documento fiscal pelo nome do arquivo."""
    nome = (nome_arquivo or "").lower()
    for trecho, tipo in TIPOS_POR_NOME_ARQUIVO:
        if trecho in nome:
            return tipo
    return "DOCUMENTO_FISCAL"

def normalizar_tipo_obrigacao(valor: Optional[str]) -> Optional[str]:
    """
    Mapeia o tipo informado (pelo nome do arquivo ou pela IA) para um TipoObrigacao.
    Usa fuzzy match para tolerar variações como 'DAS - Simples Nacional'.
    """
    if not valor:
        return None
    texto = str(valor).strip().upper()
    validos = [t.value for t in TipoObrigacao]
    if texto in validos:
        return texto
    for token in re.split(r"[\s\-/_]+", texto):
        if token in validos:
            return token
    achado = process.extractOne(texto, validos, scorer=fuzz.ratio, score_cutoff=80)
    return achado[0] if achado else None

def _extrair_valor(texto: str) -> Optional[float]:
    match = re.search(
        r"(?:valor\s+(?:total|a\s+pagar|do\s+documento)|total\s+a\s+pagar|valor)\s*[:\-]?\s*(?:R\$)?\s*([\d.]+,\d{2})",
        texto,
        re.IGNORECASE,
    )
    return _para_float(match.group(1)) if match else None

def _extrair_codigo_barras(texto: str) -> Optional[str]:
    """Linha digitável (47 ou 48 dígitos, com pontos e espaços)."""
    for match in re.finditer(r"(\d[\d.\s]{45,60}\d)", texto):
        digitos = re.sub(r"\D", "", match.group(1))
        if len(digitos) in (47, 48):
            return digitos
    return None

def _extrair_competencia(texto: str) -> Optional[str]:
    match = re.search(
        r"(?:compet[eê]ncia|per[ií]odo\s+de\s+apura[cç][aã]o)\s*[:\-]?\s*(\d{2}/\d{4})",
        texto,
        re.IGNORECASE,
    )
    return match.group(1) if match else None

def extrair_prazos_do_texto(texto: str, tipo_documento: str) -> List[PrazoDetectado]:
    """
    Extração local por regex: procura datas de vencimento no texto do documento.
    Retorna lista vazia quando nada é encontrado.
    """
    if not texto:
        return []

    datas = []
    for match in re.finditer(
        r"(?:data\s+de\s+)?vencimento\s*[:\-]?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})",
        texto,
        re.IGNORECASE,
    ):
        data = _formatar_data(match.group(1))
        if data and data not in datas:
            datas.append(data)

    if not datas:
        return []

    tipo = normalizar_tipo_obrigacao(tipo_documento)
    valor = _extrair_valor(texto)
    codigo = _extrair_codigo_barras(texto)
    competencia = _extrair_competencia(texto)

    prazos = []
    for i, data in enumerate(datas):
        prazos.append(PrazoDetectado(
            tipo_obrigacao=tipo,
            descricao=f"{tipo or tipo_documento} - Vencimento detectado",
            data_vencimento=data,
            # O valor principal vale só para o primeiro vencimento encontrado
            valor_estimado=valor if i == 0 else None,
            competencia=competencia,
            codigo_barras=codigo if i == 0 else None,
            confidence=CONFIANCA_REGEX,
        ))
    return prazos
