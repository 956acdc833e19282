# tests/conftest.py
"""
Configuração global do pytest para a API de prazos fiscais.

As variáveis de ambiente precisam existir antes de importar o app, porque
main.py lê as configurações na importação.

O Supabase é substituído por um dublê em memória (FakeSupabase) que entende
o subconjunto do query builder usado pelos serviços: select/eq/neq/in_/gte/
lte/order/limit/insert/update/execute, storage e edge functions.
"""

import copy
import os
import time
import uuid
from datetime import date, datetime, timezone
from types import SimpleNamespace

# Configura variáveis de ambiente para testes
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_API_KEY", "chave-anon-de-teste")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "chave-service-de-teste")
os.environ.setdefault("SUPABASE_JWT", "segredo-jwt-de-teste-com-mais-de-32-bytes")
# Sem chave do Gemini: a extração nunca sai da máquina nos testes
os.environ["API_KEY"] = ""
os.environ.setdefault("LOG_LEVEL", "WARNING")

import jwt
import pytest
from fastapi.testclient import TestClient

from main import app
from services.auth import pegar_usuario_admin
from services.cache import cache_consultas
from services.notificacoes import registro_notificacoes
from settings.settings import importar_configs

USER_ID = "3f1c2b8e-0000-4000-8000-000000000001"
OUTRO_USER_ID = "3f1c2b8e-0000-4000-8000-000000000002"
EMPRESA_ID = "emp-1"


# ==================================================
# DUBLÊ DO SUPABASE
# ==================================================


def _igual(a, b) -> bool:
    if a is None or b is None:
        return a is b
    return str(a) == str(b)


class FakeQuery:
    def __init__(self, fake, tabela):
        self.fake = fake
        self.tabela = tabela
        self.operacao = "select"
        self.colunas = "*"
        self.payload = None
        self.filtros = []
        self.ordem = []
        self.limite = None

    def select(self, colunas="*"):
        self.operacao = "select"
        self.colunas = colunas
        return self

    def insert(self, dados):
        self.operacao = "insert"
        self.payload = dados
        return self

    def update(self, dados):
        self.operacao = "update"
        self.payload = dados
        return self

    def eq(self, coluna, valor):
        self.filtros.append(lambda linha: _igual(linha.get(coluna), valor))
        return self

    def neq(self, coluna, valor):
        self.filtros.append(lambda linha: not _igual(linha.get(coluna), valor))
        return self

    def in_(self, coluna, valores):
        aceitos = {str(v) for v in valores}
        self.filtros.append(lambda linha: str(linha.get(coluna)) in aceitos)
        return self

    def gte(self, coluna, valor):
        self.filtros.append(lambda linha: linha.get(coluna) is not None and str(linha[coluna]) >= str(valor))
        return self

    def lte(self, coluna, valor):
        self.filtros.append(lambda linha: linha.get(coluna) is not None and str(linha[coluna]) <= str(valor))
        return self

    def order(self, coluna, desc=False):
        self.ordem.append((coluna, desc))
        return self

    def limit(self, n):
        self.limite = n
        return self

    def _filtradas(self):
        linhas = self.fake.tabelas.setdefault(self.tabela, [])
        return [linha for linha in linhas if all(f(linha) for f in self.filtros)]

    def _com_empresa(self, linha):
        linha = copy.deepcopy(linha)
        if "empresa:empresas" in self.colunas:
            empresa = next(
                (e for e in self.fake.tabelas.get("empresas", []) if _igual(e["id"], linha.get("empresa_id"))),
                None,
            )
            linha["empresa"] = copy.deepcopy(empresa)
        return linha

    def execute(self):
        self.fake.execucoes.append((self.tabela, self.operacao))
        if self.tabela in self.fake.falhas:
            raise ConnectionError(f"falha simulada em {self.tabela}")

        if self.operacao == "insert":
            novos = self.payload if isinstance(self.payload, list) else [self.payload]
            inseridos = []
            for dados in novos:
                linha = copy.deepcopy(dados)
                linha.setdefault("id", str(uuid.uuid4()))
                linha.setdefault("created_at", datetime.now(timezone.utc).isoformat())
                self.fake.tabelas.setdefault(self.tabela, []).append(linha)
                inseridos.append(copy.deepcopy(linha))
            return SimpleNamespace(data=inseridos)

        if self.operacao == "update":
            atualizados = []
            for linha in self._filtradas():
                linha.update(copy.deepcopy(self.payload))
                atualizados.append(copy.deepcopy(linha))
            return SimpleNamespace(data=atualizados)

        linhas = self._filtradas()
        for coluna, desc in reversed(self.ordem):
            linhas.sort(key=lambda l: (l.get(coluna) is None, str(l.get(coluna))), reverse=desc)
        if self.limite is not None:
            linhas = linhas[:self.limite]
        return SimpleNamespace(data=[self._com_empresa(l) for l in linhas])


class FakeBucket:
    def __init__(self, fake, nome):
        self.fake = fake
        self.nome = nome

    def upload(self, path, file, file_options=None):
        self.fake.execucoes.append(("storage", "upload"))
        if "storage" in self.fake.falhas:
            raise ConnectionError("falha simulada no storage")
        self.fake.arquivos[(self.nome, path)] = file
        return SimpleNamespace(path=path)

    def remove(self, paths):
        self.fake.execucoes.append(("storage", "remove"))
        if "storage" in self.fake.falhas:
            raise ConnectionError("falha simulada no storage")
        return [{"name": p} for p in paths if self.fake.arquivos.pop((self.nome, p), None) is not None]

    def create_signed_url(self, path, expires_in):
        self.fake.execucoes.append(("storage", "signed_url"))
        if (self.nome, path) not in self.fake.arquivos:
            raise FileNotFoundError(path)
        return {"signedURL": f"http://localhost:54321/storage/v1/object/sign/{self.nome}/{path}?token=t&exp={expires_in}"}


class FakeStorage:
    def __init__(self, fake):
        self.fake = fake

    def from_(self, bucket):
        return FakeBucket(self.fake, bucket)


class FakeFunctions:
    def __init__(self, fake):
        self.fake = fake

    def invoke(self, nome, invoke_options=None):
        self.fake.execucoes.append(("functions", nome))
        self.fake.chamadas_funcoes.append((nome, (invoke_options or {}).get("body")))
        if "functions" in self.fake.falhas:
            raise ConnectionError("falha simulada na edge function")
        return self.fake.respostas_funcoes.get(nome, b"{}")


class FakeSupabase:
    def __init__(self):
        self.tabelas = {
            "empresas": [
                {"id": EMPRESA_ID, "nome": "Padaria Pão Quente LTDA",
                 "cnpj": "12.345.678/0001-90", "regime_tributario": "simples_nacional"},
            ],
            "fiscal_obligations": [],
            "documentos": [],
            "notifications": [],
        }
        self.execucoes = []
        self.falhas = set()
        self.arquivos = {}
        self.respostas_funcoes = {}
        self.chamadas_funcoes = []
        self.storage = FakeStorage(self)
        self.functions = FakeFunctions(self)

    def table(self, nome):
        return FakeQuery(self, nome)


# ==================================================
# FIXTURES
# ==================================================


@pytest.fixture(autouse=True)
def limpar_estado():
    """Cache e centrais de notificação são globais do processo."""
    cache_consultas.invalidate_all()
    registro_notificacoes.limpar()
    yield
    cache_consultas.invalidate_all()
    registro_notificacoes.limpar()


@pytest.fixture
def fake_supabase():
    fake = FakeSupabase()
    app.dependency_overrides[pegar_usuario_admin] = lambda: fake
    yield fake
    app.dependency_overrides.pop(pegar_usuario_admin, None)


@pytest.fixture
def client(fake_supabase):
    return TestClient(app)


def gerar_token(sub: str = USER_ID, expira_em: int = 3600) -> str:
    agora = int(time.time())
    payload = {"sub": sub, "aud": "authenticated", "iat": agora, "exp": agora + expira_em}
    return jwt.encode(payload, importar_configs().SUPABASE_JWT, algorithm="HS256")


@pytest.fixture
def headers():
    return {"Authorization": f"Bearer {gerar_token()}"}


@pytest.fixture
def headers_outro_usuario():
    return {"Authorization": f"Bearer {gerar_token(OUTRO_USER_ID)}"}


@pytest.fixture
def novo_prazo(fake_supabase):
    """Insere uma linha em fiscal_obligations e devolve a linha."""
    def _criar(**campos):
        linha = {
            "id": str(uuid.uuid4()),
            "user_id": USER_ID,
            "empresa_id": EMPRESA_ID,
            "obligation_type": "DAS",
            "category": "pagamento",
            "name": "DAS mensal",
            "description": None,
            "due_date": date.today().isoformat(),
            "frequency": "mensal",
            "status": "pendente",
            "priority": "media",
            "estimated_amount": 100.0,
            "alert_days_before": 7,
            "metadata": {},
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        linha.update(campos)
        if isinstance(linha["due_date"], date):
            linha["due_date"] = linha["due_date"].isoformat()
        fake_supabase.tabelas["fiscal_obligations"].append(linha)
        return linha
    return _criar
