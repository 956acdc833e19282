# tests/test_prazos.py
"""
Testes das rotas de prazos fiscais (routers/prazos.py).

Testa:
- Listagem com filtros, ordenação e paginação
- Estatísticas iguais à redução da listagem
- Leitura logo após escrita (cache invalidado)
- Validação antes de qualquer chamada remota
- Transições de status
- Calendário, alertas e painel
"""

from datetime import date, timedelta

from conftest import EMPRESA_ID, USER_ID, OUTRO_USER_ID, gerar_token


def _dia_do_mes(dia: int) -> date:
    return date.today().replace(day=dia)


class TestAutenticacao:
    def test_sem_token(self, client):
        response = client.get("/prazos")
        assert response.status_code in (401, 403)

    def test_token_expirado(self, client):
        token = gerar_token(expira_em=-10)
        response = client.get("/prazos", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Token expirado"

    def test_token_assinado_com_outro_segredo(self, client):
        import jwt
        token = jwt.encode(
            {"sub": USER_ID, "aud": "authenticated", "iat": 0, "exp": 9999999999},
            "outro-segredo-qualquer-com-mais-de-32-bytes",
            algorithm="HS256",
        )
        response = client.get("/prazos", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestListagem:
    def test_lista_apenas_prazos_do_usuario(self, client, headers, novo_prazo):
        novo_prazo(name="Meu DAS")
        novo_prazo(name="DAS de outra pessoa", user_id=OUTRO_USER_ID)

        response = client.get("/prazos", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert [p["name"] for p in body["data"]] == ["Meu DAS"]
        assert body["data"][0]["empresa"]["nome"] == "Padaria Pão Quente LTDA"

    def test_filtro_por_status_e_tipo(self, client, headers, novo_prazo):
        novo_prazo(obligation_type="DAS", status="pendente")
        novo_prazo(obligation_type="GPS", status="pendente")
        novo_prazo(obligation_type="DAS", status="entregue")

        response = client.get(
            "/prazos",
            params={"status": ["pendente"], "tipo_obrigacao": ["DAS"]},
            headers=headers,
        )

        body = response.json()
        assert body["total"] == 1
        assert body["data"][0]["obligation_type"] == "DAS"
        assert body["data"][0]["status"] == "pendente"

    def test_status_efetivo_de_pendente_atrasado(self, client, headers, novo_prazo):
        novo_prazo(due_date=date.today() - timedelta(days=3))

        prazo = client.get("/prazos", headers=headers).json()["data"][0]

        assert prazo["status"] == "pendente"
        assert prazo["status_efetivo"] == "vencida"
        assert prazo["situacao"] == "vencida"
        assert prazo["dias_para_vencimento"] == -3

    def test_ordenacao_por_prioridade(self, client, headers, novo_prazo):
        novo_prazo(name="baixa", priority="baixa")
        novo_prazo(name="critica", priority="critica")
        novo_prazo(name="media", priority="media")

        response = client.get(
            "/prazos", params={"ordenar_por": "priority", "direcao": "desc"}, headers=headers
        )

        assert [p["name"] for p in response.json()["data"]] == ["critica", "media", "baixa"]

    def test_ordenacao_por_valor_com_nulos_no_fim(self, client, headers, novo_prazo):
        novo_prazo(name="cem", estimated_amount=100.0)
        novo_prazo(name="sem valor", estimated_amount=None)
        novo_prazo(name="trezentos", estimated_amount=300.0)

        for direcao, esperado in (("desc", ["trezentos", "cem", "sem valor"]),
                                  ("asc", ["cem", "trezentos", "sem valor"])):
            response = client.get(
                "/prazos", params={"ordenar_por": "estimated_amount", "direcao": direcao}, headers=headers
            )

            assert [p["name"] for p in response.json()["data"]] == esperado

    def test_paginacao(self, client, headers, novo_prazo):
        hoje = date.today()
        for i in range(5):
            novo_prazo(name=f"prazo {i}", due_date=hoje + timedelta(days=i))

        body = client.get("/prazos", params={"pagina": 2, "limite": 2}, headers=headers).json()

        assert body["total"] == 5
        assert [p["name"] for p in body["data"]] == ["prazo 2", "prazo 3"]
        assert body["tem_proxima_pagina"] is True

    def test_busca_aproximada(self, client, headers, novo_prazo):
        novo_prazo(name="DEFIS anual 2024", obligation_type="DEFIS")
        novo_prazo(name="GPS Folha")

        body = client.get("/prazos", params={"busca": "defis"}, headers=headers).json()

        assert [p["name"] for p in body["data"]] == ["DEFIS anual 2024"]

    def test_intervalo_invertido(self, client, headers):
        response = client.get(
            "/prazos",
            params={"data_inicio": "2024-05-01", "data_fim": "2024-04-01"},
            headers=headers,
        )
        assert response.status_code == 422
        assert response.json()["detail"]["tipo"] == "validacao"

    def test_falha_do_banco_vira_erro_de_rede(self, client, headers, fake_supabase):
        fake_supabase.falhas.add("fiscal_obligations")

        response = client.get("/prazos", headers=headers)

        assert response.status_code == 500
        assert response.json()["detail"]["tipo"] == "rede"

    def test_buscar_por_id(self, client, headers, novo_prazo):
        linha = novo_prazo(name="DCTF", obligation_type="DCTF")

        response = client.get(f"/prazos/{linha['id']}", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == linha["id"]

    def test_buscar_por_id_de_outro_usuario(self, client, headers, novo_prazo):
        linha = novo_prazo(user_id=OUTRO_USER_ID)

        response = client.get(f"/prazos/{linha['id']}", headers=headers)

        assert response.status_code == 404


class TestEstatisticas:
    def test_pendentes_do_mes(self, client, headers, novo_prazo):
        """3 pendentes e 2 entregues no mês: filtro pendente + mês devolve só os 3."""
        ids = [novo_prazo(due_date=_dia_do_mes(d), status="pendente", estimated_amount=10.0)["id"] for d in (1, 10, 20)]
        for d in (5, 15):
            novo_prazo(due_date=_dia_do_mes(d), status="entregue")

        params = {"status": ["pendente"], "periodo": "mes"}
        stats = client.get("/prazos/estatisticas", params=params, headers=headers).json()["data"]
        lista = client.get("/prazos", params=params, headers=headers).json()["data"]

        assert stats["total_prazos"] == 3
        assert sorted(p["id"] for p in lista) == sorted(ids)
        assert stats["valor_total_estimado"] == 30.0

    def test_estatisticas_iguais_a_reducao_da_lista(self, client, headers, novo_prazo):
        hoje = date.today()
        novo_prazo(due_date=hoje - timedelta(days=2), estimated_amount=50.0)
        novo_prazo(due_date=hoje + timedelta(days=3), estimated_amount=70.0, obligation_type="GPS")
        novo_prazo(due_date=hoje + timedelta(days=40), estimated_amount=None)
        novo_prazo(due_date=hoje + timedelta(days=1), status="entregue")

        for params in ({}, {"status": ["pendente"]}, {"tipo_obrigacao": ["GPS"]}, {"prioridade": ["alta"]}):
            lista = client.get("/prazos", params={**params, "limite": 500}, headers=headers).json()["data"]
            stats = client.get("/prazos/estatisticas", params=params, headers=headers).json()["data"]

            assert stats["total_prazos"] == len(lista)
            por_status = {}
            for p in lista:
                por_status[p["status_efetivo"]] = por_status.get(p["status_efetivo"], 0) + 1
            assert stats["por_status"] == por_status
            assert stats["valor_total_estimado"] == sum(p["valor_total"] for p in lista)

    def test_contagem_vencidos_proximos_futuros(self, client, headers, novo_prazo):
        hoje = date.today()
        novo_prazo(due_date=hoje - timedelta(days=1), estimated_amount=10.0)
        novo_prazo(due_date=hoje + timedelta(days=7), estimated_amount=20.0)
        novo_prazo(due_date=hoje + timedelta(days=8), estimated_amount=40.0)

        stats = client.get("/prazos/estatisticas", headers=headers).json()["data"]

        assert stats["prazos_vencidos"] == 1
        assert stats["valor_vencido"] == 10.0
        assert stats["prazos_proximos"] == 1
        assert stats["valor_proximo"] == 20.0
        assert stats["prazos_futuros"] == 1
        assert stats["por_empresa"][EMPRESA_ID]["total"] == 3
        assert stats["por_tipo"]["DAS"]["vencidos"] == 1

    def test_ordenacao_nao_separa_lista_e_estatisticas(self, client, headers, novo_prazo):
        novo_prazo()
        lista = client.get("/prazos", params={"ordenar_por": "priority"}, headers=headers).json()
        assert lista["total"] == 1

        # Linha gravada por fora da API depois da primeira leitura
        novo_prazo()

        stats = client.get("/prazos/estatisticas", headers=headers).json()["data"]
        padrao = client.get("/prazos", headers=headers).json()
        assert stats["total_prazos"] == lista["total"] == padrao["total"]


class TestCriacao:
    def _corpo(self, **campos):
        corpo = {
            "empresa_id": EMPRESA_ID,
            "obligation_type": "DAS",
            "name": "DAS competência 04",
            "due_date": (date.today() + timedelta(days=10)).isoformat(),
            "estimated_amount": 321.5,
        }
        corpo.update(campos)
        return corpo

    def test_criar_e_listar_em_seguida(self, client, headers, fake_supabase):
        antes = client.get("/prazos", headers=headers).json()
        assert antes["total"] == 0

        response = client.post("/prazos", json=self._corpo(), headers=headers)
        assert response.status_code == 201
        criado = response.json()["data"]
        assert criado["status"] == "pendente"
        assert criado["user_id"] == USER_ID

        depois = client.get("/prazos", headers=headers).json()
        assert [p["id"] for p in depois["data"]] == [criado["id"]]

        stats = client.get("/prazos/estatisticas", headers=headers).json()["data"]
        assert stats["total_prazos"] == 1

    def test_sem_data_de_vencimento_nao_chama_o_banco(self, client, headers, fake_supabase):
        corpo = self._corpo()
        del corpo["due_date"]

        response = client.post("/prazos", json=corpo, headers=headers)

        assert response.status_code == 422
        assert fake_supabase.execucoes == []

    def test_valor_negativo(self, client, headers, fake_supabase):
        response = client.post("/prazos", json=self._corpo(estimated_amount=-1), headers=headers)

        assert response.status_code == 422
        assert fake_supabase.execucoes == []

    def test_falha_na_gravacao_preserva_cache(self, client, headers, fake_supabase, novo_prazo):
        novo_prazo()
        assert client.get("/prazos", headers=headers).json()["total"] == 1

        fake_supabase.falhas.add("fiscal_obligations")
        response = client.post("/prazos", json=self._corpo(), headers=headers)
        assert response.status_code == 500

        # Leitura servida pelo cache, que não foi invalidado
        assert client.get("/prazos", headers=headers).json()["total"] == 1


class TestAtualizacao:
    def test_concluir(self, client, headers, novo_prazo):
        linha = novo_prazo()

        response = client.post(
            f"/prazos/{linha['id']}/concluir",
            json={"completion_notes": "Pago no banco"},
            headers=headers,
        )

        assert response.status_code == 200
        prazo = response.json()["data"]
        assert prazo["status"] == "entregue"
        assert prazo["completed_by"] == USER_ID
        assert prazo["completion_notes"] == "Pago no banco"

    def test_concluir_invalida_estatisticas(self, client, headers, novo_prazo):
        linha = novo_prazo(due_date=date.today() + timedelta(days=20))
        stats = client.get("/prazos/estatisticas", headers=headers).json()["data"]
        assert stats["por_status"] == {"pendente": 1}

        client.post(f"/prazos/{linha['id']}/concluir", headers=headers)

        stats = client.get("/prazos/estatisticas", headers=headers).json()["data"]
        assert stats["por_status"] == {"entregue": 1}

    def test_transicao_invalida(self, client, headers, novo_prazo):
        linha = novo_prazo(status="entregue")

        response = client.patch(f"/prazos/{linha['id']}", json={"status": "vencida"}, headers=headers)

        assert response.status_code == 409

    def test_reabrir_limpa_conclusao(self, client, headers, novo_prazo):
        linha = novo_prazo(status="entregue", completed_by=USER_ID, completed_at="2024-01-01T00:00:00+00:00")

        response = client.patch(f"/prazos/{linha['id']}", json={"status": "pendente"}, headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["completed_at"] is None

    def test_atualizar_sem_campos(self, client, headers, novo_prazo):
        linha = novo_prazo()

        response = client.patch(f"/prazos/{linha['id']}", json={}, headers=headers)

        assert response.status_code == 422

    def test_atualizar_inexistente(self, client, headers):
        response = client.patch("/prazos/nao-existe", json={"name": "novo nome"}, headers=headers)

        assert response.status_code == 404

    def test_null_em_coluna_obrigatoria_nao_chama_o_banco(self, client, headers, fake_supabase, novo_prazo):
        linha = novo_prazo()

        for campo in ("due_date", "name", "priority", "status"):
            response = client.patch(f"/prazos/{linha['id']}", json={campo: None}, headers=headers)

            assert response.status_code == 422
        assert ("fiscal_obligations", "update") not in fake_supabase.execucoes
        assert client.get("/prazos", headers=headers).status_code == 200
        assert client.get(f"/prazos/{linha['id']}", headers=headers).json()["data"]["due_date"] == linha["due_date"]

    def test_null_em_coluna_opcional_e_aceito(self, client, headers, novo_prazo):
        linha = novo_prazo(description="Guia de abril")

        response = client.patch(f"/prazos/{linha['id']}", json={"description": None}, headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["description"] is None


class TestCalendarioEAlertas:
    def test_calendario_do_mes(self, client, headers, novo_prazo):
        novo_prazo(due_date="2030-03-10", priority="critica", estimated_amount=100.0)
        novo_prazo(due_date="2030-03-25", priority="baixa", estimated_amount=50.0)
        novo_prazo(due_date="2030-04-01")

        visao = client.get("/prazos/calendario", params={"mes": 3, "ano": 2030}, headers=headers).json()["data"]

        assert visao["total_eventos"] == 2
        assert visao["eventos_criticos"] == 1
        assert visao["valor_total"] == 150.0
        assert visao["eventos"][0]["color"] == "#dc2626"
        assert visao["eventos"][0]["data"] == "2030-03-10"

    def test_alertas(self, client, headers, novo_prazo):
        hoje = date.today()
        novo_prazo(name="vence logo", due_date=hoje + timedelta(days=3))
        novo_prazo(name="atrasado", due_date=hoje - timedelta(days=2))
        novo_prazo(name="longe", due_date=hoje + timedelta(days=30))
        novo_prazo(name="entregue", due_date=hoje + timedelta(days=1), status="entregue")

        todos = client.get("/prazos/alertas", headers=headers).json()["data"]
        sem_vencidos = client.get(
            "/prazos/alertas", params={"incluir_vencidas": False}, headers=headers
        ).json()["data"]

        assert sorted(a["name"] for a in todos) == ["atrasado", "vence logo"]
        assert [a["name"] for a in sem_vencidos] == ["vence logo"]


class TestPainel:
    def test_regiao_com_falha_nao_derruba_as_outras(self, client, headers, novo_prazo):
        novo_prazo()

        body = client.get("/prazos/painel", headers=headers).json()["data"]

        # Sem sessão iniciada a região de notificações falha sozinha
        assert body["notificacoes"]["data"] is None
        assert body["notificacoes"]["erro"]
        assert body["prazos"]["erro"] is None
        assert len(body["prazos"]["data"]) == 1
        assert body["estatisticas"]["data"]["total_prazos"] == 1

    def test_banco_fora_mantem_notificacoes(self, client, headers, fake_supabase):
        assert client.post("/sessao/iniciar", headers=headers).status_code == 200
        fake_supabase.falhas.add("fiscal_obligations")

        response = client.get("/prazos/painel", headers=headers)

        assert response.status_code == 200
        body = response.json()["data"]
        assert body["prazos"]["erro"]
        assert body["estatisticas"]["erro"]
        assert body["alertas"]["erro"]
        assert body["notificacoes"]["erro"] is None
        assert body["notificacoes"]["data"]["nao_lidas"] == 0
