"""
Testes de ponta a ponta pela API JSON.
"""
from datetime import datetime, timedelta

import pytest


def _post(client, url, payload=None):
    return client.post(url, json=payload or {})


@pytest.fixture()
def item_a(client):
    resp = _post(client, "/itens", {
        "nome": "Camisa Listrada", "tipo": "Camisa", "tamanho": "M", "cor": "Branca",
        "preco": "49,90", "quantidade": 10,
    })
    assert resp.status_code == 201
    return resp.get_json()["data"]


@pytest.fixture()
def cliente_c(client):
    resp = _post(client, "/clientes", {"nome": "João Lima", "cpf": "123.456.789-09", "email": "joao@exemplo.com.br"})
    assert resp.status_code == 201
    return resp.get_json()["data"]


def _qtd(client, item_id):
    return client.get(f"/itens/{item_id}").get_json()["data"]["quantidade"]


def test_health(client):
    assert client.get("/health").get_json() == {"ok": True}


def test_cadastro_de_item(client, item_a):
    assert item_a["preco"] == "49.90"
    assert item_a["quantidade"] == 10

    dup = _post(client, "/itens", {"nome": "Camisa Listrada", "tipo": "Camisa", "tamanho": "P", "cor": "Azul", "preco": "10"})
    assert dup.status_code == 409

    resp = client.put(f"/itens/{item_a['id']}", json={"quantidade": 99})
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    assert _qtd(client, item_a["id"]) == 10

    resp = client.put(f"/itens/{item_a['id']}", json={"cor": "Preta"})
    assert resp.get_json()["data"]["cor"] == "Preta"


def test_erros_de_formulario(client):
    resp = _post(client, "/vendas", {"forma_pgto": "Fiado", "itens": [{"quantidade": 0}]})
    body = resp.get_json()
    assert resp.status_code == 400
    assert body["code"] == "VALIDATION_ERROR"
    assert "forma_pgto" in body["errors"]
    assert "itens" in body["errors"]


def test_cenario_venda_e_exclusao(client, item_a):
    resp = _post(client, "/vendas", {"forma_pgto": "Pix", "itens": [{"roupas_id": item_a["id"], "quantidade": 4}]})
    assert resp.status_code == 201
    venda = resp.get_json()["data"]
    assert len(venda["itens"]) == 1
    assert _qtd(client, item_a["id"]) == 6

    resp = client.delete(f"/vendas/{venda['id']}")
    assert resp.status_code == 200
    assert _qtd(client, item_a["id"]) == 10
    assert client.get(f"/vendas/{venda['id']}").status_code == 404


def test_atualizar_venda_com_desconto_acima_do_total(client, item_a):
    venda = _post(client, "/vendas", {"forma_pgto": "Pix", "itens": [{"roupas_id": item_a["id"], "quantidade": 1}]}).get_json()["data"]
    resp = client.put(f"/vendas/{venda['id']}", json={"desconto": "500"})
    assert resp.status_code == 400
    assert client.get(f"/vendas/{venda['id']}").get_json()["data"]["desconto"] in ("0", "0.00")


def test_cenario_baixa_sem_saldo(client):
    b = _post(client, "/itens", {"nome": "Saia Midi", "tipo": "Saia", "tamanho": "P", "cor": "Verde",
                                 "preco": "35.00", "quantidade": 2}).get_json()["data"]
    resp = _post(client, "/baixas", {"motivo": "Defeito", "itens": [{"roupas_id": b["id"], "quantidade": 5}]})
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "INSUFFICIENT_STOCK"
    assert _qtd(client, b["id"]) == 2
    assert client.get("/baixas").get_json()["data"] == []


def test_cenario_condicional_devolucao(client, item_a, cliente_c):
    devolucao = (datetime.utcnow() + timedelta(days=3)).strftime("%Y-%m-%dT%H:%M:%S")
    resp = _post(client, "/condicionais", {
        "cliente_id": cliente_c["id"], "data_devolucao": devolucao,
        "itens": [{"roupas_id": item_a["id"], "quantidade": 3}],
    })
    assert resp.status_code == 201
    cond = resp.get_json()["data"]
    assert cond["itens"][0]["status"] == "fora"
    assert _qtd(client, item_a["id"]) == 7

    resp = _post(client, f"/condicionais/{cond['id']}/devolver-item", {"roupas_id": item_a["id"]})
    assert resp.status_code == 200
    cond = resp.get_json()["data"]
    assert cond["itens"][0]["status"] == "devolvido"
    assert cond["devolvido"] is True
    assert _qtd(client, item_a["id"]) == 10


def test_cenario_condicional_conversao(client, item_a, cliente_c):
    cond = _post(client, "/condicionais", {
        "cliente_id": cliente_c["id"], "data_devolucao": "2030-01-15",
        "itens": [{"nome_item": "Camisa Listrada", "quantidade": 3}],
    }).get_json()["data"]
    resp = _post(client, f"/condicionais/{cond['id']}/converter-venda", {"forma_pagamento": "Pix"})
    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["condicional"]["itens"][0]["status"] == "vendido"
    assert data["venda"]["itens"][0]["quantidade"] == 3
    assert data["venda"]["condicional_id"] == cond["id"]
    assert _qtd(client, item_a["id"]) == 7

    resp = _post(client, f"/condicionais/{cond['id']}/converter-venda", {"forma_pagamento": "Pix"})
    assert resp.status_code == 409


def test_conversao_parcial_desabilitada_por_config(app, client, item_a, cliente_c):
    app.config["CONDICIONAL_CONVERSAO_PARCIAL"] = False
    cond = _post(client, "/condicionais", {
        "cliente_id": cliente_c["id"], "data_devolucao": "2030-01-15",
        "itens": [{"roupas_id": item_a["id"], "quantidade": 2}],
    }).get_json()["data"]
    resp = _post(client, f"/condicionais/{cond['id']}/converter-venda", {
        "forma_pagamento": "Pix", "itens_vendidos": [{"roupas_id": item_a["id"], "quantidade": 1}],
    })
    assert resp.status_code == 400
    assert _qtd(client, item_a["id"]) == 8


def test_cenario_compra_e_finalizacao(client, item_a):
    resp = _post(client, "/compras", {
        "fornecedor": "Bazar Central", "valor_pago": "60.00",
        "itens": [{"roupas_id": item_a["id"], "quantidade": 5, "valor_peca": "12.00"}],
    })
    assert resp.status_code == 201
    compra = resp.get_json()["data"]
    assert compra["finalizada"] is False
    assert _qtd(client, item_a["id"]) == 10

    resp = _post(client, f"/compras/{compra['id']}/finalizar")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["finalizada"] is True
    assert _qtd(client, item_a["id"]) == 15

    resp = _post(client, f"/compras/{compra['id']}/finalizar")
    assert resp.status_code == 409
    assert _qtd(client, item_a["id"]) == 15


def test_itens_da_compra_pela_api(client, item_a):
    compra = _post(client, "/compras", {
        "fornecedor": "Bazar Central", "valor_pago": "10",
        "itens": [{"roupas_id": item_a["id"], "quantidade": 1, "valor_peca": "10"}],
    }).get_json()["data"]
    resp = _post(client, f"/compras/{compra['id']}/itens", {"roupas_id": item_a["id"], "quantidade": 2, "valor_peca": "9.50"})
    assert resp.status_code == 201
    itens = resp.get_json()["data"]["itens"]
    assert len(itens) == 1
    assert itens[0]["quantidade"] == 3

    resp = client.put(f"/compras/{compra['id']}/itens/{itens[0]['id']}", json={"quantidade": 0})
    assert resp.status_code == 400


def test_cliente_cpf_invalido_e_inexistente(client):
    resp = _post(client, "/clientes", {"nome": "Ana", "cpf": "123"})
    assert resp.status_code == 400
    assert "cpf" in resp.get_json()["errors"]
    resp = client.get("/clientes/999")
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "CLIENT_NOT_FOUND"


def test_baixas_motivos_e_estatisticas(client, item_a):
    assert "Manchada" in client.get("/baixas/motivos").get_json()["data"]
    _post(client, "/baixas", {"motivo": "Manchada", "itens": [{"roupas_id": item_a["id"], "quantidade": 1}]})
    stats = client.get("/baixas/estatisticas?periodo=ano").get_json()["data"]
    assert stats["por_motivo"]["Manchada"]["quantidade"] == 1


def test_rota_inexistente_responde_json(client):
    resp = client.get("/nada")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False
